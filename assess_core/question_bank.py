from __future__ import annotations
import json, logging, random, threading, importlib.resources as ir
from typing import Dict, Iterable, List, Optional
from .types import Question, DIMENSIONS
from .validators import validate_question
from .config import SCALE_MIN, SCALE_MAX, BANK_TOLERANCE

__all__ = ["DIMENSIONS", "load_bank", "QuestionStore"]

log = logging.getLogger(__name__)

def load_bank() -> List[Question]:
    data = ir.files(__package__).joinpath("data/bank.json").read_text(encoding="utf-8")
    out: List[Question] = []
    for raw in json.loads(data):
        try:
            out.append(validate_question(raw))
        except ValueError as e:
            log.warning("skipping bank question %s: %s", raw.get("id"), e)
    return out


class QuestionStore:
    """In-process bank indexed by dimension and integer difficulty."""

    def __init__(self, questions: Iterable[Question], rng: Optional[random.Random] = None):
        # seeded from the global stream (see config.seed_rng)
        self.rng = rng or random.Random(random.randint(0, 2**31 - 1))
        self._by_id: Dict[str, Question] = {}
        self._index: Dict[str, Dict[int, List[Question]]] = {
            d: {lvl: [] for lvl in range(SCALE_MIN, SCALE_MAX + 1)} for d in DIMENSIONS
        }
        self._lock = threading.Lock()
        for q in questions:
            if q.dimension not in self._index:
                continue
            lvl = max(SCALE_MIN, min(SCALE_MAX, int(q.difficulty)))
            q.source = "bank"
            self._by_id[q.id] = q
            self._index[q.dimension][lvl].append(q)

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, question_id: str) -> Optional[Question]:
        return self._by_id.get(question_id)

    def count(self, dimension: str, difficulty: int) -> int:
        return len(self._index.get(dimension, {}).get(int(difficulty), []))

    def _tiers(self, difficulty: int) -> List[int]:
        order = [difficulty]
        for delta in range(1, BANK_TOLERANCE + 1):
            for lvl in (difficulty - delta, difficulty + delta):
                if SCALE_MIN <= lvl <= SCALE_MAX:
                    order.append(lvl)
        return order

    def find(self, dimension: str, difficulty: int, exclude_ids: Iterable[str] = ()) -> Optional[Question]:
        """Exact difficulty first, then the neighbouring tiers; random among ties."""

        excluded = set(exclude_ids)
        pools = self._index.get(dimension)
        if pools is None:
            return None
        for lvl in self._tiers(int(difficulty)):
            options = [q for q in pools.get(lvl, []) if q.id not in excluded]
            if options:
                q = self.rng.choice(options)
                with self._lock:
                    q.usage_count += 1
                return q
        return None

    def usage(self) -> Dict[str, int]:
        return {qid: q.usage_count for qid, q in self._by_id.items()}

    def questions(self, dimension: Optional[str] = None, difficulty: Optional[int] = None) -> List[Question]:
        out: List[Question] = []
        for d, pools in self._index.items():
            if dimension is not None and d != dimension:
                continue
            for lvl, qs in pools.items():
                if difficulty is None or lvl == int(difficulty):
                    out.extend(qs)
        return out

    def usage_stats(self, top: int = 10) -> Dict[str, object]:
        """Bank size per dimension and difficulty, plus the most-served questions."""

        levels = range(SCALE_MIN, SCALE_MAX + 1)
        counts = self.usage()
        # sorted() is stable, so equal counts keep bank order
        ranked = sorted(self._by_id.values(), key=lambda q: counts[q.id], reverse=True)[:top]
        return {
            "total_questions": len(self),
            "by_dimension": {d: sum(self.count(d, lvl) for lvl in levels) for d in DIMENSIONS},
            "by_difficulty": {lvl: sum(self.count(d, lvl) for d in DIMENSIONS) for lvl in levels},
            "most_used": [
                {"id": q.id, "dimension": q.dimension, "difficulty": q.difficulty,
                 "usage_count": counts[q.id], "prompt": q.prompt[:100]}
                for q in ranked
            ],
        }
