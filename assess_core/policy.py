# assess_core/policy.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .types import DIMENSIONS, DimensionState, Profile, Question, Target
from .bounds import quantize
from .errors import CollaboratorError
from .question_bank import QuestionStore
from .config import (
    SCALE_MID,
    HARD_CAP,
    CONVERGENCE_THRESHOLD,
    MIN_QUESTIONS_PER_DIMENSION,
    EXPLORATION_QUESTIONS_MIN,
    BANK_RANGE_MAX,
    BANK_COUNT_MAX,
    GENERATION_RETRIES,
    RECENT_TEXTS_LIMIT,
)


log = logging.getLogger(__name__)


# primary format first; multiple choice is the gentler exploration format
_TYPE_MAP: Dict[str, Tuple[str, ...]] = {
    "low_level": ("one_liner", "multiple_choice", "trace"),
    "control_flow": ("trace", "code", "multiple_choice"),
    "hardware_io": ("code", "multiple_choice", "trace"),
    "code_reading": ("trace", "multiple_choice"),
    "decomposition": ("code", "multiple_choice"),
}


def question_type_for(dimension: str, phase: str) -> str:
    types = _TYPE_MAP.get(dimension, ("multiple_choice",))
    if phase == "exploration" and "multiple_choice" in types:
        return "multiple_choice"
    return types[0]


def _converged(st: DimensionState) -> bool:
    return st.range <= CONVERGENCE_THRESHOLD and st.question_count >= MIN_QUESTIONS_PER_DIMENSION


def classify_phase(profile: Profile) -> str:
    """Project the profile onto exploration / refinement / completion.

    Never cached: a bound update (including the struggling pull-down) may move
    the session back out of completion.
    """

    if profile.questions_answered < EXPLORATION_QUESTIONS_MIN:
        return "exploration"
    if not all(profile.dimensions[d].tested for d in DIMENSIONS):
        return "exploration"
    if all(_converged(profile.dimensions[d]) for d in DIMENSIONS):
        return "completion"
    return "refinement"


def should_stop(profile: Profile) -> bool:
    if profile.questions_answered >= HARD_CAP:
        return True
    return classify_phase(profile) == "completion"


def completion_reason(profile: Profile) -> Optional[str]:
    if classify_phase(profile) == "completion":
        return "converged"
    if profile.questions_answered >= HARD_CAP:
        return "hard_cap"
    return None


def adjusted_uncertainty(st: DimensionState) -> float:
    return st.range + 1.0 / (st.question_count + 1)


def most_uncertain(profile: Profile) -> str:
    best_dim = DIMENSIONS[0]
    best_val = -1.0
    for dim in DIMENSIONS:
        val = adjusted_uncertainty(profile.dimensions[dim])
        if val > best_val:
            best_val, best_dim = val, dim
    return best_dim


class QuestionPolicy:
    """Picks the next probe and turns it into a concrete question."""

    def __init__(self, store: Optional[QuestionStore], generator=None):
        self.store = store
        self.generator = generator

    def next_target(self, profile: Profile, phase: Optional[str] = None) -> Target:
        phase = phase or classify_phase(profile)

        if phase == "exploration":
            untested = [d for d in DIMENSIONS if not profile.dimensions[d].tested]
            if untested:
                dim = untested[0]
                return Target(dim, SCALE_MID, "bank", question_type_for(dim, phase))

        dim = most_uncertain(profile)
        st = profile.dimensions[dim]

        if phase == "completion":
            return Target(dim, quantize(st.lower_bound), "bank", question_type_for(dim, phase))

        midpoint = quantize((st.lower_bound + st.upper_bound) / 2.0)
        use_generation = st.range <= BANK_RANGE_MAX or st.question_count >= BANK_COUNT_MAX
        source = "generate" if use_generation else "bank"
        return Target(dim, midpoint, source, question_type_for(dim, phase))

    def _from_bank(self, target: Target, asked: Sequence[str]) -> Optional[Question]:
        if self.store is None:
            return None
        return self.store.find(target.dimension, quantize(target.target_difficulty), asked)

    def _from_generator(self, target: Target, recent_texts: Sequence[str]) -> Question:
        if self.generator is None:
            raise CollaboratorError("no question generator configured", source="generator")
        recent = list(recent_texts)[-RECENT_TEXTS_LIMIT:]
        attempts = GENERATION_RETRIES + 1
        for attempt in range(1, attempts + 1):
            try:
                q = self.generator.generate(
                    target.dimension, quantize(target.target_difficulty), target.question_type, recent
                )
            except CollaboratorError as e:
                if attempt >= attempts:
                    raise
                log.warning("generation failed attempt=%d dimension=%s: %s", attempt, target.dimension, e)
                continue
            q.source = "generate"
            return q
        raise CollaboratorError("generation produced no question", source="generator")

    def resolve(self, target: Target, asked: List[str], recent_texts: Sequence[str] = ()) -> Question:
        """Concrete question for ``target``; records its id in ``asked``.

        A bank miss always falls through to generation. Generation preferred
        without a configured generator falls back to the bank.
        """

        q: Optional[Question] = None
        if target.source == "bank" or self.generator is None:
            q = self._from_bank(target, asked)
            if q is None:
                log.info(
                    "bank miss dimension=%s difficulty=%d excluded=%d; generating",
                    target.dimension, target.target_difficulty, len(asked),
                )
        if q is None:
            q = self._from_generator(target, recent_texts)
        if q.id in asked:
            raise CollaboratorError(f"question {q.id} was already asked", source="generator")
        asked.append(q.id)
        return q
