# autoplay.py
from __future__ import annotations
import argparse, os, json, random, datetime
from dataclasses import asdict
from typing import Any, Dict, Optional
from assess_core.question_bank import QuestionStore, load_bank
from assess_core.report_html import render_report_html
from assess_core.templates import TemplateGenerator
from assess_core.config import DEBUG_SEED
from assess_core.types import DIMENSIONS, Question, Result

def _wrong_choice(q: Question) -> int:
    n = len(q.choices or [])
    ci = int(q.correct_index or 0)
    return (ci + 1) % n if n >= 2 else 0

def _correct_code(q: Question) -> str:
    reqs = "\n".join(f"// {r}" for r in (q.requirements or []))
    return f"{q.starter_code or ''}\n{reqs}\nvoid tick() {{\n  if (millis() > 0) digitalWrite(13, HIGH);\n}}\n"

def _answer_for(q: Question, knows: bool) -> Any:
    if q.type == "multiple_choice":
        return int(q.correct_index or 0) if knows else _wrong_choice(q)
    if q.type == "one_liner":
        return q.expected_answer if knows else "no idea"
    if q.type == "trace":
        return q.trace_answer if knows else "I don't know"
    return _correct_code(q) if knows else "pass"

def _knows(profile: str, q: Question, levels: Dict[str, float], rng: random.Random) -> bool:
    if profile == "perfect": return True
    if profile == "all-wrong": return False
    # hidden true level: reliable below it, a coin flip at it, wrong above it
    true_level = levels.get(q.dimension, 3.0)
    if q.difficulty < true_level: return True
    if q.difficulty == true_level: return rng.random() < 0.5
    return False

def simulate(profile: str = "perfect", levels: Optional[Dict[str, float]] = None, seed: int = 1337,
             store: Optional[QuestionStore] = None, generator=None) -> Result:
    """Drive one offline session to completion with a simulated learner."""
    from assess_core.engine import AdaptiveSession
    rng = random.Random(seed)
    levels = dict(levels or {})
    store = store if store is not None else QuestionStore(load_bank(), rng=random.Random(seed))
    if generator is None:
        generator = TemplateGenerator(random.Random(seed))
    sess = AdaptiveSession(f"auto_{profile}_{seed}", f"autoplay:{profile}", store=store, generator=generator)

    answered = 0
    while True:
        q = sess.next_question()
        if q is None: break
        if rng.random() < 0.2:
            sess.request_hint(q.id, rng.choice(sorted(q.hints) or ["conceptual"]), time_into_question_ms=rng.randint(5_000, 150_000))
        spent = rng.randint(8_000, 90_000)
        sess.answer_current(q.id, _answer_for(q, _knows(profile, q, levels, rng)), time_ms=spent,
                            time_to_first_action_ms=rng.randint(1_000, 8_000))
        answered += 1
    if answered <= 0: raise RuntimeError("Driver answered 0 questions.")
    return sess.finalize()

def _parse_levels(raw: str) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for part in (raw or "").split(","):
        if not part.strip(): continue
        k, _, v = part.partition("=")
        if k.strip() not in DIMENSIONS:
            raise SystemExit(f"unknown dimension {k.strip()!r}; expected one of {', '.join(DIMENSIONS)}")
        out[k.strip()] = float(v)
    return out

def main():
    ap = argparse.ArgumentParser(description="Run a simulated learner through an offline assessment.")
    ap.add_argument("--profile", choices=["perfect", "all-wrong", "level"], default="perfect")
    ap.add_argument("--levels", default="", help="hidden levels, e.g. low_level=2,control_flow=4")
    ap.add_argument("--seed", type=int, default=DEBUG_SEED if DEBUG_SEED is not None else 1337)
    ap.add_argument("--json", action="store_true", help="print the result JSON instead of writing HTML")
    a = ap.parse_args()

    res = simulate(a.profile, _parse_levels(a.levels), a.seed)
    d = asdict(res)
    for s in res.dimension_scores:
        print(f"{s.dimension:14s} level={s.estimated_level} conf={s.confidence:.2f} "
              f"bounds=[{s.lower_bound:.2f}, {s.upper_bound:.2f}] n={s.questions_answered}")
    print(f"questions={res.questions_answered} reason={res.completion_reason}")
    if a.json:
        print(json.dumps(d, indent=2))
        return
    ts = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    os.makedirs("reports", exist_ok=True)
    path = os.path.join("reports", f"auto_{a.profile}_{ts}.html")
    with open(path, "w", encoding="utf-8") as f:
        f.write(render_report_html(d))
    print(f"Report: {path}")

if __name__ == "__main__":
    main()
