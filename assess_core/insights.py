# assess_core/insights.py
from __future__ import annotations
from collections import Counter
from statistics import mean
from typing import Dict, Iterable, List, Sequence

from .types import DimensionScore, HintEvent, HintProfile, TimeMetrics, TimingProfile
from .config import (
    HINT_QUICK_SEC, HINT_RELUCTANT_SEC, HINT_HIGH_EFFECT, HINT_MID_EFFECT,
    FAST_ANSWER_SEC, RUSHED_FAST_SHARE, RUSHED_MAX_ACC, PROFILE_SAMPLE_SIZE,
    PACE_QUICK_SEC, PACE_SLOW_SEC, GROWTH_LEVEL,
)

_LEARNING_MODE = {
    "example": "pattern_matching",
    "conceptual": "theory_first",
    "structural": "needs_scaffolding",
}

_MODE_TEXT = {
    "pattern_matching": "learns best through examples and pattern recognition",
    "theory_first": "prefers understanding concepts before implementation",
    "needs_scaffolding": "benefits from structured, step-by-step guidance",
    "syntax_focused": "primarily needs syntax reference rather than conceptual help",
}

_REPORT_STYLE = {"quick_to_ask": "hint-dependent", "reluctant": "self-reliant", "balanced": "balanced"}


def _help_style(avg_sec: float) -> str:
    if avg_sec < HINT_QUICK_SEC: return "quick_to_ask"
    if avg_sec > HINT_RELUCTANT_SEC: return "reluctant"
    return "balanced"


def analyze_hints(events: Iterable[HintEvent]) -> HintProfile:
    """Aggregate a finished session's hint events.

    Returns the documented defaults for an empty sequence.
    """

    evs = list(events)
    if not evs:
        return HintProfile()

    avg_sec = mean(float(e.time_into_question_ms or 0) for e in evs) / 1000.0

    per_cat: Dict[str, List[int]] = {}
    for e in evs:
        stats = per_cat.setdefault(e.category, [0, 0])
        stats[1] += 1
        if e.outcome == "answered_correctly":
            stats[0] += 1

    # strict > keeps the first category seen on ties
    best_cat, best_rate = "none", 0.0
    for cat, (ok, total) in per_cat.items():
        rate = ok / total if total else 0.0
        if rate > best_rate:
            best_cat, best_rate = cat, rate

    dist = Counter(e.category for e in evs)
    most_used = dist.most_common(1)[0][0] if dist else "conceptual"
    mode = _LEARNING_MODE.get(most_used, "syntax_focused")

    correct = sum(1 for e in evs if e.outcome == "answered_correctly")
    return HintProfile(
        help_seeking_style=_help_style(avg_sec),
        most_effective_category=best_cat,
        learning_mode=mode,
        hint_effectiveness=correct / len(evs),
        total_hints=len(evs),
        avg_time_to_hint_sec=avg_sec,
        category_distribution=dict(dist),
    )


def analyze_timing(metrics: Iterable[TimeMetrics]) -> TimingProfile:
    rows = list(metrics)
    if not rows:
        return TimingProfile()
    firsts = [m.time_to_first_action_ms for m in rows if m.time_to_first_action_ms is not None]
    hinted = sum(1 for m in rows if m.time_to_first_hint_ms is not None)
    return TimingProfile(
        questions=len(rows),
        avg_total_sec=mean(m.total_ms for m in rows) / 1000.0,
        avg_first_action_sec=(mean(firsts) / 1000.0) if firsts else 0.0,
        hinted_fraction=hinted / len(rows),
    )


def report_help_style(profile: HintProfile) -> str:
    if profile.total_hints <= 0:
        return "self-reliant"
    return _REPORT_STYLE.get(profile.help_seeking_style, "balanced")


def hint_narrative(profile: HintProfile) -> str:
    if profile.total_hints == 0:
        return ("Completed the assessment without requesting hints, "
                "showing independence and confidence in problem-solving.")

    parts: List[str] = []
    secs = round(profile.avg_time_to_hint_sec)
    if profile.help_seeking_style == "quick_to_ask":
        parts.append(f"Seeks help early (avg {secs}s into a question).")
    elif profile.help_seeking_style == "reluctant":
        parts.append(f"Works independently for a long stretch (avg {secs}s) before asking for a hint.")
    else:
        parts.append("Asks for hints after a reasonable attempt.")

    parts.append(f"Learning style: {_MODE_TEXT.get(profile.learning_mode, profile.learning_mode)}.")

    pct = round(profile.hint_effectiveness * 100)
    if profile.hint_effectiveness > HINT_HIGH_EFFECT:
        parts.append(f"Hints are highly effective ({pct}% lead to a correct answer).")
    elif profile.hint_effectiveness > HINT_MID_EFFECT:
        parts.append(f"Hints are moderately effective ({pct}% success).")
    else:
        parts.append(f"Struggles to apply hints ({pct}% success); may need more fundamental instruction.")

    if profile.most_effective_category != "none":
        parts.append(f"Most responsive to {profile.most_effective_category} hints.")
    return " ".join(parts)


PROFILE_KEYS = (
    "overall_strength",
    "areas_for_improvement",
    "learning_style_observations",
    "problem_solving_approach",
    "code_quality",
)


def answer_summary(metrics: Iterable[TimeMetrics]) -> Dict[str, object]:
    """Verdict counts and pacing over all answers, with the rushed-submission flag.

    A session counts as rushed when more than half the answers took under
    ``FAST_ANSWER_SEC`` and accuracy stayed below ``RUSHED_MAX_ACC``.
    """

    rows = list(metrics)
    n = len(rows)
    secs = [m.total_ms / 1000.0 for m in rows]
    correct = sum(1 for m in rows if m.verdict == "correct")
    partial = sum(1 for m in rows if m.verdict == "partial")
    fast = sum(1 for s in secs if s < FAST_ANSWER_SEC)
    acc = correct / n if n else 0.0
    return {
        "questions": n,
        "correct": correct,
        "partial": partial,
        "wrong": n - correct - partial,
        "accuracy": acc,
        "avg_sec": mean(secs) if secs else 0.0,
        "min_sec": min(secs) if secs else 0.0,
        "max_sec": max(secs) if secs else 0.0,
        "fast_answers": fast,
        "rushed": n > 0 and fast > n * RUSHED_FAST_SHARE and acc < RUSHED_MAX_ACC,
    }


def sample_answers(metrics: Sequence[TimeMetrics], size: int = PROFILE_SAMPLE_SIZE) -> List[TimeMetrics]:
    """First and last three answers plus evenly spaced ones from the middle."""
    rows = list(metrics)
    if len(rows) <= size:
        return rows
    edge = min(3, size // 2)
    middle = rows[edge:-edge] if edge else rows
    picks = size - 2 * edge
    spaced = [middle[i * len(middle) // picks] for i in range(min(picks, len(middle)))]
    return rows[:edge] + rows[-edge:] + spaced


def rule_profile(scores: Sequence[DimensionScore], summary: Dict[str, object],
                 hints: HintProfile) -> Dict[str, object]:
    """Learner profile built from the numbers alone; used when no provider is configured."""

    tested = [s for s in scores if s.questions_answered > 0]
    n = int(summary.get("questions", 0) or 0)
    avg = float(summary.get("avg_sec", 0.0) or 0.0)
    rushed = bool(summary.get("rushed"))

    if rushed:
        strength = "This appears to be a rushed submission rather than a genuine assessment attempt."
    elif not tested:
        strength = "Too few answers to identify a strength."
    else:
        best = max(tested, key=lambda s: (s.estimated_level, s.accuracy))
        strength = (f"Strongest in {best.dimension} (level {best.estimated_level}/5, "
                    f"{round(best.accuracy * 100)}% accuracy).")

    areas = [f"{s.dimension}: level {s.estimated_level}/5 with {round(s.accuracy * 100)}% accuracy"
             for s in tested if s.estimated_level <= GROWTH_LEVEL]

    if rushed:
        approach = (f"Answered {summary.get('fast_answers')}/{n} questions in under "
                    f"{FAST_ANSWER_SEC:.0f}s with low accuracy; likely guessing without reading.")
    elif n == 0:
        approach = "No answers recorded."
    elif avg < PACE_QUICK_SEC:
        approach = f"Moves quickly through questions (avg {avg:.1f}s)."
    elif avg > PACE_SLOW_SEC:
        approach = f"Deliberates at length before answering (avg {avg:.1f}s)."
    else:
        approach = f"Works at a steady pace (avg {avg:.1f}s per question)."

    return {
        "overall_strength": strength,
        "areas_for_improvement": areas,
        "learning_style_observations": hint_narrative(hints),
        "problem_solving_approach": approach,
        "code_quality": (f"{summary.get('correct', 0)} correct, {summary.get('partial', 0)} partial and "
                         f"{summary.get('wrong', 0)} wrong answers across {n} questions."),
        "rushed": rushed,
        "source": "rules",
    }
