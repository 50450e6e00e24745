# assess_core/bounds.py
from __future__ import annotations
import copy
import logging
import math
from typing import Dict, List, Optional

from .types import DIMENSIONS, VERDICTS, AnswerOutcome, DimensionState, Profile
from .errors import InvalidOutcome
from .config import (
    SCALE_MIN,
    SCALE_MAX,
    CORRECT_MARGIN,
    CORRECT_STRETCH,
    DOING_WELL_ACC,
    PARTIAL_OFFSET,
    PARTIAL_SCALE,
    WRONG_MARGIN,
    LENIENT_ACC,
    LENIENT_MIN_COUNT,
    LENIENT_GAP,
    STRUGGLE_ACC,
    STRUGGLE_DROP,
    INVERSION_BIAS,
    ESTIMATE_HIGH_ACC,
    ESTIMATE_LOWER_WEIGHT_HIGH,
    ESTIMATE_LOWER_WEIGHT_LOW,
    CONF_W_RANGE,
    CONF_W_COUNT,
    CONF_W_ACC,
    CONF_FULL_COUNT,
    DEBUG_TRACE,
    TRACE_FIELDS,
)


log = logging.getLogger(__name__)


def _emit_trace(**values: object) -> None:
    if not DEBUG_TRACE:
        return
    ordered = []
    for key in TRACE_FIELDS:
        if key in values:
            ordered.append(f"{key}={values[key]}")
    if ordered:
        log.info("trace %s", " ".join(str(val) for val in ordered))


def _clamp(x: float) -> float:
    return max(float(SCALE_MIN), min(float(SCALE_MAX), float(x)))


def quantize(x: float) -> int:
    """Nearest grid point on the scale, halves rounded up."""

    return int(max(SCALE_MIN, min(SCALE_MAX, math.floor(float(x) + 0.5))))


def accuracy(state: DimensionState) -> float:
    if state.question_count <= 0:
        return 0.5
    return state.correct_count / float(state.question_count)


def estimated_level(state: DimensionState) -> int:
    w = ESTIMATE_LOWER_WEIGHT_HIGH if accuracy(state) > ESTIMATE_HIGH_ACC else ESTIMATE_LOWER_WEIGHT_LOW
    return quantize(state.lower_bound * w + state.upper_bound * (1.0 - w))


def confidence(state: DimensionState) -> float:
    """Blend of bound width, sample size and observed accuracy, in [0, 1].

    Width dominates sample size, which dominates raw accuracy.
    """

    span = float(SCALE_MAX - SCALE_MIN)
    range_conf = 1.0 - (state.upper_bound - state.lower_bound) / span
    count_conf = min(state.question_count / float(CONF_FULL_COUNT), 1.0)
    score = CONF_W_RANGE * range_conf + CONF_W_COUNT * count_conf + CONF_W_ACC * accuracy(state)
    return max(0.0, min(1.0, score))


def validate_outcome(outcome: AnswerOutcome) -> None:
    dims = tuple(outcome.dimensions or ())
    if not dims:
        raise InvalidOutcome("outcome targets no dimension")
    unknown = [d for d in dims if d not in DIMENSIONS]
    if unknown:
        raise InvalidOutcome(f"unknown dimension(s): {', '.join(map(str, unknown))}")
    try:
        diff = float(outcome.difficulty)
    except (TypeError, ValueError):
        raise InvalidOutcome(f"difficulty is not numeric: {outcome.difficulty!r}") from None
    if math.isnan(diff) or diff < SCALE_MIN or diff > SCALE_MAX:
        raise InvalidOutcome(f"difficulty {outcome.difficulty} outside [{SCALE_MIN}, {SCALE_MAX}]")
    if outcome.verdict not in VERDICTS:
        raise InvalidOutcome(f"unknown verdict: {outcome.verdict!r}")


def _apply_verdict(state: DimensionState, difficulty: float, verdict: str) -> Dict[str, object]:
    """Move one dimension's bounds toward the observed level."""

    lower_before, upper_before = state.lower_bound, state.upper_bound
    acc = accuracy(state)

    state.tested = True
    state.question_count += 1
    if verdict == "correct":
        state.correct_count += 1

    lower, upper = state.lower_bound, state.upper_bound
    d = float(difficulty)
    lenient = False
    struggling = False

    if verdict == "correct":
        lower = max(lower, d - CORRECT_MARGIN)
        if acc > DOING_WELL_ACC:
            upper = max(upper, min(float(SCALE_MAX), d + CORRECT_STRETCH))
    elif verdict == "partial":
        lower = max(lower, max(float(SCALE_MIN), (d - PARTIAL_OFFSET) * PARTIAL_SCALE))
        upper = min(upper, d + PARTIAL_OFFSET)
    else:
        if acc > LENIENT_ACC and state.question_count >= LENIENT_MIN_COUNT:
            lenient = True
            upper = min(upper, max(lower + LENIENT_GAP, d - WRONG_MARGIN))
        else:
            upper = min(upper, d - WRONG_MARGIN)
            if acc < STRUGGLE_ACC:
                struggling = True
                lower = min(lower, max(float(SCALE_MIN), d - STRUGGLE_DROP))

    lower, upper = _clamp(lower), _clamp(upper)
    inverted = lower > upper
    if inverted:
        avg = (lower + upper) / 2.0
        favored = lower if verdict == "correct" else upper
        point = _clamp(avg + INVERSION_BIAS * (favored - avg))
        log.warning(
            "bounds inverted lower=%.3f upper=%.3f verdict=%s difficulty=%.2f; collapsed to %.3f",
            lower, upper, verdict, d, point,
        )
        lower = upper = point

    state.lower_bound, state.upper_bound = lower, upper
    return {
        "difficulty": d,
        "verdict": verdict,
        "accuracy_before": round(acc, 4),
        "lower_before": lower_before,
        "upper_before": upper_before,
        "lower_after": lower,
        "upper_after": upper,
        "lenient": lenient,
        "struggling": struggling,
        "inverted": inverted,
    }


def apply_outcome(
    profile: Profile,
    outcome: AnswerOutcome,
    trace: Optional[List[Dict[str, object]]] = None,
) -> Profile:
    """Return a new profile with every targeted dimension updated.

    The input profile is left untouched; an invalid outcome raises
    ``InvalidOutcome`` before anything is copied. When ``trace`` is given,
    one metrics dict per updated dimension is appended to it.
    """

    validate_outcome(outcome)
    updated = copy.deepcopy(profile)
    seen: set[str] = set()
    for dim in outcome.dimensions:
        if dim in seen:
            continue
        seen.add(dim)
        metrics = _apply_verdict(updated.dimensions[dim], float(outcome.difficulty), outcome.verdict)
        metrics["dimension"] = dim
        metrics["question_id"] = outcome.question_id
        log.debug(
            "bound_update dimension=%s question=%s d=%.2f verdict=%s acc=%.2f [%.2f, %.2f]->[%.2f, %.2f]",
            dim,
            outcome.question_id,
            metrics["difficulty"],
            outcome.verdict,
            metrics["accuracy_before"],
            metrics["lower_before"],
            metrics["upper_before"],
            metrics["lower_after"],
            metrics["upper_after"],
        )
        _emit_trace(**metrics)
        if trace is not None:
            trace.append(metrics)
    return updated


def new_profile(session_id: str, learner_name: Optional[str] = None, started_at: Optional[str] = None) -> Profile:
    return Profile(session_id=session_id, learner_name=learner_name, started_at=started_at)
