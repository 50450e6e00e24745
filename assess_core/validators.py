from __future__ import annotations
from typing import Any, Dict, List, Optional
from .types import Question, DIMENSIONS, QUESTION_TYPES, HINT_CATEGORIES
from .config import SCALE_MIN, SCALE_MAX

_REQUIRED = {
    "multiple_choice": ("choices", "correct_index"),
    "one_liner": ("expected_answer",),
    "trace": ("code_to_trace", "trace_answer"),
    "code": ("starter_code",),
}

def _str_list(v: Any) -> List[str]:
    if v is None: return []
    if not isinstance(v, list): raise ValueError(f"expected a list, got {type(v).__name__}")
    return [str(x) for x in v]

def question_problems(raw: Dict[str, Any]) -> List[str]:
    """Everything wrong with a raw question document; empty when usable."""
    out: List[str] = []
    qtype = raw.get("type")
    if qtype not in QUESTION_TYPES: out.append(f"unknown type {qtype!r}")
    if raw.get("dimension") not in DIMENSIONS: out.append(f"unknown dimension {raw.get('dimension')!r}")
    for d in raw.get("also_targets") or []:
        if d not in DIMENSIONS: out.append(f"unknown also_targets entry {d!r}")
    if not str(raw.get("prompt") or "").strip(): out.append("empty prompt")
    try:
        diff = int(raw.get("difficulty", 0))
        if not SCALE_MIN <= diff <= SCALE_MAX: out.append(f"difficulty {diff} outside [{SCALE_MIN}, {SCALE_MAX}]")
    except (TypeError, ValueError):
        out.append(f"difficulty is not an integer: {raw.get('difficulty')!r}")
    for key in _REQUIRED.get(qtype, ()):
        if raw.get(key) in (None, "", []): out.append(f"{qtype} question missing {key}")
    if qtype == "multiple_choice":
        choices = raw.get("choices")
        if isinstance(choices, list):
            if len(choices) < 2: out.append("multiple choice needs at least two choices")
            try:
                idx = int(raw.get("correct_index"))
                if not 0 <= idx < len(choices): out.append(f"correct_index {idx} out of range")
            except (TypeError, ValueError):
                out.append("correct_index is not an integer")
        elif choices is not None:
            out.append("choices must be a list")
    hints = raw.get("hints") or {}
    if not isinstance(hints, dict):
        out.append("hints must be an object keyed by category")
    else:
        for cat in hints:
            if cat not in HINT_CATEGORIES: out.append(f"unknown hint category {cat!r}")
    return out

def validate_question(raw: Dict[str, Any], *, default_id: Optional[str] = None) -> Question:
    """Build a fully-formed Question or raise ValueError listing the problems."""
    problems = question_problems(raw)
    if problems:
        raise ValueError("; ".join(problems))
    qid = str(raw.get("id") or default_id or "")
    if not qid: raise ValueError("question has no id")
    qtype = raw["type"]
    return Question(
        id=qid,
        dimension=raw["dimension"],
        type=qtype,
        prompt=str(raw["prompt"]).strip(),
        difficulty=int(raw["difficulty"]),
        source=str(raw.get("source") or "bank"),
        also_targets=[d for d in _str_list(raw.get("also_targets")) if d != raw["dimension"]],
        choices=_str_list(raw.get("choices")) if qtype == "multiple_choice" else None,
        correct_index=int(raw["correct_index"]) if qtype == "multiple_choice" else None,
        expected_answer=str(raw["expected_answer"]) if qtype == "one_liner" else None,
        code_to_trace=str(raw["code_to_trace"]) if qtype == "trace" else None,
        trace_answer=str(raw["trace_answer"]) if qtype == "trace" else None,
        starter_code=str(raw["starter_code"]) if qtype == "code" else None,
        requirements=_str_list(raw.get("requirements")) if qtype == "code" else None,
        hints={str(k): str(v) for k, v in (raw.get("hints") or {}).items()},
        tags=_str_list(raw.get("tags")),
        usage_count=int(raw.get("usage_count", 0) or 0),
    )
