from __future__ import annotations
import logging
import re
from typing import Any, Optional
from .types import Evaluation, Question
from .heuristics import normalize, heuristic_trace_verdict, heuristic_code_verdict

log = logging.getLogger(__name__)

_NEAR_MISS_CHARS = 10
_INT_RX = re.compile(r"^[+-]?(0x[0-9a-f]+|0b[01]+|b[01]+|\d+)$")
_WORD_VALUES = {"high": "1", "low": "0", "true": "1", "false": "0"}
_WORD_RX = re.compile(r"\b(high|low|true|false)\b")

def _as_int(text: str) -> Optional[int]:
    t = text.replace("_", "").replace("'", "")
    if not _INT_RX.match(t): return None
    sign = -1 if t.startswith("-") else 1
    t = t.lstrip("+-")
    if t.startswith("0x"): return sign * int(t[2:], 16)
    if t.startswith("0b"): return sign * int(t[2:], 2)
    if t.startswith("b"):  return sign * int(t[1:], 2)
    return sign * int(t, 10)

def _canonical(text: str) -> str:
    t = re.sub(r"\s", "", normalize(text)).rstrip(";")
    return _WORD_RX.sub(lambda m: _WORD_VALUES[m.group(1)], t)

def semantically_equal(answer: str, expected: str) -> bool:
    """Format-insensitive match for short answers.

    Whitespace and a trailing semicolon are ignored; hex, binary and decimal
    numerals compare by value; HIGH/LOW and true/false compare as 1/0.
    """
    a, e = _canonical(answer), _canonical(expected)
    if a == e: return True
    ai, ei = _as_int(a), _as_int(e)
    return ai is not None and ai == ei

def _multiple_choice(q: Question, raw: Any) -> Evaluation:
    correct_idx = int(q.correct_index if q.correct_index is not None else -1)
    try:
        chosen = int(str(raw).strip())
    except (TypeError, ValueError):
        chosen = None
    if chosen == correct_idx:
        return Evaluation("correct", "Correct!")
    choices = q.choices or []
    label = choices[correct_idx] if 0 <= correct_idx < len(choices) else f"option {correct_idx}"
    return Evaluation("wrong", f"Incorrect. The correct answer was: {label}")

def _one_liner(q: Question, raw: Any, grader) -> Evaluation:
    answer = str(raw if raw is not None else "")
    expected = q.expected_answer or ""
    if normalize(answer) == normalize(expected):
        return Evaluation("correct", "Correct!")
    if semantically_equal(answer, expected):
        return Evaluation("correct", "Correct! (alternative format accepted)")
    if grader is not None and abs(len(normalize(answer)) - len(normalize(expected))) < _NEAR_MISS_CHARS:
        return grader.grade(q, answer)
    return Evaluation("wrong", f"Expected: {expected}")

def evaluate(question: Question, raw_answer: Any, grader=None) -> Evaluation:
    """Verdict for one answer, dispatched on the question type.

    ``grader`` is anything with ``grade(question, answer) -> Evaluation``
    (the provider bridge). Its failures propagate; without one, trace and
    code answers fall back to the offline heuristics.
    """
    t = question.type
    if t == "multiple_choice":
        return _multiple_choice(question, raw_answer)
    if t == "one_liner":
        return _one_liner(question, raw_answer, grader)
    answer = str(raw_answer if raw_answer is not None else "")
    if grader is not None:
        return grader.grade(question, answer)
    if t == "trace":
        verdict = heuristic_trace_verdict(answer, question.trace_answer or "")
        fb = "Output matches." if verdict == "correct" else f"Expected output: {question.trace_answer}"
        return Evaluation(verdict, fb)
    if t == "code":
        verdict = heuristic_code_verdict(answer, question.requirements, question.starter_code)
        return Evaluation(verdict, {"correct": "Looks complete.",
                                    "partial": "On the right track; some requirements look unmet.",
                                    "wrong": "The approach does not address the requirements."}[verdict])
    log.warning("no evaluator for question type %s", t)
    return Evaluation("wrong", f"unsupported question type {t}")
