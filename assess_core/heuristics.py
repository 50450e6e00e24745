# assess_core/heuristics.py
from __future__ import annotations
import re

_TOKEN_RX    = re.compile(r"[A-Za-z_][A-Za-z0-9_]*|0x[0-9a-fA-F]+|0b[01]+|\d+")
_DEFLECT_RX  = re.compile(r"\b(i\s*don'?t\s*know|no\s*idea|pass|skip)\b", re.I)
_API_RX      = re.compile(r"\b(pinMode|digitalWrite|digitalRead|analogRead|analogWrite|millis|delay|Serial\.\w+)\b")
_STRUCT_RX   = re.compile(r"\b(void\s+setup|void\s+loop|if|else|for|while|return)\b")

def normalize(text: str) -> str:
    return re.sub(r"\s+", " ", (text or "").strip().lower())

def _tokens(text: str) -> set[str]:
    return {t.lower() for t in _TOKEN_RX.findall(text or "")}

def overlap(answer: str, expected: str) -> float:
    exp = _tokens(expected)
    if not exp: return 0.0
    return len(exp & _tokens(answer)) / len(exp)

def heuristic_trace_verdict(answer: str, expected: str) -> str:
    if not isinstance(answer, str) or not answer.strip(): return "wrong"
    if _DEFLECT_RX.search(answer): return "wrong"
    if normalize(answer) == normalize(expected): return "correct"
    if re.sub(r"\s", "", normalize(answer)) == re.sub(r"\s", "", normalize(expected)): return "correct"
    ov = overlap(answer, expected)
    if ov >= 0.9: return "correct"
    if ov >= 0.5: return "partial"
    return "wrong"

def heuristic_code_verdict(code: str, requirements: list[str] | None = None, starter: str | None = None) -> str:
    """Rough offline read of a code answer: API usage, structure, requirement coverage."""
    if not isinstance(code, str): return "wrong"
    c = code.strip()
    if not c or _DEFLECT_RX.search(c): return "wrong"
    if starter and normalize(c) == normalize(starter): return "wrong"

    score = 0.0
    if _API_RX.search(c):    score += 0.35
    if _STRUCT_RX.search(c): score += 0.25
    reqs = [r for r in (requirements or []) if r.strip()]
    if reqs:
        score += 0.40 * (sum(overlap(c, r) for r in reqs) / len(reqs))
    else:
        score += 0.20 if len(c.splitlines()) >= 3 else 0.0

    if score >= 0.75: return "correct"
    if score >= 0.40: return "partial"
    return "wrong"
