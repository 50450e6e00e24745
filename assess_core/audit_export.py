"""Audit trail rendering: one row per bound update, as JSON or CSV."""
from __future__ import annotations

import csv
import io
from typing import Any, Callable, Dict, Iterable, List


def _as_int(val: Any) -> int:
    try:
        return int(val)
    except (TypeError, ValueError):
        return 0


def _as_bound(val: Any) -> float:
    try:
        return round(float(val), 4)
    except (TypeError, ValueError):
        return 0.0


def _as_text(val: Any) -> str:
    return "" if val is None else str(val)


# column order is the CSV header order
_COLUMNS: Dict[str, Callable[[Any], Any]] = {
    "t": _as_text,
    "dimension": _as_text,
    "question_id": _as_text,
    "source": _as_text,
    "phase": _as_text,
    "difficulty": _as_bound,
    "verdict": _as_text,
    "lower_before": _as_bound,
    "upper_before": _as_bound,
    "lower_after": _as_bound,
    "upper_after": _as_bound,
    "latency_ms": _as_int,
}
_FIELDS = tuple(_COLUMNS)


def _row(event: Dict[str, Any] | None) -> Dict[str, Any]:
    event = event or {}
    return {name: coerce(event.get(name)) for name, coerce in _COLUMNS.items()}


def to_json(events: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    rows: List[Dict[str, Any]] = [_row(e) for e in events]
    return {"events": rows}


def to_csv(events: Iterable[Dict[str, Any]]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=_FIELDS)
    writer.writeheader()
    writer.writerows(_row(e) for e in events)
    return buf.getvalue()


__all__ = ["to_json", "to_csv"]
