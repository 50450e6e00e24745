"""JSON-file persistence for assessment sessions and finished reports.

Each session is one document (profile, asked ids, hint events, timing,
open question) replaced atomically, so a bound update and the session's
question counter are always stored together.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional


log = logging.getLogger(__name__)

DATA_ROOT = Path(os.getenv("DATA_DIR", "data")).resolve()
SESSIONS_DIR = DATA_ROOT / "sessions"
REPORTS_DIR = DATA_ROOT / "reports"
REPORT_INDEX_PATH = DATA_ROOT / "reports_index.json"

_LOCK = threading.Lock()


def _ensure_dirs() -> None:
    SESSIONS_DIR.mkdir(parents=True, exist_ok=True)
    REPORTS_DIR.mkdir(parents=True, exist_ok=True)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log.warning("unreadable json %s: %s", path, e)
        return default


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp.replace(path)


def _safe_id(value: str) -> str:
    if not value or any(ch in value for ch in "/\\") or value.startswith("."):
        raise KeyError(value)
    return value


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def save_session(session_id: str, doc: Dict[str, Any]) -> None:
    _ensure_dirs()
    doc = dict(doc)
    doc["updated_at"] = utcnow_iso()
    with _LOCK:
        _write_json(SESSIONS_DIR / f"{_safe_id(session_id)}.json", doc)


def load_session(session_id: str) -> Optional[Dict[str, Any]]:
    try:
        path = SESSIONS_DIR / f"{_safe_id(session_id)}.json"
    except KeyError:
        return None
    return _read_json(path, None)


def update_session(session_id: str, fn: Callable[[Dict[str, Any]], Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Read-modify-write one session document under the store lock."""

    _ensure_dirs()
    path = SESSIONS_DIR / f"{_safe_id(session_id)}.json"
    with _LOCK:
        doc = _read_json(path, None)
        if doc is None:
            return None
        doc = fn(doc)
        doc["updated_at"] = utcnow_iso()
        _write_json(path, doc)
    return doc


def delete_session(session_id: str) -> bool:
    try:
        path = SESSIONS_DIR / f"{_safe_id(session_id)}.json"
    except KeyError:
        return False
    with _LOCK:
        if not path.exists():
            return False
        path.unlink()
    return True


def list_sessions() -> List[str]:
    if not SESSIONS_DIR.exists():
        return []
    return sorted(p.stem for p in SESSIONS_DIR.glob("*.json"))

# ---- Reports ----
# reports_index.json maps report id -> summary (sessionId, learnerName,
# createdAt, ...); the full report lives in reports/{id}.json.

def _report_path(report_id: str) -> Path:
    return REPORTS_DIR / f"{_safe_id(report_id)}.json"


def _index() -> Dict[str, Dict[str, Any]]:
    raw = _read_json(REPORT_INDEX_PATH, {})
    return raw if isinstance(raw, dict) else {}


def save_report(report_id: str, report: Dict[str, Any], metadata: Dict[str, Any]) -> None:
    """Write the report, then register it in the index."""

    _ensure_dirs()
    path = _report_path(report_id)
    with _LOCK:
        _write_json(path, report)
        idx = _index()
        idx[report_id] = dict(metadata)
        _write_json(REPORT_INDEX_PATH, idx)


def load_report(report_id: str) -> Optional[Dict[str, Any]]:
    try:
        return _read_json(_report_path(report_id), None)
    except KeyError:
        return None


def delete_report(report_id: str) -> bool:
    try:
        path = _report_path(report_id)
    except KeyError:
        return False
    with _LOCK:
        idx = _index()
        indexed = idx.pop(report_id, None) is not None
        if indexed:
            _write_json(REPORT_INDEX_PATH, idx)
        on_disk = path.exists()
        if on_disk:
            path.unlink()
    return indexed or on_disk


def list_reports(learner_name: Optional[str] = None) -> List[Dict[str, Any]]:
    """Index entries, newest first; optionally one learner's only."""

    rows = [
        {**{k: v for k, v in meta.items() if k != "id"}, "id": rid}
        for rid, meta in _index().items()
        if learner_name is None or meta.get("learnerName") == learner_name
    ]
    return sorted(rows, key=lambda r: str(r.get("createdAt") or ""), reverse=True)


def find_report_by_session(session_id: str) -> Optional[Dict[str, Any]]:
    matches = [rid for rid, meta in _index().items() if meta.get("sessionId") == session_id]
    for rid in matches:
        report = load_report(rid)
        if report:
            return report
    return None
