from __future__ import annotations
from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from dataclasses import asdict
import logging, os, threading, uuid, weakref, typing as t

# ---- Engine imports ----
from assess_core import question_bank
from assess_core.engine import AdaptiveSession
from assess_core.errors import CollaboratorError, InvalidOutcome, QuestionMismatch, SessionNotFound
from assess_core.llm_bridge import LLMBridge, backend_in_use, usage_summary
from assess_core.llm_cfg import azure_configured
from assess_core.templates import TemplateGenerator
from assess_core.types import DIMENSIONS
from assess_core.config import load_config, get_backend, AUDIT_EXPORT_ENABLED, OFFLINE_TEMPLATES
from assess_core.audit_export import to_json as audit_to_json, to_csv as audit_to_csv
from assess_core.report_html import render_report_html
from . import storage

log = logging.getLogger(__name__)

app = FastAPI(title="Adaptive Assessment API")

@app.get("/")
def root():
    return {"status": "ok", "service": "adaptive-assess-api"}

ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

# ---- Error mapping ----
@app.exception_handler(CollaboratorError)
def _collaborator_error(request: Request, exc: CollaboratorError):
    log.warning("collaborator failure path=%s source=%s: %s", request.url.path, exc.source, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc), "source": exc.source, "retryable": True})

@app.exception_handler(QuestionMismatch)
def _question_mismatch(request: Request, exc: QuestionMismatch):
    return JSONResponse(status_code=409, content={"detail": str(exc)})

@app.exception_handler(InvalidOutcome)
def _invalid_outcome(request: Request, exc: InvalidOutcome):
    return JSONResponse(status_code=400, content={"detail": str(exc)})

@app.exception_handler(SessionNotFound)
def _session_not_found(request: Request, exc: SessionNotFound):
    return JSONResponse(status_code=404, content={"detail": f"session not found: {exc.args[0] if exc.args else ''}"})

# ---- Schemas ----
class StartReq(BaseModel):
    learner_name: str | None = None
    llm: str | None = None   # "none" | "azure" | "ollama"; default from config

class AnswerReq(BaseModel):
    question_id: str
    answer: int | str
    time_ms: int = 0
    time_to_first_action_ms: int | None = None

class HintReq(BaseModel):
    question_id: str
    category: str = "conceptual"
    time_into_question_ms: int = 0
    current_answer: str | None = None

# ---- Helpers ----
_STORE: question_bank.QuestionStore | None = None
_STORE_LOCK = threading.Lock()
# entries vanish once no request holds the lock
_SESSION_LOCKS: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_LOCKS_GUARD = threading.Lock()


def _store() -> question_bank.QuestionStore:
    global _STORE
    with _STORE_LOCK:
        if _STORE is None:
            _STORE = question_bank.QuestionStore(question_bank.load_bank())
        return _STORE


def _session_lock(sid: str) -> threading.Lock:
    with _LOCKS_GUARD:
        lock = _SESSION_LOCKS.get(sid)
        if lock is None:
            lock = threading.Lock()
            _SESSION_LOCKS[sid] = lock
        return lock


def _bridge(backend: str | None, sid: str) -> LLMBridge | None:
    if not backend or backend == "none":
        return None
    return LLMBridge(backend, sid)


def _collaborators(backend: str | None, sid: str) -> dict[str, t.Any]:
    b = _bridge(backend, sid)
    gen = b if b is not None else (TemplateGenerator() if OFFLINE_TEMPLATES else None)
    return {"store": _store(), "generator": gen, "grader": b, "hinter": b, "profiler": b}


def _load(sid: str) -> tuple[AdaptiveSession, dict[str, t.Any]]:
    doc = storage.load_session(sid)
    if doc is None:
        raise SessionNotFound(sid)
    backend = doc.get("backend")
    return AdaptiveSession.from_snapshot(doc, **_collaborators(backend, sid)), doc


def _save(sess: AdaptiveSession, doc: dict[str, t.Any]) -> None:
    snap = sess.to_snapshot()
    snap["backend"] = doc.get("backend")
    snap["report_id"] = doc.get("report_id")
    snap["created_at"] = doc.get("created_at")
    storage.save_session(sess.session_id, snap)


def _public(q) -> dict[str, t.Any] | None:
    return q.public_dict() if q is not None else None


def _build_report(sess: AdaptiveSession) -> dict[str, t.Any]:
    rid = str(uuid.uuid4())
    created = storage.utcnow_iso()
    report = asdict(sess.finalize())
    meta = dict(report.get("meta") or {})
    meta.update(sessionId=sess.session_id, reportId=rid, createdAt=created)
    report["meta"] = meta
    report["id"] = rid
    report["reportId"] = rid
    report["created_at"] = created
    metadata = {
        "sessionId": sess.session_id,
        "learnerName": report.get("learner_name"),
        "createdAt": created,
        "completionReason": report.get("completion_reason"),
        "questionsAnswered": report.get("questions_answered"),
        "levels": {d["dimension"]: d["estimated_level"] for d in report.get("dimension_scores", [])},
    }
    storage.save_report(rid, report, metadata)
    storage.update_session(sess.session_id, lambda doc: {**doc, "report_id": rid})
    return report

# ---- Health ----
@app.get("/health")
def health():
    cfg = load_config()
    return {
        "llm_backend": get_backend(cfg) or backend_in_use(),
        "azure_config_present": azure_configured(),
        "bank_size": len(_store()),
        "audit_export": AUDIT_EXPORT_ENABLED,
    }

# ---- Session endpoints ----
@app.post("/session/start")
def start(req: StartReq):
    sid = str(uuid.uuid4())
    backend = req.llm if req.llm is not None else (get_backend(load_config()) or "none")
    if backend not in ("none", "azure", "ollama"):
        raise HTTPException(422, f"unsupported llm backend: {backend}")
    sess = AdaptiveSession(sid, req.learner_name, **_collaborators(backend, sid))
    doc = {"backend": backend, "created_at": storage.utcnow_iso()}
    with _session_lock(sid):
        q = sess.next_question()
        _save(sess, doc)
    log.info("session started sid=%s backend=%s", sid, backend)
    return {"session_id": sid, "phase": sess.phase, "question": _public(q)}


@app.get("/session/{sid}")
def get_session(sid: str):
    sess, doc = _load(sid)
    out = sess.status()
    out["report_id"] = doc.get("report_id")
    return out


@app.get("/session/{sid}/next")
def next_question(sid: str):
    with _session_lock(sid):
        sess, doc = _load(sid)
        q = sess.next_question()
        _save(sess, doc)
        report_id = doc.get("report_id")
        if sess.completed and not report_id:
            report_id = _build_report(sess)["id"]
    return {"done": q is None, "phase": sess.phase, "question": _public(q), "report_id": report_id}


@app.post("/session/{sid}/answer")
def answer(sid: str, req: AnswerReq):
    with _session_lock(sid):
        sess, doc = _load(sid)
        turn = sess.answer_current(req.question_id, req.answer, req.time_ms, req.time_to_first_action_ms)
        _save(sess, doc)

        nxt, next_error, report_id = None, None, None
        if sess.completed:
            report_id = _build_report(sess)["id"]
        else:
            try:
                nxt = sess.next_question()
            except CollaboratorError as e:
                # the answer is already stored; the client retries via /next
                log.warning("next question unavailable sid=%s: %s", sid, e)
                next_error = {"detail": str(e), "source": e.source, "retryable": True}
            else:
                _save(sess, doc)
                if sess.completed:
                    report_id = _build_report(sess)["id"]
    return {**turn, "done": sess.completed, "question": _public(nxt), "next_error": next_error, "report_id": report_id}


@app.post("/session/{sid}/hint")
def hint(sid: str, req: HintReq):
    with _session_lock(sid):
        sess, doc = _load(sid)
        try:
            ev = sess.request_hint(req.question_id, req.category, req.time_into_question_ms, req.current_answer)
        except QuestionMismatch:
            raise
        except ValueError as e:
            raise HTTPException(422, str(e))
        _save(sess, doc)
    return {"hint_id": ev.id, "category": ev.category, "text": ev.text, "hints_used": sess.profile.hints_used}


@app.post("/session/{sid}/finish")
def finish(sid: str):
    with _session_lock(sid):
        sess, doc = _load(sid)
        if doc.get("report_id"):
            stored = storage.load_report(doc["report_id"])
            if stored:
                return stored
        sess.finish()
        _save(sess, doc)
        return _build_report(sess)


@app.get("/session/{sid}/report/html")
def report_html_endpoint(sid: str):
    stored = storage.find_report_by_session(sid)
    if stored:
        return {"html": render_report_html(stored, stored.get("id"))}
    sess, _doc = _load(sid)
    return {"html": render_report_html(asdict(sess.finalize()))}

# ---- Reports ----
@app.get("/reports")
def list_reports(learner_name: str | None = Query(None, description="Only reports for this learner")):
    return {"reports": storage.list_reports(learner_name)}


@app.get("/reports/{report_id}")
def get_report(report_id: str):
    report = storage.load_report(report_id)
    if not report:
        raise HTTPException(404, "report not found")
    return report


@app.delete("/reports/{report_id}")
def delete_report_endpoint(report_id: str):
    ok = storage.delete_report(report_id)
    if not ok:
        raise HTTPException(404, "report not found")
    return {"ok": True}


@app.get("/results/{report_id}/audit.json")
def get_audit_json(report_id: str):
    if not AUDIT_EXPORT_ENABLED:
        raise HTTPException(404, "audit export disabled")

    report = storage.load_report(report_id)
    if not report:
        raise HTTPException(404, "result not found")

    payload = audit_to_json(report.get("audit_events") or [])
    return {"result_id": report_id, **payload}


@app.get("/results/{report_id}/audit.csv")
def get_audit_csv(report_id: str):
    if not AUDIT_EXPORT_ENABLED:
        raise HTTPException(404, "audit export disabled")

    report = storage.load_report(report_id)
    if not report:
        raise HTTPException(404, "result not found")

    body = audit_to_csv(report.get("audit_events") or [])
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=\"{report_id}_audit.csv\""},
    )

# ---- Analytics ----
@app.get("/analytics/usage/{sid}")
def usage(sid: str):
    if storage.load_session(sid) is None:
        raise SessionNotFound(sid)
    return usage_summary(sid)

# ---- Question bank ----
@app.get("/questions")
def list_questions(dimension: str | None = None, difficulty: int | None = Query(None, ge=1, le=5)):
    if dimension is not None and dimension not in DIMENSIONS:
        raise HTTPException(422, f"unknown dimension: {dimension}")
    qs = _store().questions(dimension, difficulty)
    return {"questions": [q.to_dict() for q in qs], "count": len(qs)}


@app.get("/questions/stats/usage")
def question_usage():
    return _store().usage_stats()


@app.get("/questions/{question_id}")
def get_question(question_id: str):
    q = _store().get(question_id)
    if q is None:
        raise HTTPException(404, "question not found")
    return {"question": q.to_dict()}
