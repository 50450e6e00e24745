from __future__ import annotations

import importlib
import json
import sys

from fastapi.testclient import TestClient

from tests.conftest import build_synthetic_bank


_DEF_MODULES = [
    "assess_core.config",
    "api.storage",
    "api.app",
]


def _reload_app(tmp_path, monkeypatch) -> tuple[object, object]:
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    for name in _DEF_MODULES:
        if name in sys.modules:
            importlib.reload(sys.modules[name])
        else:
            __import__(name)
    storage = sys.modules["api.storage"]
    app_module = sys.modules["api.app"]

    import assess_core.question_bank as qb

    monkeypatch.setattr(qb, "load_bank", lambda: build_synthetic_bank())
    return storage, app_module


def _start(client: TestClient, **body) -> dict:
    resp = client.post("/session/start", json={"llm": "none", **body})
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_health_reports_bank_and_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("USE_LLM", raising=False)
    _storage, app_module = _reload_app(tmp_path, monkeypatch)
    client = TestClient(app_module.app)

    body = client.get("/health").json()
    assert body["bank_size"] == len(build_synthetic_bank())
    assert body["audit_export"] is True
    assert client.get("/").json()["status"] == "ok"


def test_session_flow_and_audit_exports(tmp_path, monkeypatch):
    storage, app_module = _reload_app(tmp_path, monkeypatch)
    client = TestClient(app_module.app)

    start = _start(client, learner_name="Ada")
    sid = start["session_id"]
    q = start["question"]
    assert start["phase"] == "exploration"
    assert q["type"] == "multiple_choice"
    assert "correct_index" not in q
    assert storage.load_session(sid) is not None

    turn = client.post(f"/session/{sid}/answer", json={"question_id": q["id"], "answer": 0, "time_ms": 9000})
    assert turn.status_code == 200
    body = turn.json()
    assert body["verdict"] == "correct"
    assert body["done"] is False
    assert body["next_error"] is None
    nxt = body["question"]
    assert nxt["dimension"] == "control_flow"

    hint = client.post(f"/session/{sid}/hint", json={"question_id": nxt["id"], "category": "conceptual",
                                                    "time_into_question_ms": 4000})
    assert hint.status_code == 200
    assert hint.json()["text"] == "Think about control_flow."
    assert hint.json()["hints_used"] == 1

    state = client.get(f"/session/{sid}").json()
    assert state["questions_answered"] == 1
    assert state["current_question"]["id"] == nxt["id"]

    finish = client.post(f"/session/{sid}/finish")
    assert finish.status_code == 200
    report = finish.json()
    report_id = report["id"]
    assert report["completion_reason"] == "manual"
    assert report["learner_name"] == "Ada"
    assert report["hint_profile"]["total_hints"] == 1

    again = client.post(f"/session/{sid}/finish").json()
    assert again["id"] == report_id

    listed = client.get("/reports", params={"learner_name": "Ada"}).json()["reports"]
    assert [r["id"] for r in listed] == [report_id]
    assert client.get("/reports", params={"learner_name": "Bob"}).json()["reports"] == []

    json_resp = client.get(f"/results/{report_id}/audit.json")
    assert json_resp.status_code == 200
    events = json_resp.json()["events"]
    assert len(events) == 1
    assert {"t", "dimension", "question_id", "verdict", "lower_after", "latency_ms"} <= set(events[0])
    assert events[0]["latency_ms"] == 9000

    csv_resp = client.get(f"/results/{report_id}/audit.csv")
    assert csv_resp.status_code == 200
    lines = [line for line in csv_resp.text.strip().splitlines() if line]
    assert len(lines) == len(events) + 1
    header = lines[0].split(",")
    assert header[0] == "t"
    assert header[-1] == "latency_ms"

    html = client.get(f"/session/{sid}/report/html").json()["html"]
    assert "Ada" in html
    assert f"/results/{report_id}/audit.csv" in html

    assert client.delete(f"/reports/{report_id}").json() == {"ok": True}
    assert client.get(f"/reports/{report_id}").status_code == 404


def test_session_completes_at_cap_and_stores_report(tmp_path, monkeypatch):
    _storage, app_module = _reload_app(tmp_path, monkeypatch)
    import assess_core.policy as policy

    monkeypatch.setattr(policy, "HARD_CAP", 2)
    client = TestClient(app_module.app)

    start = _start(client)
    sid, q = start["session_id"], start["question"]
    first = client.post(f"/session/{sid}/answer", json={"question_id": q["id"], "answer": 1}).json()
    assert first["done"] is False
    second = client.post(f"/session/{sid}/answer", json={"question_id": first["question"]["id"], "answer": 1}).json()
    assert second["done"] is True
    assert second["completion_reason"] == "hard_cap"
    assert second["question"] is None
    assert second["report_id"]

    report = client.get(f"/reports/{second['report_id']}").json()
    assert report["questions_answered"] == 2
    assert client.get(f"/session/{sid}/next").json()["report_id"] == second["report_id"]


def test_wrong_question_id_conflicts(tmp_path, monkeypatch):
    _storage, app_module = _reload_app(tmp_path, monkeypatch)
    client = TestClient(app_module.app)
    sid = _start(client)["session_id"]

    resp = client.post(f"/session/{sid}/answer", json={"question_id": "nope", "answer": 0})
    assert resp.status_code == 409
    assert client.get(f"/session/{sid}").json()["questions_answered"] == 0


def test_bad_hint_category_is_unprocessable(tmp_path, monkeypatch):
    _storage, app_module = _reload_app(tmp_path, monkeypatch)
    client = TestClient(app_module.app)
    start = _start(client)

    resp = client.post(f"/session/{start['session_id']}/hint",
                       json={"question_id": start["question"]["id"], "category": "telepathic"})
    assert resp.status_code == 422


def test_unknown_session_is_404(tmp_path, monkeypatch):
    _storage, app_module = _reload_app(tmp_path, monkeypatch)
    client = TestClient(app_module.app)
    assert client.get("/session/missing").status_code == 404
    assert client.post("/session/missing/answer", json={"question_id": "x", "answer": 0}).status_code == 404
    assert client.get("/analytics/usage/missing").status_code == 404


def test_unsupported_backend_is_rejected(tmp_path, monkeypatch):
    _storage, app_module = _reload_app(tmp_path, monkeypatch)
    client = TestClient(app_module.app)
    assert client.post("/session/start", json={"llm": "gpt-9"}).status_code == 422


def test_evaluator_outage_is_retryable(tmp_path, monkeypatch):
    _storage, app_module = _reload_app(tmp_path, monkeypatch)
    import assess_core.engine as engine
    from assess_core.errors import CollaboratorError

    client = TestClient(app_module.app)
    start = _start(client)
    sid, q = start["session_id"], start["question"]

    def _down(question, answer, grader=None):
        raise CollaboratorError("evaluator offline", source="evaluator")

    monkeypatch.setattr(engine, "evaluate", _down)
    resp = client.post(f"/session/{sid}/answer", json={"question_id": q["id"], "answer": 0})
    assert resp.status_code == 503
    assert resp.json()["retryable"] is True
    assert resp.json()["source"] == "evaluator"

    state = client.get(f"/session/{sid}").json()
    assert state["questions_answered"] == 0
    assert state["current_question"]["id"] == q["id"]


def test_usage_analytics_reads_call_log(tmp_path, monkeypatch):
    _storage, app_module = _reload_app(tmp_path, monkeypatch)
    import assess_core.llm_bridge as llm_bridge

    log_path = tmp_path / "calls.jsonl"
    monkeypatch.setattr(llm_bridge, "LLM_CALL_LOG", str(log_path))
    client = TestClient(app_module.app)
    sid = _start(client)["session_id"]
    log_path.write_text(
        json.dumps({"session_id": sid, "call_type": "answer_evaluation", "input_tokens": 1000, "output_tokens": 100})
        + "\n",
        encoding="utf-8",
    )

    body = client.get(f"/analytics/usage/{sid}").json()
    assert body["total_calls"] == 1
    assert body["by_call_type"]["answer_evaluation"]["calls"] == 1
    assert body["estimated_cost_usd"] > 0


def test_audit_exports_disabled(tmp_path, monkeypatch):
    monkeypatch.setenv("AUDIT_EXPORT_ENABLED", "0")
    storage, app_module = _reload_app(tmp_path, monkeypatch)

    report_id = "audit-disabled"
    path = storage.REPORTS_DIR / f"{report_id}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"audit_events": [{"t": "2024-01-01T00:00:00+00:00", "dimension": "low_level"}]}),
                    encoding="utf-8")

    client = TestClient(app_module.app)
    assert client.get(f"/results/{report_id}/audit.json").status_code == 404
    assert client.get(f"/results/{report_id}/audit.csv").status_code == 404
    assert client.get(f"/reports/{report_id}").status_code == 200


def test_question_bank_routes(tmp_path, monkeypatch):
    _storage, app_module = _reload_app(tmp_path, monkeypatch)
    client = TestClient(app_module.app)

    everything = client.get("/questions").json()
    assert everything["count"] == len(build_synthetic_bank())

    filtered = client.get("/questions", params={"dimension": "hardware_io", "difficulty": 2}).json()
    assert filtered["count"] == 3
    assert {q["id"] for q in filtered["questions"]} == {f"hardware_io_mc_2_{i}" for i in range(3)}
    assert client.get("/questions", params={"dimension": "soldering"}).status_code == 422
    assert client.get("/questions", params={"difficulty": 9}).status_code == 422

    one = client.get("/questions/low_level_mc_1_0").json()["question"]
    assert one["dimension"] == "low_level"
    assert client.get("/questions/nope").status_code == 404


def test_question_usage_stats_count_served_questions(tmp_path, monkeypatch):
    _storage, app_module = _reload_app(tmp_path, monkeypatch)
    client = TestClient(app_module.app)
    served = _start(client)["question"]["id"]

    stats = client.get("/questions/stats/usage").json()
    assert stats["total_questions"] == len(build_synthetic_bank())
    assert stats["by_dimension"]["control_flow"] == 15
    assert stats["by_difficulty"]["3"] == 15
    top = stats["most_used"][0]
    assert top["id"] == served
    assert top["usage_count"] == 1
    assert len(stats["most_used"]) == 10
    assert all(row["usage_count"] == 0 for row in stats["most_used"][1:])


def test_session_locks_are_released(tmp_path, monkeypatch):
    _storage, app_module = _reload_app(tmp_path, monkeypatch)
    client = TestClient(app_module.app)
    start = _start(client)
    sid = start["session_id"]
    client.post(f"/session/{sid}/answer", json={"question_id": start["question"]["id"], "answer": 0})
    client.post(f"/session/{sid}/finish")
    assert sid not in app_module._SESSION_LOCKS

    held = app_module._session_lock("held")
    assert app_module._session_lock("held") is held
    del held
    assert "held" not in app_module._SESSION_LOCKS
