# assess_core/engine.py
from __future__ import annotations
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging, uuid

from .types import (
    DIMENSIONS,
    HINT_CATEGORIES,
    AnswerOutcome,
    DimensionScore,
    HintEvent,
    Profile,
    Question,
    Result,
    TimeMetrics,
)
from .bounds import apply_outcome, new_profile, estimated_level, confidence, accuracy
from .errors import CollaboratorError, QuestionMismatch
from .policy import QuestionPolicy, classify_phase, should_stop, completion_reason
from .question_bank import QuestionStore, load_bank
from .insights import (
    analyze_hints,
    analyze_timing,
    answer_summary,
    hint_narrative,
    report_help_style,
    rule_profile,
    sample_answers,
)
from .scoring import evaluate
from .validators import validate_question
from .config import (
    load_config,
    seed_rng,
    RECENT_TEXTS_LIMIT,
    STRENGTH_LEVEL,
    GROWTH_LEVEL,
    HARD_CAP,
)


log = logging.getLogger(__name__)

_GENERIC_HINTS = {
    "conceptual": "Think about the underlying idea being tested. Which Arduino function or principle applies here?",
    "syntactic": "Check the syntax carefully. Are the function name, arguments and semicolons right?",
    "structural": "Break the problem into steps: what must happen once in setup() and what repeats in loop()?",
    "example": "Start from a tiny example that does one part of the task, then extend it.",
    "elimination": "Rule out the options you are sure are wrong, then compare the ones left.",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ms(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


class AdaptiveSession:
    """One learner's assessment: question loop, hints, and the final report.

    Collaborators are injected; ``store`` defaults to the packaged bank,
    ``generator``/``grader``/``hinter``/``profiler`` default to none (offline mode).
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        learner_name: Optional[str] = None,
        *,
        store: Optional[QuestionStore] = None,
        generator=None,
        grader=None,
        hinter=None,
        profiler=None,
    ):
        self.cfg = load_config(); seed_rng(self.cfg)
        self.store = store if store is not None else QuestionStore(load_bank())
        self.generator = generator
        self.grader = grader
        self.hinter = hinter
        self.profiler = profiler
        self.policy = QuestionPolicy(self.store, generator)

        self.profile = new_profile(session_id or uuid.uuid4().hex, learner_name, _now())
        self.asked: List[str] = []
        self.recent_texts: List[str] = []
        self.hint_events: List[HintEvent] = []
        self.time_metrics: List[TimeMetrics] = []
        self.audit_events: List[Dict[str, object]] = []
        self._current: Optional[Question] = None
        self._current_phase: Optional[str] = None
        self.completed = False
        self.completion_reason: Optional[str] = None

    @property
    def session_id(self) -> str:
        return self.profile.session_id

    @property
    def current(self) -> Optional[Question]:
        return self._current

    @property
    def phase(self) -> str:
        return classify_phase(self.profile)

    def next_question(self) -> Optional[Question]:
        if self.completed:
            return None
        if self._current is not None:
            return self._current
        if should_stop(self.profile):
            self._complete(completion_reason(self.profile) or "hard_cap")
            return None
        phase = classify_phase(self.profile)
        target = self.policy.next_target(self.profile, phase)
        q = self.policy.resolve(target, self.asked, self.recent_texts)
        self.recent_texts = (self.recent_texts + [q.prompt])[-RECENT_TEXTS_LIMIT:]
        self._current = q
        self._current_phase = phase
        log.info(
            "next_question session=%s phase=%s dimension=%s difficulty=%s source=%s id=%s",
            self.session_id, phase, q.dimension, q.difficulty, q.source, q.id,
        )
        return q

    def request_hint(
        self,
        question_id: str,
        category: str = "conceptual",
        time_into_question_ms: int = 0,
        current_answer: Optional[str] = None,
    ) -> HintEvent:
        q = self._require_current(question_id)
        if category not in HINT_CATEGORIES:
            raise ValueError(f"unknown hint category: {category!r}")

        text = q.hints.get(category, "")
        if not text and self.hinter is not None:
            try:
                text = self.hinter.hint(q, category, current_answer)
            except CollaboratorError as e:
                log.warning("hint provider failed session=%s question=%s: %s", self.session_id, q.id, e)
        if not text:
            text = _GENERIC_HINTS[category]

        ev = HintEvent(
            id=uuid.uuid4().hex[:12],
            question_id=q.id,
            category=category,
            time_into_question_ms=_ms(time_into_question_ms),
            text=text,
        )
        self.hint_events.append(ev)
        self.profile.hints_used += 1
        return ev

    def _require_current(self, question_id: str) -> Question:
        if self.completed:
            raise QuestionMismatch("session is already complete")
        if self._current is None:
            raise QuestionMismatch("no question is open; request the next question first")
        if question_id != self._current.id:
            raise QuestionMismatch(f"question {question_id} is not the open question ({self._current.id})")
        return self._current

    def answer_current(
        self,
        question_id: str,
        answer: Any,
        time_ms: int = 0,
        time_to_first_action_ms: Optional[int] = None,
    ) -> Dict[str, object]:
        """Grade the open question and fold the verdict into the profile.

        Nothing on the session changes until evaluation succeeds, so a
        ``CollaboratorError`` leaves the turn retryable.
        """

        q = self._require_current(question_id)
        evaluation = evaluate(q, answer, self.grader)
        outcome = AnswerOutcome(q.dimensions, float(q.difficulty), evaluation.verdict, q.id)
        trace: List[Dict[str, object]] = []
        updated = apply_outcome(self.profile, outcome, trace)

        spent = _ms(time_ms)
        updated.questions_answered += 1
        updated.total_time_ms += spent
        if evaluation.verdict == "partial":
            updated.partial_credits += 1
        self.profile = updated

        self._backfill_hints(q.id, evaluation.verdict, spent)
        hint_times = [e.time_into_question_ms for e in self.hint_events if e.question_id == q.id]
        self.time_metrics.append(TimeMetrics(
            question_id=q.id, dimension=q.dimension, difficulty=int(q.difficulty), total_ms=spent,
            time_to_first_action_ms=None if time_to_first_action_ms is None else _ms(time_to_first_action_ms),
            time_to_first_hint_ms=min(hint_times) if hint_times else None,
            verdict=evaluation.verdict,
        ))

        stamp = _now()
        for m in trace:
            self.audit_events.append({
                "t": stamp,
                "dimension": m["dimension"],
                "question_id": q.id,
                "source": q.source,
                "difficulty": m["difficulty"],
                "verdict": m["verdict"],
                "lower_before": m["lower_before"],
                "upper_before": m["upper_before"],
                "lower_after": m["lower_after"],
                "upper_after": m["upper_after"],
                "phase": self._current_phase,
                "latency_ms": spent,
            })

        self._current = None
        self._current_phase = None
        if should_stop(self.profile):
            self._complete(completion_reason(self.profile) or "hard_cap")

        return {
            "question_id": q.id,
            "verdict": evaluation.verdict,
            "feedback": evaluation.feedback,
            "phase": classify_phase(self.profile),
            "questions_answered": self.profile.questions_answered,
            "completed": self.completed,
            "completion_reason": self.completion_reason,
        }

    def _backfill_hints(self, question_id: str, verdict: str, spent_ms: int) -> None:
        pending = [e for e in self.hint_events if e.question_id == question_id and e.outcome is None]
        for i, ev in enumerate(pending):
            if i < len(pending) - 1:
                ev.outcome = "asked_another_hint"
            else:
                ev.outcome = "answered_correctly" if verdict == "correct" else "answered_wrong"
            ev.time_to_answer_ms = max(0, spent_ms - ev.time_into_question_ms)

    def _complete(self, reason: str) -> None:
        if self.completed:
            return
        self.completed = True
        self.completion_reason = reason
        log.info(
            "session complete session=%s reason=%s questions=%d",
            self.session_id, reason, self.profile.questions_answered,
        )

    def finish(self) -> Result:
        """Close the session now (learner quit) and build the report."""

        if not self.completed:
            for ev in self.hint_events:
                if ev.outcome is None:
                    ev.outcome = "still_working"
            self._current = None
            self._complete("manual")
        return self.finalize()

    def finalize(self) -> Result:
        scores: List[DimensionScore] = []
        for d in DIMENSIONS:
            st = self.profile.dimensions[d]
            scores.append(DimensionScore(
                dimension=d,
                estimated_level=estimated_level(st),
                confidence=round(confidence(st), 4),
                accuracy=round(accuracy(st), 4),
                questions_answered=st.question_count,
                lower_bound=round(st.lower_bound, 4),
                upper_bound=round(st.upper_bound, 4),
            ))
        tested = {d for d in DIMENSIONS if self.profile.dimensions[d].tested}
        strengths = [s.dimension for s in scores if s.dimension in tested and s.estimated_level >= STRENGTH_LEVEL]
        growth = [s.dimension for s in scores if s.dimension in tested and s.estimated_level <= GROWTH_LEVEL]

        hp = analyze_hints(self.hint_events)
        narrative = hint_narrative(hp)
        summary = answer_summary(self.time_metrics)
        reason = self.completion_reason or completion_reason(self.profile) or "manual"
        return Result(
            session_id=self.session_id,
            learner_name=self.profile.learner_name,
            completion_reason=reason,
            questions_answered=self.profile.questions_answered,
            total_time_ms=self.profile.total_time_ms,
            partial_credits=self.profile.partial_credits,
            dimension_scores=scores,
            strengths=strengths,
            growth_areas=growth,
            hint_profile=hp,
            hint_narrative=narrative,
            help_seeking_style=report_help_style(hp),
            timing=analyze_timing(self.time_metrics),
            audit_events=[dict(e) for e in self.audit_events],
            meta={
                "hard_cap": HARD_CAP,
                "hints_used": self.profile.hints_used,
                "started_at": self.profile.started_at,
                "finished_at": _now(),
                "generated_questions": sum(1 for e in self.audit_events if e.get("source") == "generate"),
                "rushed": summary["rushed"],
            },
            learner_profile=self._learner_profile(scores, summary, hp, narrative),
        )

    def _learner_profile(self, scores, summary, hp, narrative) -> Dict[str, object]:
        if self.profiler is not None and summary["questions"]:
            samples = []
            for m in sample_answers(self.time_metrics):
                q = self.store.get(m.question_id)
                samples.append({
                    "dimension": m.dimension,
                    "difficulty": m.difficulty,
                    "verdict": m.verdict,
                    "seconds": m.total_ms / 1000.0,
                    "prompt": q.prompt if q is not None else None,
                })
            try:
                return self.profiler.profile(scores, summary, narrative, samples)
            except CollaboratorError as e:
                log.warning("profile provider failed session=%s: %s", self.session_id, e)
        return rule_profile(scores, summary, hp)

    def status(self) -> Dict[str, object]:
        return {
            "session_id": self.session_id,
            "learner_name": self.profile.learner_name,
            "phase": classify_phase(self.profile),
            "completed": self.completed,
            "completion_reason": self.completion_reason,
            "questions_answered": self.profile.questions_answered,
            "hints_used": self.profile.hints_used,
            "current_question": self._current.public_dict() if self._current else None,
            "dimensions": {
                d: {
                    **self.profile.dimensions[d].to_dict(),
                    "estimated_level": estimated_level(self.profile.dimensions[d]),
                    "confidence": round(confidence(self.profile.dimensions[d]), 4),
                }
                for d in DIMENSIONS
            },
        }

    def to_snapshot(self) -> Dict[str, object]:
        return {
            "profile": self.profile.to_dict(),
            "phase": classify_phase(self.profile),
            "asked": list(self.asked),
            "recent_texts": list(self.recent_texts),
            "hint_events": [asdict(e) for e in self.hint_events],
            "time_metrics": [asdict(m) for m in self.time_metrics],
            "audit_events": [dict(e) for e in self.audit_events],
            "current": self._current.to_dict() if self._current else None,
            "current_phase": self._current_phase,
            "completed": self.completed,
            "completion_reason": self.completion_reason,
        }

    @classmethod
    def from_snapshot(cls, doc: Dict[str, Any], **collaborators) -> "AdaptiveSession":
        prof = Profile.from_dict(doc.get("profile") or {})
        sess = cls(prof.session_id, prof.learner_name, **collaborators)
        # the stored phase is informational; it is recomputed from the profile
        sess.profile = prof
        sess.asked = [str(x) for x in doc.get("asked") or []]
        sess.recent_texts = [str(x) for x in doc.get("recent_texts") or []][-RECENT_TEXTS_LIMIT:]
        sess.hint_events = [HintEvent(**e) for e in doc.get("hint_events") or []]
        sess.time_metrics = [TimeMetrics(**m) for m in doc.get("time_metrics") or []]
        sess.audit_events = [dict(e) for e in doc.get("audit_events") or []]
        cur = doc.get("current")
        if cur:
            try:
                sess._current = validate_question(cur)
            except ValueError as e:
                log.warning("dropping unreadable open question in session %s: %s", sess.session_id, e)
                sess._current = None
        sess._current_phase = doc.get("current_phase")
        sess.completed = bool(doc.get("completed", False))
        sess.completion_reason = doc.get("completion_reason")
        return sess
