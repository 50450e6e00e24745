from __future__ import annotations
import json, logging, os, re, time, uuid
from typing import Any, Dict, List, Optional, Sequence
from openai import OpenAIError
from .llm_cfg import client as llm_client
from .errors import CollaboratorError
from .types import Evaluation, Question
from .validators import validate_question
from .config import LLM_CALL_LOG, LLM_TIMEOUT_SEC, INPUT_PRICE_PER_MTOK, OUTPUT_PRICE_PER_MTOK

log = logging.getLogger(__name__)

_FENCE_RX = re.compile(r"^```(?:json)?\s*\n|\n?```\s*$")

_DIMENSION_CONTEXT = {
    "low_level": "Binary and hexadecimal representation, bitwise operations, how digital signals work at LOW/HIGH level",
    "control_flow": "Conditionals, for/while loops, logical operators, simple state machines",
    "hardware_io": "pinMode, digitalWrite, digitalRead, analogRead, analogWrite with LEDs, buttons and sensors",
    "code_reading": "Reading existing code, predicting output, spotting bugs",
    "decomposition": "Breaking problems into functions, planning structure, designing solutions",
}

_DIFFICULTY_CONTEXT = {
    1: "Very basic: single concept, direct application",
    2: "Basic: straightforward, one or two concepts combined",
    3: "Intermediate: several concepts, needs some analysis",
    4: "Advanced: integrated concepts, non-obvious solution",
    5: "Expert: deep understanding and creative problem solving",
}

_TYPE_SHAPE = {
    "multiple_choice": '"choices": ["A", "B", "C", "D"], "correct_index": 0,',
    "one_liner": '"expected_answer": "short exact answer",',
    "trace": '"code_to_trace": "runnable sketch", "trace_answer": "expected Serial output",',
    "code": '"starter_code": "void setup() {\\n}\\nvoid loop() {\\n}", "requirements": ["observable behaviour"],',
}

_GEN_SYSTEM = (
    "You write assessment questions for learners who finished an introductory Arduino course "
    "(C++ basics, digital/analog IO, Serial, if/else, loops, millis, debouncing). "
    "No classes, pointers, interrupts, I2C or SPI. Return ONLY one JSON object."
)
_GRADE_SYSTEM = (
    "You grade learner answers to Arduino programming questions. Be lenient with syntax, strict on concepts. "
    'Return ONLY JSON: {"correct": bool, "partial": bool, "feedback": "one or two sentences"}.'
)
_HINT_SYSTEM = (
    "You are a patient Arduino tutor. Guide toward the answer without giving it away. "
    'Return ONLY JSON: {"hint_text": "one or two sentences"}.'
)
_PROFILE_SYSTEM = (
    "You are an assessment analyst describing what a student DID for their instructor: pacing, hint use, "
    "which dimensions were stronger or weaker, answer consistency. Return ONLY JSON: "
    '{"overall_strength": "...", "areas_for_improvement": ["..."], "learning_style_observations": "...", '
    '"problem_solving_approach": "...", "code_quality": "..."}.'
)


def backend_in_use() -> str:
    b = (os.getenv("LLM_BACKEND") or "").lower()
    return b if b in ("azure", "ollama") else "none"


def strip_fences(text: str) -> str:
    t = (text or "").strip()
    if t.startswith("```"):
        t = _FENCE_RX.sub("", t).strip()
    return t


def parse_json(text: str, source: str) -> Dict[str, Any]:
    try:
        obj = json.loads(strip_fences(text))
    except ValueError as e:
        raise CollaboratorError(f"provider returned malformed JSON: {e}", source=source) from e
    if not isinstance(obj, dict):
        raise CollaboratorError("provider returned a non-object JSON value", source=source)
    return obj


def _append_call_log(row: Dict[str, Any], path: Optional[str] = None) -> None:
    try:
        with open(path or LLM_CALL_LOG, "a", encoding="utf-8") as f:
            f.write(json.dumps(row, ensure_ascii=False) + "\n")
    except OSError as e:
        log.warning("could not append call log: %s", e)


class LLMBridge:
    """Question generator, grader and hint writer over one chat backend."""

    def __init__(self, backend: str, session_id: Optional[str] = None, *, chat_client=None,
                 model: Optional[str] = None, log_path: Optional[str] = None):
        self.backend = backend
        self.session_id = session_id
        self.log_path = log_path
        if chat_client is None:
            try:
                chat_client, model = llm_client(backend)
            except RuntimeError as e:
                raise CollaboratorError(str(e), source="config") from e
        self._client = chat_client
        self.model = model or ""

    def for_session(self, session_id: str) -> "LLMBridge":
        return LLMBridge(self.backend, session_id, chat_client=self._client, model=self.model, log_path=self.log_path)

    def _chat(self, call_type: str, system: str, user: str, max_tokens: int) -> str:
        t0 = time.time()
        try:
            resp = self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "system", "content": system}, {"role": "user", "content": user}],
                temperature=0.2, max_tokens=max_tokens, timeout=LLM_TIMEOUT_SEC,
            )
        except OpenAIError as e:
            log.warning("provider call failed backend=%s call=%s: %s", self.backend, call_type, e)
            raise CollaboratorError(f"{call_type} failed: {e}", source=call_type) from e
        usage = getattr(resp, "usage", None)
        _append_call_log({
            "ts": round(time.time(), 3),
            "session_id": self.session_id or "",
            "call_type": call_type,
            "backend": self.backend,
            "model": self.model,
            "input_tokens": int(getattr(usage, "prompt_tokens", 0) or 0),
            "output_tokens": int(getattr(usage, "completion_tokens", 0) or 0),
            "latency_ms": int((time.time() - t0) * 1000),
        }, self.log_path)
        if not resp.choices:
            raise CollaboratorError(f"{call_type} returned no choices", source=call_type)
        return resp.choices[0].message.content or ""

    def generate(self, dimension: str, difficulty: int, question_type: str,
                 recent_texts: Sequence[str] = ()) -> Question:
        avoid = ""
        if recent_texts:
            lines = "\n".join(f"{i}. {t[:100]}" for i, t in enumerate(recent_texts, 1))
            avoid = f"\nDo not repeat or closely paraphrase these recent questions:\n{lines}\n"
        user = (
            f"Create a {question_type} question for the {dimension} dimension at difficulty {difficulty}/5.\n"
            f"Focus: {_DIMENSION_CONTEXT.get(dimension, dimension)}\n"
            f"Difficulty: {_DIFFICULTY_CONTEXT.get(difficulty, '')}\n{avoid}"
            "Wrap code in ```cpp blocks inside the prompt. JSON shape:\n"
            f'{{"prompt": "...", "type": "{question_type}", {_TYPE_SHAPE.get(question_type, "")} '
            '"hints": {"conceptual": "...", "syntactic": "..."}, "tags": ["..."]}'
        )
        raw = parse_json(self._chat("question_generation", _GEN_SYSTEM, user, 1500), "generator")
        raw.update(dimension=dimension, difficulty=difficulty, type=question_type, source="generate")
        raw.pop("id", None)
        try:
            return validate_question(raw, default_id=f"gen_{uuid.uuid4().hex[:12]}")
        except ValueError as e:
            raise CollaboratorError(f"generated question is malformed: {e}", source="generator") from e

    def grade(self, question: Question, answer: str) -> Evaluation:
        parts = [f"QUESTION:\n{question.prompt}", f"LEARNER ANSWER:\n{answer}"]
        if question.type == "one_liner" and question.expected_answer:
            parts.append(f"EXPECTED ANSWER:\n{question.expected_answer}\nAccept minor formatting differences.")
        if question.type == "trace":
            parts.append(f"CODE:\n{question.code_to_trace}\nEXPECTED OUTPUT:\n{question.trace_answer}")
        if question.type == "code" and question.requirements:
            parts.append("REQUIREMENTS:\n" + "\n".join(f"- {r}" for r in question.requirements))
        obj = parse_json(self._chat("answer_evaluation", _GRADE_SYSTEM, "\n\n".join(parts), 600), "evaluator")
        if not isinstance(obj.get("correct"), bool):
            raise CollaboratorError("grading response lacks a boolean 'correct'", source="evaluator")
        if obj["correct"]:
            verdict = "correct"
        elif obj.get("partial") is True:
            verdict = "partial"
        else:
            verdict = "wrong"
        return Evaluation(verdict=verdict, feedback=str(obj.get("feedback") or ""))

    def hint(self, question: Question, category: str, current_answer: Optional[str] = None) -> str:
        user = f"Question:\n{question.prompt}\n\nGive a {category} hint."
        if current_answer:
            user += f"\n\nTheir current answer:\n{current_answer}"
        obj = parse_json(self._chat("hint_generation", _HINT_SYSTEM, user, 300), "hints")
        text = str(obj.get("hint_text") or "").strip()
        if not text:
            raise CollaboratorError("hint response was empty", source="hints")
        return text

    def profile(self, scores: Sequence[Any], summary: Dict[str, Any], hint_narrative: str,
                samples: Sequence[Dict[str, Any]] = ()) -> Dict[str, Any]:
        """Behavioural learner profile for the finished session."""

        n = int(summary.get("questions", 0) or 0)
        score_lines = "\n".join(
            f"- {s.dimension}: level {s.estimated_level}/5 (confidence {s.confidence * 100:.0f}%, "
            f"accuracy {s.accuracy * 100:.0f}%)" for s in scores
        )
        sample_lines = "\n\n".join(
            f"Q{i} [{r.get('dimension')}, diff {r.get('difficulty')}, {float(r.get('seconds', 0.0)):.1f}s]: "
            f"{r.get('verdict') or 'ungraded'}\n  Q: {str(r.get('prompt') or 'not available')[:200]}"
            for i, r in enumerate(samples, 1)
        )
        flags = []
        if summary.get("rushed"):
            flags.append("POSSIBLE SPAM: most answers took under 5s with low accuracy (rushing or guessing).")
        if n and summary.get("fast_answers") == n and float(summary.get("accuracy", 0.0)) < 0.2:
            flags.append("LIKELY SPAM: every answer was very fast with near-zero accuracy.")
        user = (
            f"DIMENSION SCORES:\n{score_lines}\n\n"
            f"PERFORMANCE: {n} questions, {summary.get('correct', 0)} correct "
            f"({float(summary.get('accuracy', 0.0)) * 100:.0f}%), {summary.get('partial', 0)} partial, "
            f"{summary.get('wrong', 0)} wrong.\n"
            f"TIME: avg {float(summary.get('avg_sec', 0.0)):.1f}s, range {float(summary.get('min_sec', 0.0)):.1f}s"
            f"-{float(summary.get('max_sec', 0.0)):.1f}s, {summary.get('fast_answers', 0)}/{n} under 5s.\n\n"
            f"HINT USAGE:\n{hint_narrative or 'No hints requested'}\n\n"
            f"SAMPLE ANSWERS ({len(samples)} of {n}):\n{sample_lines or 'none'}\n\n"
            f"RED FLAGS:\n{chr(10).join(flags) or 'none'}\n\n"
            "If the behaviour suggests spam, say so directly in overall_strength. "
            "Describe observable patterns only; do not give teaching recommendations."
        )
        obj = parse_json(self._chat("profile_generation", _PROFILE_SYSTEM, user, 2000), "profile")
        out: Dict[str, Any] = {}
        for key in ("overall_strength", "learning_style_observations", "problem_solving_approach", "code_quality"):
            val = obj.get(key)
            if not isinstance(val, str) or not val.strip():
                raise CollaboratorError(f"profile response lacks {key!r}", source="profile")
            out[key] = val.strip()
        areas = obj.get("areas_for_improvement") or []
        if isinstance(areas, str):
            areas = [areas]
        if not isinstance(areas, list):
            raise CollaboratorError("areas_for_improvement is not a list", source="profile")
        out["areas_for_improvement"] = [str(a).strip() for a in areas if str(a).strip()]
        out["rushed"] = bool(summary.get("rushed"))
        out["source"] = "provider"
        return out


def bridge_from_config(cfg: Dict[str, Any], session_id: Optional[str] = None) -> Optional[LLMBridge]:
    from .config import get_backend
    backend = get_backend(cfg)
    if backend is None:
        return None
    return LLMBridge(backend, session_id)


def usage_summary(session_id: str, path: Optional[str] = None) -> Dict[str, Any]:
    """Token totals and cost estimate for one session from the call log."""
    rows: List[Dict[str, Any]] = []
    p = path or LLM_CALL_LOG
    if os.path.exists(p):
        with open(p, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line: continue
                try:
                    row = json.loads(line)
                except ValueError:
                    log.warning("skipping unreadable call log line")
                    continue
                if row.get("session_id") == session_id:
                    rows.append(row)
    by_type: Dict[str, Dict[str, int]] = {}
    tin = tout = 0
    for r in rows:
        i, o = int(r.get("input_tokens", 0)), int(r.get("output_tokens", 0))
        tin += i; tout += o
        b = by_type.setdefault(r.get("call_type", "unknown"), {"calls": 0, "input_tokens": 0, "output_tokens": 0})
        b["calls"] += 1; b["input_tokens"] += i; b["output_tokens"] += o
    cost = tin / 1_000_000 * INPUT_PRICE_PER_MTOK + tout / 1_000_000 * OUTPUT_PRICE_PER_MTOK
    return {
        "session_id": session_id,
        "total_calls": len(rows),
        "total_input_tokens": tin,
        "total_output_tokens": tout,
        "estimated_cost_usd": round(cost, 6),
        "by_call_type": by_type,
        "details": rows,
    }
