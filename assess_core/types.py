from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import List, Dict, Optional, Literal, Tuple
from .config import SCALE_MIN, SCALE_MAX

Dimension = Literal["low_level","control_flow","hardware_io","code_reading","decomposition"]
DIMENSIONS: Tuple[str, ...] = ("low_level","control_flow","hardware_io","code_reading","decomposition")
Verdict = Literal["correct","partial","wrong"]
VERDICTS: Tuple[str, ...] = ("correct","partial","wrong")
Phase = Literal["exploration","refinement","completion"]
QuestionType = Literal["multiple_choice","one_liner","trace","code"]
QUESTION_TYPES: Tuple[str, ...] = ("multiple_choice","one_liner","trace","code")
Source = Literal["bank","generate"]
HintCategory = Literal["conceptual","syntactic","structural","example","elimination"]
HINT_CATEGORIES: Tuple[str, ...] = ("conceptual","syntactic","structural","example","elimination")
HintOutcome = Literal["answered_correctly","answered_wrong","asked_another_hint","still_working"]

@dataclass
class Question:
    id: str; dimension: str; type: str; prompt: str
    difficulty: int = 3
    source: str = "bank"
    also_targets: List[str] = field(default_factory=list)
    choices: Optional[List[str]] = None
    correct_index: Optional[int] = None
    expected_answer: Optional[str] = None
    code_to_trace: Optional[str] = None
    trace_answer: Optional[str] = None
    starter_code: Optional[str] = None
    requirements: Optional[List[str]] = None
    hints: Dict[str, str] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    usage_count: int = 0

    @property
    def dimensions(self) -> Tuple[str, ...]:
        out = [self.dimension]
        for d in self.also_targets:
            if d not in out: out.append(d)
        return tuple(out)

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)

    def public_dict(self) -> Dict[str, object]:
        """What the learner may see: no keys, no expected output."""

        out: Dict[str, object] = {
            "id": self.id,
            "dimension": self.dimension,
            "type": self.type,
            "difficulty": self.difficulty,
            "prompt": self.prompt,
            "source": self.source,
        }
        if self.type == "multiple_choice":
            out["choices"] = list(self.choices or [])
        elif self.type == "trace":
            out["code_to_trace"] = self.code_to_trace
        elif self.type == "code":
            out["starter_code"] = self.starter_code
            out["requirements"] = list(self.requirements or [])
        return out

@dataclass
class DimensionState:
    lower_bound: float = float(SCALE_MIN)
    upper_bound: float = float(SCALE_MAX)
    tested: bool = False
    question_count: int = 0
    correct_count: int = 0

    @property
    def range(self) -> float:
        return self.upper_bound - self.lower_bound

    def to_dict(self) -> Dict[str, object]:
        return {
            "lower_bound": self.lower_bound,
            "upper_bound": self.upper_bound,
            "tested": self.tested,
            "question_count": self.question_count,
            "correct_count": self.correct_count,
        }

@dataclass
class Profile:
    session_id: str
    learner_name: Optional[str] = None
    dimensions: Dict[str, DimensionState] = field(default_factory=lambda: {d: DimensionState() for d in DIMENSIONS})
    questions_answered: int = 0
    total_time_ms: int = 0
    hints_used: int = 0
    partial_credits: int = 0
    started_at: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "session_id": self.session_id,
            "learner_name": self.learner_name,
            "dimensions": {d: st.to_dict() for d, st in self.dimensions.items()},
            "questions_answered": self.questions_answered,
            "total_time_ms": self.total_time_ms,
            "hints_used": self.hints_used,
            "partial_credits": self.partial_credits,
            "started_at": self.started_at,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, object]) -> "Profile":
        sid = raw.get("session_id")
        if not isinstance(sid, str) or not sid:
            raise ValueError("profile has no session_id")
        dims_raw = raw.get("dimensions") or {}
        dims: Dict[str, DimensionState] = {}
        for d in DIMENSIONS:
            r = dims_raw.get(d) or {}
            lo = max(float(SCALE_MIN), min(float(SCALE_MAX), float(r.get("lower_bound", SCALE_MIN))))
            hi = max(float(SCALE_MIN), min(float(SCALE_MAX), float(r.get("upper_bound", SCALE_MAX))))
            n = max(0, int(r.get("question_count", 0) or 0))
            dims[d] = DimensionState(
                lower_bound=lo, upper_bound=max(lo, hi),
                tested=bool(r.get("tested", False)),
                question_count=n,
                correct_count=max(0, min(n, int(r.get("correct_count", 0) or 0))),
            )
        return cls(
            session_id=sid,
            learner_name=raw.get("learner_name"),
            dimensions=dims,
            questions_answered=int(raw.get("questions_answered", 0) or 0),
            total_time_ms=int(raw.get("total_time_ms", 0) or 0),
            hints_used=int(raw.get("hints_used", 0) or 0),
            partial_credits=int(raw.get("partial_credits", 0) or 0),
            started_at=raw.get("started_at"),
        )

@dataclass(frozen=True)
class AnswerOutcome:
    dimensions: Tuple[str, ...]
    difficulty: float
    verdict: str
    question_id: Optional[str] = None

@dataclass(frozen=True)
class Target:
    dimension: str
    target_difficulty: int
    source: str
    question_type: str

@dataclass
class Evaluation:
    verdict: str; feedback: str = ""

@dataclass
class HintEvent:
    id: str; question_id: str; category: str
    time_into_question_ms: int = 0
    outcome: Optional[str] = None
    time_to_answer_ms: Optional[int] = None
    text: str = ""

@dataclass
class TimeMetrics:
    question_id: str; dimension: str; difficulty: int
    total_ms: int = 0
    time_to_first_action_ms: Optional[int] = None
    time_to_first_hint_ms: Optional[int] = None
    verdict: Optional[str] = None

@dataclass
class HintProfile:
    help_seeking_style: str = "balanced"
    most_effective_category: str = "none"
    learning_mode: str = "theory_first"
    hint_effectiveness: float = 0.0
    total_hints: int = 0
    avg_time_to_hint_sec: float = 0.0
    category_distribution: Dict[str, int] = field(default_factory=dict)

@dataclass
class TimingProfile:
    questions: int = 0
    avg_total_sec: float = 0.0
    avg_first_action_sec: float = 0.0
    hinted_fraction: float = 0.0

@dataclass
class DimensionScore:
    dimension: str
    estimated_level: int
    confidence: float
    accuracy: float
    questions_answered: int
    lower_bound: float
    upper_bound: float

@dataclass
class Result:
    session_id: str
    learner_name: Optional[str]
    completion_reason: Literal["converged","hard_cap","manual"]
    questions_answered: int
    total_time_ms: int
    partial_credits: int
    dimension_scores: List[DimensionScore]
    strengths: List[str]
    growth_areas: List[str]
    hint_profile: HintProfile
    hint_narrative: str
    help_seeking_style: str
    timing: TimingProfile
    audit_events: List[Dict[str, object]] = field(default_factory=list)
    meta: Dict[str, object] = field(default_factory=dict)
    learner_profile: Dict[str, object] = field(default_factory=dict)
