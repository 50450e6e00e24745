from __future__ import annotations

import pytest

from assess_core.errors import CollaboratorError
from assess_core.question_bank import DIMENSIONS
from assess_core.types import Evaluation, Question


def build_synthetic_bank(
    *,
    dimensions: list[str] | None = None,
    per_level: int = 3,
    with_hints: bool = True,
) -> list[Question]:
    """Create a deterministic multiple-choice bank; option 0 is always right."""

    questions: list[Question] = []
    for dim in dimensions or list(DIMENSIONS):
        for level in range(1, 6):
            for idx in range(per_level):
                questions.append(
                    Question(
                        id=f"{dim}_mc_{level}_{idx}",
                        dimension=dim,
                        type="multiple_choice",
                        prompt=f"{dim} question {level} #{idx}",
                        difficulty=level,
                        choices=["A", "B", "C", "D"],
                        correct_index=0,
                        hints={"conceptual": f"Think about {dim}."} if with_hints else {},
                    )
                )
    return questions


class FakeGenerator:
    """Multiple-choice generator that can be told to fail its first calls."""

    def __init__(self, fail_times: int = 0, fixed_id: str | None = None):
        self.fail_times = fail_times
        self.fixed_id = fixed_id
        self.calls: list[tuple[str, int, str, list[str]]] = []

    def generate(self, dimension, difficulty, question_type, recent_texts=()):
        self.calls.append((dimension, difficulty, question_type, list(recent_texts)))
        n = len(self.calls)
        if n <= self.fail_times:
            raise CollaboratorError("generator unavailable", source="generator")
        return Question(
            id=self.fixed_id or f"gen_{n}",
            dimension=dimension,
            type="multiple_choice",
            prompt=f"generated {dimension} level {difficulty} #{n}",
            difficulty=difficulty,
            choices=["A", "B"],
            correct_index=0,
        )


class FakeGrader:
    def __init__(self, verdict: str = "correct", error: bool = False):
        self.verdict = verdict
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def grade(self, question, answer):
        self.calls.append((question.id, answer))
        if self.error:
            raise CollaboratorError("grader unavailable", source="evaluator")
        return Evaluation(self.verdict, "graded")


@pytest.fixture
def synthetic_bank() -> list[Question]:
    return build_synthetic_bank()
