from __future__ import annotations

import random

import pytest

from assess_core.bounds import new_profile
from assess_core.errors import CollaboratorError
from assess_core.policy import QuestionPolicy, most_uncertain, question_type_for
from assess_core.question_bank import QuestionStore
from assess_core.types import DIMENSIONS, DimensionState, Target
from tests.conftest import FakeGenerator, build_synthetic_bank


def _store(**kwargs) -> QuestionStore:
    return QuestionStore(build_synthetic_bank(**kwargs), rng=random.Random(3))


def test_exploration_walks_untested_dimensions_in_order():
    policy = QuestionPolicy(_store())
    prof = new_profile("s")
    target = policy.next_target(prof, "exploration")
    assert target == Target("low_level", 3, "bank", "multiple_choice")

    prof.dimensions["low_level"].tested = True
    assert policy.next_target(prof, "exploration").dimension == "control_flow"


def test_refinement_targets_most_uncertain_midpoint():
    policy = QuestionPolicy(_store())
    prof = new_profile("s")
    for d in DIMENSIONS:
        prof.dimensions[d] = DimensionState(lower_bound=3.0, upper_bound=3.5, tested=True, question_count=2)
    prof.dimensions["hardware_io"] = DimensionState(lower_bound=1.5, upper_bound=4.5, tested=True, question_count=1)

    target = policy.next_target(prof, "refinement")
    assert target.dimension == "hardware_io"
    assert target.target_difficulty == 3
    assert target.source == "bank"
    assert target.question_type == "code"


def test_narrow_or_well_sampled_dimension_prefers_generation():
    policy = QuestionPolicy(_store())
    prof = new_profile("s")
    for d in DIMENSIONS:
        prof.dimensions[d] = DimensionState(lower_bound=3.0, upper_bound=3.2, tested=True, question_count=5)
    prof.dimensions["low_level"] = DimensionState(lower_bound=2.0, upper_bound=3.5, tested=True, question_count=1)
    assert policy.next_target(prof, "refinement").source == "generate"

    prof.dimensions["low_level"] = DimensionState(lower_bound=1.0, upper_bound=4.0, tested=True, question_count=3)
    assert policy.next_target(prof, "refinement").source == "generate"


def test_completion_verifies_at_lower_bound():
    policy = QuestionPolicy(_store())
    prof = new_profile("s")
    for d in DIMENSIONS:
        prof.dimensions[d] = DimensionState(lower_bound=3.6, upper_bound=4.0, tested=True, question_count=4)
    target = policy.next_target(prof, "completion")
    assert target.source == "bank"
    assert target.target_difficulty == 4


def test_uncertainty_ties_break_in_dimension_order():
    prof = new_profile("s")
    assert most_uncertain(prof) == "low_level"
    for d in DIMENSIONS:
        prof.dimensions[d].question_count = 1
    prof.dimensions["code_reading"].question_count = 0
    assert most_uncertain(prof) == "code_reading"


def test_question_type_follows_phase():
    assert question_type_for("low_level", "exploration") == "multiple_choice"
    assert question_type_for("low_level", "refinement") == "one_liner"
    assert question_type_for("code_reading", "refinement") == "trace"
    assert question_type_for("decomposition", "completion") == "code"


def test_bank_never_repeats_excluded_questions():
    gen = FakeGenerator()
    policy = QuestionPolicy(_store(dimensions=["low_level"], per_level=10), gen)
    target = Target("low_level", 3, "bank", "multiple_choice")
    asked: list[str] = []
    picked = []
    for _ in range(50):
        excluded = list(asked)
        q = policy.resolve(target, asked)
        assert q.id not in excluded
        picked.append(q)

    assert len(set(asked)) == 50
    bank_picks = [q for q in picked if q.source == "bank"]
    assert len(bank_picks) == 30
    assert {q.difficulty for q in bank_picks} == {2, 3, 4}
    assert len(gen.calls) == 20


def test_exact_tier_is_used_before_neighbours():
    policy = QuestionPolicy(_store(dimensions=["control_flow"], per_level=2))
    asked: list[str] = []
    first = [policy.resolve(Target("control_flow", 4, "bank", "trace"), asked) for _ in range(2)]
    assert {q.difficulty for q in first} == {4}


def test_bank_miss_falls_through_to_generation():
    gen = FakeGenerator()
    policy = QuestionPolicy(_store(dimensions=["low_level"]), gen)
    q = policy.resolve(Target("decomposition", 3, "bank", "code"), [])
    assert q.source == "generate"
    assert gen.calls[0][:3] == ("decomposition", 3, "code")


def test_generation_preferred_without_generator_uses_bank():
    policy = QuestionPolicy(_store())
    q = policy.resolve(Target("hardware_io", 2, "generate", "code"), [])
    assert q.source == "bank"
    assert q.dimension == "hardware_io"


def test_generation_is_retried_once():
    gen = FakeGenerator(fail_times=1)
    policy = QuestionPolicy(_store(), gen)
    q = policy.resolve(Target("low_level", 3, "generate", "one_liner"), [], ["earlier prompt"])
    assert q.source == "generate"
    assert len(gen.calls) == 2
    assert gen.calls[0][3] == ["earlier prompt"]


def test_generation_failure_surfaces_after_retry():
    gen = FakeGenerator(fail_times=5)
    policy = QuestionPolicy(_store(), gen)
    asked: list[str] = []
    with pytest.raises(CollaboratorError):
        policy.resolve(Target("low_level", 3, "generate", "one_liner"), asked)
    assert len(gen.calls) == 2
    assert asked == []


def test_empty_bank_without_generator_raises():
    policy = QuestionPolicy(QuestionStore([]))
    with pytest.raises(CollaboratorError):
        policy.resolve(Target("low_level", 3, "bank", "multiple_choice"), [])


def test_generated_duplicate_is_rejected():
    policy = QuestionPolicy(_store(), FakeGenerator(fixed_id="dup"))
    asked = ["dup"]
    with pytest.raises(CollaboratorError):
        policy.resolve(Target("low_level", 3, "generate", "one_liner"), asked)
    assert asked == ["dup"]


def test_recent_texts_are_capped():
    gen = FakeGenerator()
    policy = QuestionPolicy(_store(), gen)
    policy.resolve(Target("low_level", 3, "generate", "one_liner"), [], [f"p{i}" for i in range(9)])
    assert gen.calls[0][3] == ["p4", "p5", "p6", "p7", "p8"]
