from __future__ import annotations

import random

import pytest

from assess_core import config
from assess_core.question_bank import QuestionStore
from autoplay import _parse_levels, simulate
from tests.conftest import build_synthetic_bank


@pytest.mark.parametrize("profile", ["perfect", "all-wrong", "level"])
def test_simulated_learners_finish_within_cap(profile):
    res = simulate(profile, {"low_level": 2, "hardware_io": 4}, seed=5)
    assert 0 < res.questions_answered <= config.HARD_CAP
    assert res.completion_reason in {"converged", "hard_cap"}
    for score in res.dimension_scores:
        assert config.SCALE_MIN <= score.lower_bound <= score.upper_bound <= config.SCALE_MAX
        assert score.questions_answered >= 1


def test_all_wrong_learner_scores_low():
    res = simulate("all-wrong", seed=2, store=QuestionStore(build_synthetic_bank(), rng=random.Random(2)))
    assert res.strengths == []
    assert all(s.estimated_level <= 2 for s in res.dimension_scores)
    assert all(s.accuracy == 0.0 for s in res.dimension_scores)


def test_perfect_learner_is_not_in_growth_areas():
    res = simulate("perfect", seed=4)
    assert res.growth_areas == []
    assert all(s.accuracy == 1.0 for s in res.dimension_scores)


def test_same_seed_same_path():
    a = simulate("level", {"control_flow": 3}, seed=21, store=QuestionStore(build_synthetic_bank(), rng=random.Random(21)))
    b = simulate("level", {"control_flow": 3}, seed=21, store=QuestionStore(build_synthetic_bank(), rng=random.Random(21)))
    path = lambda r: [(e["dimension"], e["difficulty"], e["verdict"]) for e in r.audit_events]
    assert path(a) == path(b)


def test_parse_levels():
    assert _parse_levels("low_level=2, control_flow=4.5") == {"low_level": 2.0, "control_flow": 4.5}
    assert _parse_levels("") == {}
    with pytest.raises(SystemExit):
        _parse_levels("soldering=3")
