import datetime

import pytest

from targetscheduler.planner.scoring import (
    Candidate,
    MeridianProximityRule,
    PercentCompleteRule,
    ProjectPriorityRule,
    ScoringContext,
    ScoringEngine,
    SettingSoonestRule,
)
from targetscheduler.planner.types import ProjectPriority, TimeInterval
from targetscheduler.planner.visibility import VisibilityResult


def _candidate(target, now, minutes_visible=120, culmination_offset_min=0):
    interval = TimeInterval(now, now + datetime.timedelta(minutes=minutes_visible))
    result = VisibilityResult(
        target=target,
        interval=interval,
        culmination_time=now + datetime.timedelta(minutes=culmination_offset_min),
    )
    return Candidate(target=target, visibility=result, plans=list(target.exposure_plans))


def test_priority_rule_values(night, make_project):
    rule = ProjectPriorityRule()
    project = make_project()
    candidate = _candidate(project.targets[0], night)
    context = ScoringContext(night, [candidate])
    project.priority = ProjectPriority.LOW
    assert rule.score(candidate, context) == 0.0
    project.priority = ProjectPriority.NORMAL
    assert rule.score(candidate, context) == 0.5
    project.priority = ProjectPriority.HIGH
    assert rule.score(candidate, context) == 1.0


def test_percent_complete_uses_accepted_when_grading(night, make_project):
    project = make_project(desired=10)
    plan = project.targets[0].exposure_plans[0]
    plan.acquired = 6
    plan.accepted = 4
    candidate = _candidate(project.targets[0], night)
    context = ScoringContext(night, [candidate])
    assert PercentCompleteRule().score(candidate, context) == pytest.approx(0.6)
    project.enable_grader = False
    assert PercentCompleteRule().score(candidate, context) == pytest.approx(0.4)


def test_single_rule_composite_equals_rule_score(night, make_project):
    project = make_project(rule_weights={"Meridian Proximity": 3.0})
    candidate = _candidate(project.targets[0], night, culmination_offset_min=180)
    context = ScoringContext(night, [candidate])
    scored = ScoringEngine().score(candidate, context)
    assert scored.score == pytest.approx(MeridianProximityRule().score(candidate, context))
    assert scored.score == pytest.approx(0.75)
    assert list(scored.components) == ["Meridian Proximity"]


def test_highest_score_wins(night, make_project):
    low = make_project(project_id=1, name="Low", targets=((1, "A", 0.0, -80.0),), priority=ProjectPriority.LOW)
    high = make_project(project_id=2, name="High", targets=((2, "B", 0.0, -80.0),), priority=ProjectPriority.HIGH)
    candidates = [_candidate(low.targets[0], night), _candidate(high.targets[0], night)]
    winner = ScoringEngine().select(ScoringContext(night, candidates))
    assert winner.target.name == "B"


def test_ties_break_on_window_end_then_id(night, make_project):
    weights = {"Project Priority": 1.0}
    p1 = make_project(project_id=1, targets=((7, "Seven", 0.0, -80.0),), rule_weights=weights)
    p2 = make_project(project_id=2, targets=((3, "Three", 0.0, -80.0),), rule_weights=weights)
    p3 = make_project(project_id=3, targets=((5, "Five", 0.0, -80.0),), rule_weights=weights)
    engine = ScoringEngine()

    same_end = [_candidate(p1.targets[0], night), _candidate(p2.targets[0], night)]
    assert engine.select(ScoringContext(night, same_end)).target.id == 3

    earlier = [
        _candidate(p1.targets[0], night, minutes_visible=60),
        _candidate(p3.targets[0], night, minutes_visible=120),
    ]
    assert engine.select(ScoringContext(night, earlier)).target.id == 7


def test_zero_weights_reject_project(night, make_project):
    bad = make_project(project_id=1, name="Bad", targets=((1, "A", 0.0, -80.0),), rule_weights={"Percent Complete": 0.0})
    good = make_project(project_id=2, name="Good", targets=((2, "B", 0.0, -80.0),))
    candidates = [_candidate(bad.targets[0], night), _candidate(good.targets[0], night)]
    ranked = ScoringEngine().rank(ScoringContext(night, candidates))
    assert [s.target.name for s in ranked] == ["B"]
    assert bad.rejected
    assert "zero" in bad.rejected_reason


def test_unknown_rules_are_ignored(night, make_project):
    project = make_project(rule_weights={"Nonsense": 5.0, "Project Priority": 1.0})
    assert ScoringEngine().weights_for(project) == {"Project Priority": 1.0}


def test_default_weights_when_project_has_none(night, make_project):
    engine = ScoringEngine()
    weights = engine.weights_for(make_project())
    assert set(weights) == set(engine.rule_names)
    assert weights["Meridian Proximity"] == 0.75


def test_setting_soonest_prefers_short_windows(night, make_project):
    project = make_project(targets=((1, "Short", 0.0, -80.0), (2, "Long", 0.0, -80.0)))
    short = _candidate(project.targets[0], night, minutes_visible=60)
    long = _candidate(project.targets[1], night, minutes_visible=240)
    context = ScoringContext(night, [short, long])
    rule = SettingSoonestRule()
    assert rule.score(short, context) == 1.0
    assert rule.score(long, context) == pytest.approx(0.25)


def test_target_switch_penalty_favours_previous_target(night, make_project):
    weights = {"Target Switch Penalty": 1.0, "Project Priority": 1.0}
    project = make_project(targets=((1, "A", 0.0, -80.0), (2, "B", 0.0, -80.0)), rule_weights=weights)
    candidates = [_candidate(t, night) for t in project.targets]
    winner = ScoringEngine().select(ScoringContext(night, candidates, previous_target=project.targets[1]))
    assert winner.target.name == "B"


def test_scores_stay_in_unit_range(night, make_project):
    project = make_project(targets=((1, "A", 0.0, -80.0), (2, "B", 0.0, -80.0)), is_mosaic=True)
    candidates = [_candidate(t, night, culmination_offset_min=-900) for t in project.targets]
    for scored in ScoringEngine().rank(ScoringContext(night, candidates)):
        assert 0.0 <= scored.score <= 1.0
        assert all(0.0 <= v <= 1.0 for v in scored.components.values())


def test_nothing_schedulable(night):
    assert ScoringEngine().select(ScoringContext(night, [])) is None
