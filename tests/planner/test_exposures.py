import pytest

from targetscheduler.planner.exposures import ExposureSelector, is_incomplete, needed_exposures
from targetscheduler.planner.types import ExposurePlan, ExposureTemplate


def _plan(desired, acquired=0, accepted=0):
    template = ExposureTemplate(id=1, name="Ha", filter_name="Ha", default_exposure_s=600.0)
    return ExposurePlan(id=1, template=template, desired=desired, acquired=acquired, accepted=accepted)


def test_needed_uses_accepted_when_grading():
    plan = _plan(desired=20, acquired=12, accepted=8)
    assert needed_exposures(plan, 100, grading_enabled=True) == 12
    assert needed_exposures(plan, 100, grading_enabled=False) == 8


def test_needed_applies_throttle_and_rounds_up():
    plan = _plan(desired=10, acquired=4, accepted=4)
    assert needed_exposures(plan, 125) == 9
    assert needed_exposures(plan, 55) == 2
    assert needed_exposures(plan, 0) == 0


def test_needed_never_negative():
    assert needed_exposures(_plan(desired=5, acquired=9, accepted=9)) == 0


def test_needed_is_monotonic_in_progress():
    previous = None
    for accepted in range(0, 15):
        value = needed_exposures(_plan(desired=10, acquired=accepted, accepted=accepted))
        if previous is not None:
            assert value <= previous
        previous = value


def test_negative_throttle_rejected():
    with pytest.raises(ValueError):
        needed_exposures(_plan(desired=1), -1)


def test_disabled_plan_is_complete():
    plan = _plan(desired=5)
    plan.enabled = False
    assert not is_incomplete(plan, 100, True)


def test_orders_by_incompleteness_then_position(make_project):
    project = make_project(filters=("L", "R", "G"), desired=10)
    lum, red, green = project.targets[0].exposure_plans
    lum.acquired = lum.accepted = 2
    red.acquired = red.accepted = 8
    selector = ExposureSelector(project.targets[0])
    assert selector.ordered_plans() == [red, lum, green]


def test_manual_order_comes_first(make_project):
    project = make_project(filters=("L", "R", "G"))
    lum, red, green = project.targets[0].exposure_plans
    green.manual_order = 1
    selector = ExposureSelector(project.targets[0])
    assert selector.ordered_plans()[0] is green


def test_valid_override_is_used(make_project):
    project = make_project(filters=("L", "R", "G"))
    lum, red, green = project.targets[0].exposure_plans
    selector = ExposureSelector(project.targets[0], override_order=[green.id, lum.id, red.id])
    assert selector.ordered_plans() == [green, lum, red]


@pytest.mark.parametrize("kind", ["duplicate", "unknown", "incomplete"])
def test_invalid_override_is_ignored(make_project, kind):
    project = make_project(filters=("L", "R", "G"))
    lum, red, green = project.targets[0].exposure_plans
    override = {
        "duplicate": [green.id, green.id, lum.id, red.id],
        "unknown": [green.id, lum.id, red.id, 9999],
        "incomplete": [green.id, lum.id],
    }[kind]
    selector = ExposureSelector(project.targets[0], override_order=override)
    assert selector.ordered_plans() == [lum, red, green]


def test_complete_plans_are_skipped(make_project):
    project = make_project(filters=("L", "R"), desired=3)
    lum, red = project.targets[0].exposure_plans
    lum.acquired = lum.accepted = 3
    selector = ExposureSelector(project.targets[0])
    assert selector.select() is red


def test_frequency_zero_finishes_plan_first(make_project):
    project = make_project(filters=("L", "R"), desired=2)
    lum, red = project.targets[0].exposure_plans
    selector = ExposureSelector(project.targets[0])
    planned = {}
    picks = []
    while (plan := selector.select(planned)) is not None:
        picks.append(plan.filter_name)
        planned[plan.id] = planned.get(plan.id, 0) + 1
    assert picks == ["L", "L", "R", "R"]


def test_frequency_rotates_filters(make_project):
    project = make_project(filters=("L", "R", "G"), desired=2, filter_switch_frequency=1)
    selector = ExposureSelector(project.targets[0])
    planned = {}
    picks = []
    while (plan := selector.select(planned)) is not None:
        picks.append(plan.filter_name)
        planned[plan.id] = planned.get(plan.id, 0) + 1
    assert picks == ["L", "R", "G", "L", "R", "G"]


def test_selection_does_not_mutate_counters(make_project):
    project = make_project(filters=("L",), desired=4)
    plan = project.targets[0].exposure_plans[0]
    selector = ExposureSelector(project.targets[0])
    selector.select({plan.id: 2})
    assert (plan.acquired, plan.accepted) == (0, 0)
    assert selector.remaining(plan, {plan.id: 2}) == 2
