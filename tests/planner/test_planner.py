import datetime

import pytest

from targetscheduler.config import Config
from targetscheduler.devices import simulated_devices
from targetscheduler.errors import RepositoryError, SequenceFatalError
from targetscheduler.flats import CameraDefaults
from targetscheduler.planner import Planner, PlannerState
from targetscheduler.planner.astro import local_sidereal_time_deg
from targetscheduler.planner.instructions import (
    AfterTargetHook,
    BeforeTargetHook,
    Dither,
    SchedulerPlan,
    SetReadoutMode,
    SwitchFilter,
    TakeExposure,
    TakeFlats,
)
from targetscheduler.planner.types import AcquiredImage, FlatsHandling, ImageMetrics
from targetscheduler.repository import ExposureAuthority, InMemoryRepository


def _kinds(plan):
    return [type(i) for i in plan.instructions]


def test_plans_exposure_block_with_dithers(site, night, make_project):
    project = make_project(dither_every=2, minimum_time_min=30.0, exposure_s=300.0)
    planner = Planner(InMemoryRepository([project]), site)
    plan = planner.get_plan(now=night)

    assert not plan.is_wait
    assert plan.target is project.targets[0]
    assert plan.time_interval.start == night
    assert _kinds(plan) == [
        BeforeTargetHook,
        SetReadoutMode,
        SwitchFilter,
        TakeExposure,
        TakeExposure,
        Dither,
        TakeExposure,
        TakeExposure,
        Dither,
        TakeExposure,
        TakeExposure,
        Dither,
    ]
    assert planner.last_cycle == [
        PlannerState.SELECTING_TARGET,
        PlannerState.SCHEDULED,
        PlannerState.EMITTING,
        PlannerState.IDLE,
    ]
    assert planner.state == PlannerState.IDLE


def test_block_stops_when_plans_are_done(site, night, make_project):
    project = make_project(filters=("L", "R"), desired=2, exposure_s=60.0)
    plan = Planner(InMemoryRepository([project]), site).get_plan(now=night)
    filters = [i.exposure_plan.filter_name for i in plan.exposures()]
    assert filters == ["L", "L", "R", "R"]
    switches = [i for i in plan.instructions if isinstance(i, SwitchFilter)]
    assert [s.exposure_plan.filter_name for s in switches] == ["L", "R"]


def test_planning_does_not_touch_counters(site, night, make_project):
    project = make_project(desired=5)
    exposure_plan = project.targets[0].exposure_plans[0]
    Planner(InMemoryRepository([project]), site).get_plan(now=night)
    assert (exposure_plan.acquired, exposure_plan.accepted) == (0, 0)


def test_returns_none_when_nothing_ever_visible(site, night, make_project):
    project = make_project(targets=((1, "North", 0.0, 80.0),))
    planner = Planner(InMemoryRepository([project]), site)
    assert planner.get_plan(now=night) is None
    assert planner.last_cycle == [PlannerState.SELECTING_TARGET, PlannerState.IDLE]


def test_returns_none_when_all_work_done(site, night, make_project):
    project = make_project(desired=2)
    exposure_plan = project.targets[0].exposure_plans[0]
    exposure_plan.acquired = exposure_plan.accepted = 2
    assert Planner(InMemoryRepository([project]), site).get_plan(now=night) is None


def test_waits_for_target_that_becomes_visible(site, night, make_project):
    ra = local_sidereal_time_deg(night, site.longitude_deg)
    project = make_project(targets=((1, "Transit", ra, -50.0),), meridian_window_min=30.0)
    planner = Planner(InMemoryRepository([project]), site)
    plan = planner.get_plan(now=night)

    assert plan.is_wait
    assert night + datetime.timedelta(minutes=28) <= plan.wait_until <= night + datetime.timedelta(minutes=34)
    assert planner.last_cycle[1] == PlannerState.WAITING


def test_inactive_projects_are_ignored(site, night, make_project):
    project = make_project(end_date=night - datetime.timedelta(days=1))
    assert Planner(InMemoryRepository([project]), site).get_plan(now=night) is None


def test_misconfigured_project_is_rejected_not_fatal(site, night, make_project):
    bad = make_project(project_id=1, name="Bad", targets=((1, "A", 0.0, -80.0),), use_custom_horizon=True)
    good = make_project(project_id=2, name="Good", targets=((2, "B", 0.0, -80.0),))
    plan = Planner(InMemoryRepository([bad, good]), site).get_plan(now=night)

    assert plan.target.name == "B"
    assert bad.rejected
    assert "horizon" in bad.rejected_reason


def test_same_target_emits_no_hooks(site, night, make_project):
    project = make_project()
    planner = Planner(InMemoryRepository([project]), site)
    first = planner.get_plan(now=night)
    second = planner.get_plan(now=night + datetime.timedelta(minutes=30), previous_plan=first)
    assert second.target is first.target
    assert not any(isinstance(i, (BeforeTargetHook, AfterTargetHook)) for i in second.instructions)


def test_target_change_emits_flats_and_hooks(site, night, make_project):
    done = make_project(
        project_id=1,
        name="Done",
        targets=((1, "A", 0.0, -80.0),),
        desired=1,
        flats_handling=FlatsHandling.IMMEDIATE,
    )
    todo = make_project(project_id=2, name="Todo", targets=((2, "B", 0.0, -80.0),))
    a = done.targets[0]
    a_plan = a.exposure_plans[0]
    a_plan.acquired = a_plan.accepted = 1
    previous = SchedulerPlan(target=a, instructions=[TakeExposure(a_plan)])

    plan = Planner(InMemoryRepository([done, todo]), site).get_plan(now=night, previous_plan=previous)

    assert plan.target.name == "B"
    flats, after, before = plan.instructions[:3]
    assert isinstance(flats, TakeFlats)
    assert [s.flat_spec.filter_name for s in flats.light_sessions] == ["Lum"]
    assert flats.light_sessions[0].session_date == datetime.date(2024, 7, 1)
    assert isinstance(after, AfterTargetHook) and after.target is a
    assert isinstance(before, BeforeTargetHook) and before.target.name == "B"


def test_no_flats_when_previous_project_not_immediate(site, night, make_project):
    done = make_project(project_id=1, targets=((1, "A", 0.0, -80.0),), desired=1)
    todo = make_project(project_id=2, targets=((2, "B", 0.0, -80.0),))
    a_plan = done.targets[0].exposure_plans[0]
    a_plan.acquired = a_plan.accepted = 1
    previous = SchedulerPlan(target=done.targets[0], instructions=[TakeExposure(a_plan)])

    plan = Planner(InMemoryRepository([done, todo]), site).get_plan(now=night, previous_plan=previous)
    assert not any(isinstance(i, TakeFlats) for i in plan.instructions)
    assert isinstance(plan.instructions[0], AfterTargetHook)


class _BrokenRepository(InMemoryRepository):
    def __init__(self, exc):
        super().__init__()
        self._exc = exc

    def get_active_projects(self, profile_id, at_time):
        raise self._exc


def test_repository_failure_degrades_to_wait(site, night):
    planner = Planner(_BrokenRepository(RepositoryError("database locked")), site, retry_wait_s=90)
    plan = planner.get_plan(now=night)
    assert plan.is_wait
    assert plan.wait_until == night + datetime.timedelta(seconds=90)


def test_fatal_errors_propagate(site, night):
    planner = Planner(_BrokenRepository(SequenceFatalError("no container")), site)
    with pytest.raises(SequenceFatalError):
        planner.get_plan(now=night)
    assert planner.state == PlannerState.IDLE


class _FixedAuthority(ExposureAuthority):
    def __init__(self, counts):
        self._counts = counts

    def exposure_counts(self, plan):
        return self._counts

    def submit_acquisition(self, plan, image):
        raise AssertionError("planner must not submit acquisitions")


def test_client_mode_reads_authority_counts(site, night, make_project):
    project = make_project(desired=10, exposure_s=60.0)
    exposure_plan = project.targets[0].exposure_plans[0]
    planner = Planner(InMemoryRepository([project]), site, authority=_FixedAuthority((9, 9)))
    plan = planner.get_plan(now=night)

    assert len(plan.exposures()) == 1
    assert (exposure_plan.acquired, exposure_plan.accepted) == (0, 0)


def test_location_required(make_project):
    from targetscheduler.planner.types import ObserverLocation

    with pytest.raises(ValueError):
        Planner(InMemoryRepository(), ObserverLocation(latitude_deg=None, longitude_deg=None))


def test_cadence_flats_due(site, night, make_project):
    project = make_project(flats_handling=FlatsHandling.CADENCE, flats_cadence_days=1)
    target = project.targets[0]
    exposure_plan = target.exposure_plans[0]
    repository = InMemoryRepository([project])
    repository.add_acquired_image(
        AcquiredImage(
            project_id=project.id,
            target_id=target.id,
            exposure_plan_id=exposure_plan.id,
            filter_name="Lum",
            acquired_date=night - datetime.timedelta(days=2),
            accepted=True,
            reject_reason="",
            rotation_deg=0.0,
            roi=1.0,
            metrics=ImageMetrics(),
        )
    )
    planner = Planner(repository, site)
    due = planner.cadence_flats(now=night)
    assert len(due) == 1
    assert due[0].session_date == datetime.date(2024, 6, 29)


def _finished_immediate_project(make_project):
    project = make_project(desired=1, flats_handling=FlatsHandling.IMMEDIATE)
    exposure_plan = project.targets[0].exposure_plans[0]
    exposure_plan.acquired = exposure_plan.accepted = 1
    previous = SchedulerPlan(target=project.targets[0], instructions=[TakeExposure(exposure_plan)])
    return project, previous


def test_last_target_of_the_night_gets_flats_and_hook(site, night, make_project):
    project, previous = _finished_immediate_project(make_project)
    planner = Planner(InMemoryRepository([project]), site)
    assert planner.get_plan(now=night, previous_plan=previous) is None

    closing = planner.closing_plan(previous, now=night)
    flats, after = closing.instructions
    assert isinstance(flats, TakeFlats)
    assert [s.flat_spec.filter_name for s in flats.light_sessions] == ["Lum"]
    assert isinstance(after, AfterTargetHook) and after.target is project.targets[0]
    assert closing.exposures() == []


def test_closing_plan_without_immediate_flats(site, night, make_project):
    project = make_project(desired=1)
    previous = SchedulerPlan(target=project.targets[0], instructions=[TakeExposure(project.targets[0].exposure_plans[0])])
    planner = Planner(InMemoryRepository([project]), site)
    assert _kinds(planner.closing_plan(previous, now=night)) == [AfterTargetHook]
    assert planner.closing_plan(None, now=night) is None
    assert planner.closing_plan(SchedulerPlan.wait(night), now=night) is None


def test_one_evening_maps_to_one_session_date(site, make_project):
    project, previous = _finished_immediate_project(make_project)
    planner = Planner(InMemoryRepository([project]), site)
    # 09:00Z and 14:00Z are both the evening of 1 July in Adelaide
    for hour in (9, 14):
        now = datetime.datetime(2024, 7, 1, hour, 0, tzinfo=datetime.timezone.utc)
        flats = planner.closing_plan(previous, now=now).instructions[0]
        assert flats.light_sessions[0].session_date == datetime.date(2024, 7, 1)


def test_site_timezone_from_config_sets_session_rollover(make_project):
    project, previous = _finished_immediate_project(make_project)
    site = {"latitude_deg": -34.93, "longitude_deg": 138.60}
    # 12:10 in Adelaide (UTC+9:30) but still before local mean noon
    now = datetime.datetime(2024, 7, 1, 2, 40, tzinfo=datetime.timezone.utc)

    zoned = Planner.from_config(Config({"site": {**site, "timezone": "Australia/Adelaide"}}), InMemoryRepository([project]))
    flats = zoned.closing_plan(previous, now=now).instructions[0]
    assert flats.light_sessions[0].session_date == datetime.date(2024, 7, 1)

    mean_time = Planner.from_config(Config({"site": site}), InMemoryRepository([project]))
    flats = mean_time.closing_plan(previous, now=now).instructions[0]
    assert flats.light_sessions[0].session_date == datetime.date(2024, 6, 30)


def test_camera_defaults_reach_immediate_and_cadence_flats(site, night, make_project):
    project, previous = _finished_immediate_project(make_project)
    config = Config({"site": {"latitude_deg": site.latitude_deg, "longitude_deg": site.longitude_deg}})
    planner = Planner.from_config(config, InMemoryRepository([project]), devices=simulated_devices())
    immediate = planner.closing_plan(previous, now=night).instructions[0].light_sessions[0].flat_spec
    assert (immediate.gain, immediate.offset, immediate.readout_mode) == (100, 10, 0)

    project.flats_handling = FlatsHandling.CADENCE
    project.flats_cadence_days = 0
    target = project.targets[0]
    repository = InMemoryRepository([project])
    repository.add_acquired_image(
        AcquiredImage(
            project_id=project.id,
            target_id=target.id,
            exposure_plan_id=target.exposure_plans[0].id,
            filter_name="Lum",
            acquired_date=night,
            accepted=True,
            reject_reason="",
            rotation_deg=0.0,
            roi=1.0,
            metrics=ImageMetrics(),
        )
    )
    cadence = Planner(repository, site, camera_defaults=CameraDefaults(gain=100, offset=10, readout_mode=0))
    assert cadence.cadence_flats(now=night)[0].flat_spec == immediate
