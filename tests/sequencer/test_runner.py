import datetime

from targetscheduler.devices import simulated_devices
from targetscheduler.errors import RepositoryError, SequenceFailedError
from targetscheduler.planner import Planner, PlannerEmulator
from targetscheduler.planner.instructions import SchedulerPlan
from targetscheduler.planner.types import FlatsHandling
from targetscheduler.repository import InMemoryRepository
from targetscheduler.sequencer import PlanExecutor, SchedulerRunner, emulator_source, planner_closing, planner_source

NOW = datetime.datetime(2024, 7, 1, 14, 0, tzinfo=datetime.timezone.utc)


class _FakeSleep:
    def __init__(self, cancel_after=None):
        self.calls = []
        self._cancel_after = cancel_after

    def __call__(self, seconds):
        self.calls.append(seconds)
        return self._cancel_after is not None and len(self.calls) >= self._cancel_after


def _clock():
    return NOW


def test_emulated_night():
    clock = _clock
    devices = simulated_devices(clock=clock)
    executor = PlanExecutor(devices, InMemoryRepository(), clock=clock)
    sleep = _FakeSleep()
    runner = SchedulerRunner(emulator_source(PlannerEmulator(clock=clock)), executor, clock=clock, sleep=sleep)

    summary = runner.run()

    assert summary.cycles == 4
    assert summary.waits == 1
    assert sleep.calls == [80.0]
    assert [r.target_name for r in summary.results] == ["T01", "M31 Andromeda Panel 1"]
    assert sum(r.exposures_acquired for r in summary.results) == 11
    assert devices.guider.dithers == 4
    assert devices.filter_wheel.changes == ["Lum", "R", "Lum", "R", "G", "B", "Lum"]
    assert not summary.cancelled


def test_wait_cancelled_stops_run():
    executor = PlanExecutor(simulated_devices(), InMemoryRepository())
    runner = SchedulerRunner(
        emulator_source(PlannerEmulator(clock=lambda: NOW)),
        executor,
        clock=lambda: NOW,
        sleep=_FakeSleep(cancel_after=1),
    )
    summary = runner.run()
    assert summary.cancelled
    assert summary.results == []


def test_cancelled_token_stops_before_planning():
    executor = PlanExecutor(simulated_devices(), InMemoryRepository())
    executor.token.cancel()
    calls = []

    def source(previous):
        calls.append(previous)
        return None

    summary = SchedulerRunner(source, executor).run()
    assert summary.cancelled
    assert calls == []


def test_failed_plan_moves_on(make_project):
    project = make_project()
    target = project.targets[0]
    plans = [SchedulerPlan(target=target, instructions=[]), None]
    seen = []

    def source(previous):
        seen.append(previous)
        return plans.pop(0)

    class _FailingExecutor(PlanExecutor):
        def execute(self, plan):
            raise SequenceFailedError("flat panel stuck")

    executor = _FailingExecutor(simulated_devices(), InMemoryRepository([project]))
    summary = SchedulerRunner(source, executor, sleep=_FakeSleep()).run()
    assert summary.cycles == 2
    assert summary.results == []
    assert seen[1] is not None and seen[1].target is target


def test_max_cycles():
    executor = PlanExecutor(simulated_devices(), InMemoryRepository())
    summary = SchedulerRunner(
        lambda previous: SchedulerPlan.wait(NOW),
        executor,
        clock=lambda: NOW,
        sleep=_FakeSleep(),
        max_cycles=3,
    ).run()
    assert summary.cycles == 3
    assert summary.waits == 3


def test_planner_drives_executor(site, night, make_project):
    project = make_project(desired=2, exposure_s=60.0)
    repository = InMemoryRepository([project])
    planner = Planner(repository, site)
    executor = PlanExecutor(simulated_devices(clock=lambda: night), repository, clock=lambda: night)

    summary = SchedulerRunner(
        planner_source(planner, clock=lambda: night),
        executor,
        clock=lambda: night,
        sleep=_FakeSleep(),
        cadence_flats=lambda: planner.cadence_flats(now=night),
    ).run()

    exposure_plan = project.targets[0].exposure_plans[0]
    assert (exposure_plan.acquired, exposure_plan.accepted) == (2, 2)
    assert summary.cycles == 2
    assert summary.cadence_flat_sessions == 0
    assert len(repository.get_acquired_images(project.targets[0].id, "Lum")) == 2


def test_last_target_flats_taken_when_planning_ends(site, night, make_project):
    project = make_project(desired=1, exposure_s=60.0, flats_handling=FlatsHandling.IMMEDIATE)
    repository = InMemoryRepository([project])
    planner = Planner(repository, site)
    devices = simulated_devices(clock=lambda: night)
    after = []
    executor = PlanExecutor(devices, repository, clock=lambda: night, hooks={"after_target": after.append})

    summary = SchedulerRunner(
        planner_source(planner, clock=lambda: night),
        executor,
        clock=lambda: night,
        sleep=_FakeSleep(),
        closing=planner_closing(planner, clock=lambda: night),
    ).run()

    assert summary.cycles == 2
    assert [r.flat_sessions for r in summary.results] == [0, 1]
    assert [spec.filter_name for spec in devices.flat_device.flat_sets] == ["Lum"]
    assert after == [project.targets[0]]
    assert len(repository.get_flats_history(datetime.date(2024, 7, 1))) == 1


class _LockedPlans(InMemoryRepository):
    def save_exposure_plan(self, plan):
        raise RepositoryError("db locked")


def test_storage_failure_does_not_end_the_run(site, night, make_project):
    project = make_project(desired=2, exposure_s=60.0)
    repository = _LockedPlans([project])
    planner = Planner(repository, site)
    executor = PlanExecutor(simulated_devices(clock=lambda: night), repository, clock=lambda: night)

    summary = SchedulerRunner(
        planner_source(planner, clock=lambda: night),
        executor,
        clock=lambda: night,
        sleep=_FakeSleep(),
        max_cycles=2,
    ).run()

    assert summary.cycles == 2
    assert [r.exposures_acquired for r in summary.results] == [0, 0]
    assert all(r.failures for r in summary.results)
    assert project.targets[0].exposure_plans[0].acquired == 0
    assert repository.get_acquired_images(project.targets[0].id, "Lum") == []


def test_repository_error_from_executor_moves_on(make_project):
    project = make_project()
    plans = [SchedulerPlan(target=project.targets[0], instructions=[]), None]

    class _StoreDownExecutor(PlanExecutor):
        def execute(self, plan):
            raise RepositoryError("connection reset")

    executor = _StoreDownExecutor(simulated_devices(), InMemoryRepository([project]))
    summary = SchedulerRunner(lambda previous: plans.pop(0), executor, sleep=_FakeSleep()).run()
    assert summary.cycles == 2
    assert not summary.cancelled
