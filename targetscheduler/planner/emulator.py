import datetime
import logging
from typing import Callable

from targetscheduler.util.format import dms_to_deg, hms_to_deg
from .instructions import Dither, Message, PlanInstruction, SchedulerPlan, SetReadoutMode, SwitchFilter, TakeExposure
from .types import ExposurePlan, ExposureTemplate, Project, Target, TimeInterval

logger = logging.getLogger(__name__)

WAIT_SECONDS = 80
PLAN_MINUTES = 5
FILTERS = ("Lum", "R", "G", "B")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class PlannerEmulator:
    """Canned plan source for exercising a sequencer without real projects.

    Each get_plan() call advances a cursor through a fixed script: a short
    wait, a plan for T01, a plan for an M31 mosaic panel, then None, after
    which the cursor resets.
    """

    def __init__(self, clock: Callable[[], datetime.datetime] = _utcnow):
        self._clock = clock
        self._call = 0

    @property
    def call_number(self) -> int:
        return self._call

    def reset(self) -> None:
        self._call = 0

    def get_plan(self, previous_target: Target | None = None) -> SchedulerPlan | None:
        self._call += 1
        now = self._clock()
        previous = previous_target.name if previous_target is not None else "none"
        logger.info("Planner emulator call %d (previous target: %s)", self._call, previous)

        if self._call == 1:
            return SchedulerPlan.wait(now + datetime.timedelta(seconds=WAIT_SECONDS), is_emulator=True)
        if self._call == 2:
            return self._plan1(now)
        if self._call == 3:
            return self._plan2(now)
        self.reset()
        return None

    def _plan1(self, now: datetime.datetime) -> SchedulerPlan:
        project = Project(id=1, name="P01", minimum_altitude_deg=10.0, enable_grader=True)
        target = project.add_target(
            Target(id=1, name="T01", ra_deg=hms_to_deg("5:0:0"), dec_deg=dms_to_deg("-5:0:0"), rotation_deg=16.0)
        )
        lum, red = _exposure_plans(target, first_id=14)[:2]
        instructions: list[PlanInstruction] = [
            Message("planner emulator: Plan1"),
            SetReadoutMode(lum),
            SwitchFilter(lum),
            TakeExposure(lum),
            TakeExposure(lum),
            TakeExposure(lum),
            Dither(),
            SwitchFilter(red),
            TakeExposure(red),
            TakeExposure(red),
            TakeExposure(red),
            Dither(),
        ]
        return _plan(target, now, instructions)

    def _plan2(self, now: datetime.datetime) -> SchedulerPlan:
        project = Project(id=2, name="M31 Andromeda", minimum_altitude_deg=10.0, enable_grader=False, is_mosaic=True)
        target = project.add_target(
            Target(
                id=2,
                name="M31 Andromeda Panel 1",
                ra_deg=hms_to_deg("15:0:0"),
                dec_deg=dms_to_deg("25:0:0"),
            )
        )
        plans = _exposure_plans(target, first_id=101)
        instructions: list[PlanInstruction] = [Message("planner emulator: Plan2"), SetReadoutMode(plans[0])]
        for exposure_plan in plans:
            instructions.append(SwitchFilter(exposure_plan))
            instructions.append(TakeExposure(exposure_plan))
        instructions.extend([Dither(), SwitchFilter(plans[0]), TakeExposure(plans[0]), Dither()])
        return _plan(target, now, instructions)


def _exposure_plans(target: Target, first_id: int) -> list[ExposurePlan]:
    plans = []
    for offset, filter_name in enumerate(FILTERS):
        template = ExposureTemplate(id=first_id + offset, name=filter_name, filter_name=filter_name, default_exposure_s=4.0)
        plans.append(target.add_exposure_plan(ExposurePlan(id=first_id + offset, template=template, desired=3)))
    return plans


def _plan(target: Target, now: datetime.datetime, instructions: list[PlanInstruction]) -> SchedulerPlan:
    return SchedulerPlan(
        target=target,
        time_interval=TimeInterval(now, now + datetime.timedelta(minutes=PLAN_MINUTES)),
        instructions=instructions,
        is_emulator=True,
    )
