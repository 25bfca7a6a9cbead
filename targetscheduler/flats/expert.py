import datetime
import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from targetscheduler.planner.instructions import SchedulerPlan, TakeExposure
from targetscheduler.planner.types import AcquiredImage, FlatsHandling, Project

logger = logging.getLogger(__name__)

SESSION_BOUNDARY_HOUR = 12


@dataclass(frozen=True)
class FlatSpec:
    filter_name: str
    gain: int | None
    offset: int | None
    binning: int
    readout_mode: int | None
    rotation_deg: float
    roi: float


@dataclass(frozen=True)
class CameraDefaults:
    """Camera values substituted when an exposure leaves a setting unset."""

    gain: int | None = None
    offset: int | None = None
    readout_mode: int | None = None


@dataclass(frozen=True)
class LightSession:
    target_id: int
    session_date: datetime.date
    flat_spec: FlatSpec


@dataclass(frozen=True)
class FlatHistory:
    target_id: int
    light_session_date: datetime.date
    flats_taken: datetime.datetime
    flat_spec: FlatSpec
    flat_type: str = "panel"

    def matches(self, session: LightSession) -> bool:
        return (
            self.target_id == session.target_id
            and self.light_session_date == session.session_date
            and self.flat_spec == session.flat_spec
        )


def light_session_date(t: datetime.datetime, tz: datetime.tzinfo | None = None) -> datetime.date:
    """Date of the most recent local noon, so one night maps to one date."""
    if t.tzinfo is not None:
        t = t.astimezone(tz) if tz is not None else t
    if t.hour < SESSION_BOUNDARY_HOUR:
        return (t - datetime.timedelta(days=1)).date()
    return t.date()


def flat_specs_for_plan(
    plan: SchedulerPlan,
    rotation_deg: float | None = None,
    defaults: CameraDefaults | None = None,
) -> list[FlatSpec]:
    """Distinct flat specs referenced by a plan's exposures, in first-seen order."""
    if plan is None or plan.is_wait or plan.target is None:
        return []
    defaults = defaults or CameraDefaults()
    rotation = plan.target.rotation_deg if rotation_deg is None else rotation_deg
    specs: list[FlatSpec] = []
    for instruction in plan.instructions:
        if not isinstance(instruction, TakeExposure):
            continue
        exp = instruction.exposure_plan
        spec = _flat_spec(exp, exp.filter_name, rotation, plan.target.roi, defaults)
        if spec not in specs:
            specs.append(spec)
    return specs


def _flat_spec(exp, filter_name: str, rotation_deg: float, roi: float, defaults: CameraDefaults) -> FlatSpec:
    return FlatSpec(
        filter_name=filter_name,
        gain=exp.gain if exp.gain is not None else defaults.gain,
        offset=exp.offset if exp.offset is not None else defaults.offset,
        binning=exp.binning,
        readout_mode=exp.readout_mode if exp.readout_mode is not None else defaults.readout_mode,
        rotation_deg=rotation_deg,
        roi=roi,
    )


def cull_flats_by_history(
    needed: Sequence[LightSession],
    history: Iterable[FlatHistory],
) -> list[LightSession]:
    history = list(history)
    return [session for session in needed if not any(h.matches(session) for h in history)]


class FlatsExpert:
    def __init__(self, tz: datetime.tzinfo | None = None):
        self._tz = tz

    def light_session_date(self, t: datetime.datetime) -> datetime.date:
        return light_session_date(t, self._tz)

    def needed_immediate_flats(
        self,
        plan: SchedulerPlan,
        now: datetime.datetime,
        history: Iterable[FlatHistory] = (),
        always_repeat: bool = True,
        rotation_deg: float | None = None,
        defaults: CameraDefaults | None = None,
    ) -> list[LightSession] | None:
        """Flat sets owed to the target of a just-executed plan.

        Returns None when nothing is needed; callers treat None and an empty
        list the same way.
        """
        if plan is None or plan.is_wait or plan.target is None:
            return None
        target = plan.target
        session_date = self.light_session_date(now)
        needed = [
            LightSession(target_id=target.id, session_date=session_date, flat_spec=spec)
            for spec in flat_specs_for_plan(plan, rotation_deg, defaults)
        ]
        if not always_repeat and needed:
            taken = [h for h in history if h.target_id == target.id]
            needed = cull_flats_by_history(needed, taken)
        if not needed:
            logger.info("Immediate flats: no flats needed for %s", target.name)
            return None
        logger.info("Immediate flats: need %d flat sets for target %s", len(needed), target.name)
        return needed

    def needed_cadence_flats(
        self,
        projects: Iterable[Project],
        images: Iterable[AcquiredImage],
        history: Iterable[FlatHistory],
        now: datetime.datetime,
        defaults: CameraDefaults | None = None,
    ) -> list[LightSession]:
        """Light sessions of CADENCE projects whose flats are now due.

        A session is due once it is at least flats_cadence_days old and no
        flat history exists for it. Rotation and ROI come from the images.
        """
        defaults = defaults or CameraDefaults()
        today = self.light_session_date(now)
        cadence_targets = {}
        for project in projects:
            if project.flats_handling != FlatsHandling.CADENCE:
                continue
            for target in project.targets:
                cadence_targets[target.id] = (project, target)

        sessions: list[LightSession] = []
        for image in images:
            if image.target_id not in cadence_targets:
                continue
            project, target = cadence_targets[image.target_id]
            session_date = self.light_session_date(image.acquired_date)
            if (today - session_date).days < max(0, project.flats_cadence_days):
                continue
            plan = next((p for p in target.exposure_plans if p.id == image.exposure_plan_id), None)
            if plan is None:
                logger.warning("Cadence flats: image for unknown exposure plan %s", image.exposure_plan_id)
                continue
            session = LightSession(
                target_id=target.id,
                session_date=session_date,
                flat_spec=_flat_spec(plan, image.filter_name, image.rotation_deg, image.roi, defaults),
            )
            if session not in sessions:
                sessions.append(session)
        due = cull_flats_by_history(sessions, history)
        logger.info("Cadence flats: %d light sessions due", len(due))
        return due
