import copy
import datetime
import enum
import logging
from typing import Mapping, Sequence

from targetscheduler.errors import ConfigurationError, SequenceFatalError
from targetscheduler.flats import expert as flats_expert
from .exposures import DEFAULT_EXPOSURE_THROTTLE, ExposureSelector
from .instructions import (
    AfterTargetHook,
    BeforeTargetHook,
    Dither,
    PlanInstruction,
    SchedulerPlan,
    SetReadoutMode,
    SwitchFilter,
    TakeExposure,
    TakeFlats,
)
from .scoring import Candidate, ScoringContext, ScoringEngine
from .types import FlatsHandling, ObserverLocation, Project, Target, TimeInterval
from .visibility import DEFAULT_SAMPLE_MINUTES, VisibilityCalculator, VisibilityResult, validate_horizon_settings

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_HOURS = 12.0
DEFAULT_RETRY_WAIT_S = 60.0
CADENCE_LOOKBACK_DAYS = 30

_UNSET = object()


class PlannerState(enum.Enum):
    IDLE = "idle"
    SELECTING_TARGET = "selecting_target"
    SCHEDULED = "scheduled"
    WAITING = "waiting"
    EMITTING = "emitting"


class Planner:
    """Decide what to image next and emit the instructions for it.

    Each call to get_plan() is one planning cycle. The planner only reads
    projects and counters; acquisitions are recorded by the executor.
    """

    def __init__(
        self,
        repository,
        location: ObserverLocation,
        profile_id: str = "default",
        throttle_percent: float = DEFAULT_EXPOSURE_THROTTLE,
        horizon_hours: float = DEFAULT_HORIZON_HOURS,
        sample_minutes: float = DEFAULT_SAMPLE_MINUTES,
        retry_wait_s: float = DEFAULT_RETRY_WAIT_S,
        scoring: ScoringEngine | None = None,
        flats: "flats_expert.FlatsExpert | None" = None,
        authority=None,
        always_repeat_flats: bool = True,
        camera_defaults=None,
        humidity: float | None = None,
        timezone: datetime.tzinfo | None = None,
    ):
        if location.latitude_deg is None or location.longitude_deg is None:
            raise ValueError("Observer location is required (lat/lon)")
        if horizon_hours <= 0:
            raise ValueError("Planning horizon must be positive")
        self._repository = repository
        self._location = location
        self._profile_id = profile_id
        self._throttle = throttle_percent
        self._horizon = datetime.timedelta(hours=horizon_hours)
        self._sample_minutes = sample_minutes
        self._retry_wait = datetime.timedelta(seconds=retry_wait_s)
        self._scoring = scoring or ScoringEngine()
        self._flats = flats or flats_expert.FlatsExpert(tz=timezone or _mean_solar_zone(location))
        self._authority = authority
        self._always_repeat_flats = always_repeat_flats
        self._camera_defaults = camera_defaults
        self._humidity = humidity
        self._state = PlannerState.IDLE
        self._transitions: list[PlannerState] = []

    def _enter(self, state: PlannerState) -> None:
        logger.debug("Planner state %s -> %s", self._state.value, state.value)
        self._state = state
        self._transitions.append(state)

    @classmethod
    def from_config(cls, config, repository, authority=None, location=None, devices=None, **kwargs) -> "Planner":
        location = location or ObserverLocation(
            latitude_deg=config.site_latitude_deg,
            longitude_deg=config.site_longitude_deg,
            elevation_m=config.site_elevation_m,
            name=config.site_name,
        )
        return cls(
            repository,
            location,
            profile_id=config.profile_id,
            throttle_percent=config.exposure_throttle,
            horizon_hours=config.planner_horizon_hours,
            sample_minutes=config.planner_sample_minutes,
            retry_wait_s=config.planner_retry_wait_s,
            authority=authority,
            always_repeat_flats=config.flats_always_repeat,
            camera_defaults=devices.camera.defaults() if devices is not None else None,
            timezone=config.site_timezone,
            **kwargs,
        )

    @property
    def state(self) -> PlannerState:
        return self._state

    @property
    def last_cycle(self) -> list[PlannerState]:
        """States visited by the most recent get_plan() call."""
        return list(self._transitions)

    @property
    def location(self) -> ObserverLocation:
        return self._location

    def get_plan(
        self,
        now: datetime.datetime | None = None,
        previous_plan: SchedulerPlan | None = None,
        override_orders: Mapping[int, Sequence[int]] | None = None,
    ) -> SchedulerPlan | None:
        """Run one planning cycle.

        Returns a target plan, a wait plan, or None when nothing becomes
        visible before the planning horizon ends.
        """
        now = _as_utc(now or datetime.datetime.now(datetime.timezone.utc))
        self._transitions = []
        self._enter(PlannerState.SELECTING_TARGET)
        try:
            plan = self._plan(now, previous_plan, override_orders or {})
        except SequenceFatalError:
            self._enter(PlannerState.IDLE)
            raise
        except Exception as exc:
            until = now + self._retry_wait
            logger.exception("Planning failed, waiting until %s: %s", until.isoformat(), exc)
            self._enter(PlannerState.WAITING)
            plan = SchedulerPlan.wait(until)
        if plan is not None and self._state != PlannerState.EMITTING:
            self._enter(PlannerState.EMITTING)
        self._enter(PlannerState.IDLE)
        return plan

    def closing_plan(
        self,
        previous_plan: SchedulerPlan | None,
        now: datetime.datetime | None = None,
    ) -> SchedulerPlan | None:
        """Flats and after-target hook owed to the last target once planning is done."""
        target = _plan_target(previous_plan)
        if target is None:
            return None
        now = _as_utc(now or datetime.datetime.now(datetime.timezone.utc))
        instructions: list[PlanInstruction] = []
        flats = self._immediate_flats(previous_plan, now)
        if flats:
            instructions.append(TakeFlats(light_sessions=tuple(flats)))
        instructions.append(AfterTargetHook(target))
        logger.info("Closing out %s", target.name)
        return SchedulerPlan(target=target, time_interval=TimeInterval(now, now), instructions=instructions)

    def _plan(
        self,
        now: datetime.datetime,
        previous_plan: SchedulerPlan | None,
        override_orders: Mapping[int, Sequence[int]],
    ) -> SchedulerPlan | None:
        horizon_end = now + self._horizon
        projects = self._repository.get_active_projects(self._profile_id, now)
        logger.info("Planning at %s: %d active projects", now.isoformat(), len(projects))

        calculator = VisibilityCalculator(self._location, self._sample_minutes, self._humidity)
        results: list[VisibilityResult] = []
        for project in projects:
            if not self._validate_project(project, now):
                continue
            for target in project.targets:
                if not target.enabled or target.rejected:
                    continue
                target = self._snapshot(target)
                plans = ExposureSelector(target, self._throttle).incomplete_plans()
                if not plans:
                    logger.debug("Target %s has no remaining work", target.name)
                    continue
                try:
                    result = calculator.evaluate(target, now, horizon_end, plans)
                except ConfigurationError as exc:
                    logger.warning("Project %s rejected: %s", project.name, exc)
                    project.reject(str(exc))
                    break
                if result.is_visible:
                    results.append(result)
        results = [r for r in results if not r.target.project.rejected]

        candidates = [
            Candidate(
                target=r.target,
                visibility=r,
                plans=ExposureSelector(r.target, self._throttle).incomplete_plans(),
            )
            for r in results
            if r.interval.start <= now
        ]
        previous_target = _plan_target(previous_plan)
        winner = None
        if candidates:
            winner = self._scoring.select(ScoringContext(now, candidates, previous_target))

        if winner is None:
            future = [
                r.interval.start
                for r in results
                if r.interval.start > now and not r.target.project.rejected
            ]
            if not future:
                logger.info("Nothing visible before %s; planning done for the night", horizon_end.isoformat())
                return None
            until = min(future)
            logger.info("No target available now, waiting until %s", until.isoformat())
            self._enter(PlannerState.WAITING)
            return SchedulerPlan.wait(until)

        self._enter(PlannerState.SCHEDULED)
        target = winner.target
        logger.info("Selected target %s (score %.4f)", target.name, winner.score)

        self._enter(PlannerState.EMITTING)
        instructions: list[PlanInstruction] = []
        if previous_target is None or previous_target.id != target.id:
            if previous_target is not None:
                flats = self._immediate_flats(previous_plan, now)
                if flats:
                    instructions.append(TakeFlats(light_sessions=tuple(flats)))
                instructions.append(AfterTargetHook(previous_target))
            instructions.append(BeforeTargetHook(target))

        interval = winner.candidate.visibility.interval
        instructions.extend(self._exposure_block(target, now, interval, override_orders.get(target.id)))
        plan = SchedulerPlan(target=target, time_interval=interval, instructions=instructions)
        logger.debug("Plan %s: %s", plan.plan_id, plan.summary())
        return plan

    def _validate_project(self, project: Project, now: datetime.datetime) -> bool:
        if project.rejected:
            logger.debug("Skipping rejected project %s: %s", project.name, project.rejected_reason)
            return False
        if not project.is_active_at(now):
            return False
        try:
            for target in project.targets:
                if target.enabled:
                    validate_horizon_settings(project, target)
            self._scoring.weights_for(project)
        except ConfigurationError as exc:
            logger.warning("Project %s rejected: %s", project.name, exc)
            project.reject(str(exc))
            return False
        return True

    def _snapshot(self, target: Target) -> Target:
        """Copy of target carrying the authority's counts (client mode only)."""
        if self._authority is None:
            return target
        snapshot = copy.copy(target)
        snapshot.exposure_plans = []
        for plan in target.exposure_plans:
            acquired, accepted = self._authority.exposure_counts(plan)
            shadow = copy.copy(plan)
            shadow.acquired = acquired
            shadow.accepted = accepted
            snapshot.add_exposure_plan(shadow)
        return snapshot

    def _exposure_block(
        self,
        target: Target,
        now: datetime.datetime,
        interval: TimeInterval,
        override_order: Sequence[int] | None,
    ) -> list[PlanInstruction]:
        project = target.project
        budget_s = min(
            (interval.end - now).total_seconds(),
            project.minimum_time_min * 60.0,
        )
        selector = ExposureSelector(target, self._throttle, override_order)
        planned: dict[int, int] = {}
        per_filter: dict[str, int] = {}
        used_s = 0.0
        current_filter = None
        current_readout = _UNSET
        instructions: list[PlanInstruction] = []

        while True:
            exposure_plan = selector.select(planned)
            if exposure_plan is None:
                break
            length = exposure_plan.exposure_length_s
            if planned and used_s + length > budget_s:
                break
            if exposure_plan.readout_mode != current_readout:
                instructions.append(SetReadoutMode(exposure_plan))
                current_readout = exposure_plan.readout_mode
            if exposure_plan.filter_name != current_filter:
                instructions.append(SwitchFilter(exposure_plan))
                current_filter = exposure_plan.filter_name
            instructions.append(TakeExposure(exposure_plan))
            planned[exposure_plan.id] = planned.get(exposure_plan.id, 0) + 1
            used_s += length

            if project.dither_every > 0:
                count = per_filter.get(current_filter, 0) + 1
                per_filter[current_filter] = count
                if count % project.dither_every == 0:
                    instructions.append(Dither())

        logger.info(
            "Exposure block for %s: %d exposures, %.0fs of %.0fs",
            target.name,
            sum(planned.values()),
            used_s,
            budget_s,
        )
        return instructions

    def _immediate_flats(self, previous_plan: SchedulerPlan, now: datetime.datetime):
        project = previous_plan.target.project
        if project is None or project.flats_handling != FlatsHandling.IMMEDIATE:
            return None
        history = self._repository.get_flats_history(self._flats.light_session_date(now))
        return self._flats.needed_immediate_flats(
            previous_plan,
            now,
            history=history,
            always_repeat=self._always_repeat_flats,
            defaults=self._camera_defaults,
        )

    def cadence_flats(self, now: datetime.datetime | None = None):
        """Light sessions of cadence-flats projects whose flats are due."""
        now = _as_utc(now or datetime.datetime.now(datetime.timezone.utc))
        projects = self._repository.get_all_projects(self._profile_id)
        images = self._repository.get_acquired_images_since(now - datetime.timedelta(days=CADENCE_LOOKBACK_DAYS))
        history = []
        for session_date in {self._flats.light_session_date(i.acquired_date) for i in images}:
            history.extend(self._repository.get_flats_history(session_date))
        return self._flats.needed_cadence_flats(projects, images, history, now, defaults=self._camera_defaults)


def _plan_target(plan: SchedulerPlan | None) -> Target | None:
    if plan is None or plan.is_wait:
        return None
    return plan.target


def _mean_solar_zone(location: ObserverLocation) -> datetime.timezone:
    """Fixed offset of local mean solar time, used when no site time zone is set."""
    return datetime.timezone(datetime.timedelta(hours=location.longitude_deg / 15.0))


def _as_utc(t: datetime.datetime) -> datetime.datetime:
    if t.tzinfo is None:
        return t.replace(tzinfo=datetime.timezone.utc)
    return t
