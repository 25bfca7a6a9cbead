import datetime
import logging
import math
from dataclasses import dataclass, field
from typing import Sequence

from targetscheduler.errors import ConfigurationError
from .astro import (
    SIDEREAL_RATE,
    SkySample,
    alt_az_deg,
    angular_separation_deg,
    hour_angle_deg,
    sky_sample,
    to_j2000,
)
from .types import ExposurePlan, HorizonDefinition, ObserverLocation, Project, Target, TimeInterval

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_MINUTES = 2.0


@dataclass
class VisibilityResult:
    target: Target
    interval: TimeInterval | None
    culmination_time: datetime.datetime | None = None
    peak_altitude_deg: float = -90.0
    reason: str | None = None

    @property
    def is_visible(self) -> bool:
        return self.interval is not None and not self.interval.is_empty

    def is_visible_at(self, t: datetime.datetime) -> bool:
        return self.is_visible and self.interval.contains(t)


@dataclass
class _Timeline:
    start: datetime.datetime
    end: datetime.datetime
    samples: list[SkySample] = field(default_factory=list)


def validate_horizon_settings(project: Project, target: Target | None = None) -> None:
    """Raise ConfigurationError for contradictory horizon settings."""
    if not -90.0 <= project.minimum_altitude_deg <= 90.0:
        raise ConfigurationError(
            f"Project {project.name}: minimum altitude {project.minimum_altitude_deg} out of range"
        )
    if project.use_custom_horizon:
        has_project_horizon = project.horizon is not None and bool(project.horizon.points)
        if target is not None and target.custom_horizon is not None:
            if not target.custom_horizon.points:
                raise ConfigurationError(f"Target {target.name}: custom horizon has no points")
            return
        if not has_project_horizon:
            raise ConfigurationError(
                f"Project {project.name}: custom horizon enabled but no horizon is defined"
            )


def horizon_for(project: Project, target: Target) -> HorizonDefinition | None:
    if target.custom_horizon is not None:
        return target.custom_horizon
    if project.use_custom_horizon:
        return project.horizon
    return None


def minimum_altitude_at(project: Project, horizon: HorizonDefinition | None, azimuth_deg: float) -> float:
    if horizon is None:
        return project.minimum_altitude_deg
    return max(
        project.minimum_altitude_deg,
        horizon.altitude_at(azimuth_deg) + project.horizon_offset_deg,
    )


def plan_allowed(
    plan: ExposurePlan,
    sample: SkySample,
    moon_sep_deg: float,
    humidity: float | None,
) -> bool:
    template = plan.template
    if sample.sun_alt_deg > template.twilight_level.max_sun_altitude_deg:
        return False
    if template.moon_avoidance_enabled and sample.moon_illumination >= template.moon_avoidance_width:
        if moon_sep_deg < template.moon_avoidance_separation_deg:
            return False
    if template.maximum_humidity is not None and humidity is not None:
        if humidity > template.maximum_humidity:
            return False
    return True


class VisibilityCalculator:
    def __init__(
        self,
        location: ObserverLocation,
        sample_minutes: float = DEFAULT_SAMPLE_MINUTES,
        humidity: float | None = None,
    ):
        if sample_minutes <= 0:
            raise ValueError("Sample cadence must be positive")
        self._location = location
        self._step = datetime.timedelta(minutes=sample_minutes)
        self._humidity = humidity
        self._timeline: _Timeline | None = None

    def _samples(self, start: datetime.datetime, end: datetime.datetime) -> list[SkySample]:
        timeline = self._timeline
        if timeline is None or timeline.start != start or timeline.end != end:
            samples = []
            t = start
            while t <= end:
                samples.append(sky_sample(t, self._location.latitude_deg, self._location.longitude_deg))
                t += self._step
            timeline = _Timeline(start=start, end=end, samples=samples)
            self._timeline = timeline
        return timeline.samples

    def evaluate(
        self,
        target: Target,
        start: datetime.datetime,
        end: datetime.datetime,
        plans: Sequence[ExposurePlan] | None = None,
    ) -> VisibilityResult:
        """Find the first usable window for target in [start, end].

        plans are the exposure plans still needing work; the target is only
        usable at an instant when at least one of them passes its twilight,
        moon and humidity restrictions. Defaults to the enabled plans.
        """
        project = target.project
        if project is None:
            raise ConfigurationError(f"Target {target.name} has no project")
        validate_horizon_settings(project, target)
        if plans is None:
            plans = [p for p in target.exposure_plans if p.enabled]
        if not plans:
            return VisibilityResult(target=target, interval=None, reason="no exposure plans need work")

        ra_deg, dec_deg = to_j2000(target.ra_deg, target.dec_deg, target.epoch, start)
        horizon = horizon_for(project, target)
        lat = self._location.latitude_deg
        lon = self._location.longitude_deg
        meridian_window_deg = project.meridian_window_min * SIDEREAL_RATE / 4.0
        min_duration = datetime.timedelta(minutes=max(0.0, project.minimum_time_min))

        peak_alt = -90.0
        reached_min_alt = False
        run_start: datetime.datetime | None = None
        run_end: datetime.datetime | None = None
        interval: TimeInterval | None = None

        for sample in self._samples(start, end):
            alt, az = alt_az_deg(ra_deg, dec_deg, lat, lon, sample.time)
            peak_alt = max(peak_alt, alt)
            ok = alt >= minimum_altitude_at(project, horizon, az)
            reached_min_alt = reached_min_alt or ok
            if ok and meridian_window_deg > 0:
                ok = abs(hour_angle_deg(ra_deg, sample.time, lon)) >= meridian_window_deg
            if ok:
                moon_sep = angular_separation_deg(ra_deg, dec_deg, sample.moon_ra_deg, sample.moon_dec_deg)
                ok = any(plan_allowed(p, sample, moon_sep, self._humidity) for p in plans)

            if ok:
                if run_start is None:
                    run_start = sample.time
                run_end = sample.time
                continue
            if run_start is not None and interval is None:
                interval = _accept_run(run_start, run_end, min_duration)
            run_start = None
            run_end = None
            if interval is not None:
                break

        if interval is None and run_start is not None:
            interval = _accept_run(run_start, run_end, min_duration)

        result = VisibilityResult(
            target=target,
            interval=interval,
            culmination_time=_culmination_time(ra_deg, start, lon),
            peak_altitude_deg=peak_alt,
        )
        if interval is None:
            result.reason = "never above minimum altitude" if not reached_min_alt else "no usable window"
            logger.debug("Target %s not visible before %s: %s", target.name, end.isoformat(), result.reason)
        return result


def _accept_run(
    run_start: datetime.datetime,
    run_end: datetime.datetime,
    min_duration: datetime.timedelta,
) -> TimeInterval | None:
    candidate = TimeInterval(run_start, run_end)
    if candidate.is_empty or candidate.duration < min_duration:
        return None
    return candidate


def _culmination_time(ra_deg: float, t: datetime.datetime, longitude_deg: float) -> datetime.datetime:
    ha = hour_angle_deg(ra_deg, t, longitude_deg)
    minutes = ha * 4.0 / SIDEREAL_RATE
    return t - datetime.timedelta(minutes=minutes)


def minutes_to_culmination(result: VisibilityResult, t: datetime.datetime) -> float:
    if result.culmination_time is None:
        return math.inf
    return (result.culmination_time - t).total_seconds() / 60.0
