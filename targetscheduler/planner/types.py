from dataclasses import dataclass, field
import datetime
import enum
from typing import Optional

from targetscheduler.errors import ConfigurationError


class ProjectState(enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    COMPLETED = "completed"


class ProjectPriority(enum.IntEnum):
    LOW = 0
    NORMAL = 1
    HIGH = 2


class FlatsHandling(enum.Enum):
    OFF = "off"
    CADENCE = "cadence"
    IMMEDIATE = "immediate"


class TwilightLevel(enum.Enum):
    NIGHTTIME = "nighttime"
    ASTRONOMICAL = "astronomical"
    NAUTICAL = "nautical"
    CIVIL = "civil"

    @property
    def max_sun_altitude_deg(self) -> float:
        return _TWILIGHT_SUN_ALT[self]


_TWILIGHT_SUN_ALT = {
    TwilightLevel.NIGHTTIME: -18.0,
    TwilightLevel.ASTRONOMICAL: -12.0,
    TwilightLevel.NAUTICAL: -6.0,
    TwilightLevel.CIVIL: 0.0,
}

EPOCHS = ("J2000", "JNOW", "B1950")


@dataclass
class ObserverLocation:
    latitude_deg: float
    longitude_deg: float
    elevation_m: float | None = None
    name: str | None = None


@dataclass(frozen=True)
class TimeInterval:
    start: datetime.datetime
    end: datetime.datetime

    @property
    def duration(self) -> datetime.timedelta:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    def contains(self, t: datetime.datetime) -> bool:
        return self.start <= t <= self.end


@dataclass
class HorizonDefinition:
    """Local horizon as (azimuth, altitude) points in degrees."""

    points: list[tuple[float, float]] = field(default_factory=list)

    def altitude_at(self, azimuth_deg: float) -> float:
        if not self.points:
            raise ConfigurationError("Horizon definition has no points")
        pts = sorted((az % 360.0, alt) for az, alt in self.points)
        if len(pts) == 1:
            return pts[0][1]
        az = azimuth_deg % 360.0
        # wrap the first/last points around north so interpolation is continuous
        extended = [(pts[-1][0] - 360.0, pts[-1][1])] + pts + [(pts[0][0] + 360.0, pts[0][1])]
        for (az0, alt0), (az1, alt1) in zip(extended, extended[1:]):
            if az0 <= az <= az1:
                if az1 == az0:
                    return max(alt0, alt1)
                frac = (az - az0) / (az1 - az0)
                return alt0 + frac * (alt1 - alt0)
        return pts[-1][1]


@dataclass(eq=False)
class ExposureTemplate:
    id: int
    name: str
    filter_name: str
    default_exposure_s: float
    profile_id: str = "default"
    gain: int | None = None
    offset: int | None = None
    binning: int = 1
    readout_mode: int | None = None
    twilight_level: TwilightLevel = TwilightLevel.NIGHTTIME
    moon_avoidance_enabled: bool = False
    moon_avoidance_separation_deg: float = 0.0
    moon_avoidance_width: float = 0.0
    maximum_humidity: float | None = None


@dataclass(eq=False)
class ExposurePlan:
    id: int
    template: ExposureTemplate
    desired: int
    acquired: int = 0
    accepted: int = 0
    exposure_s: float | None = None
    manual_order: int | None = None
    enabled: bool = True
    target: Optional["Target"] = field(default=None, repr=False)

    def __post_init__(self):
        if self.desired < 0:
            raise ConfigurationError(f"Exposure plan {self.id}: desired must be >= 0")
        if self.accepted < 0:
            raise ConfigurationError(f"Exposure plan {self.id}: accepted must be >= 0")
        if self.acquired < self.accepted:
            raise ConfigurationError(
                f"Exposure plan {self.id}: acquired ({self.acquired}) < accepted ({self.accepted})"
            )

    @property
    def filter_name(self) -> str:
        return self.template.filter_name

    @property
    def exposure_length_s(self) -> float:
        if self.exposure_s is not None and self.exposure_s > 0:
            return self.exposure_s
        return self.template.default_exposure_s

    @property
    def gain(self) -> int | None:
        return self.template.gain

    @property
    def offset(self) -> int | None:
        return self.template.offset

    @property
    def binning(self) -> int:
        return self.template.binning

    @property
    def readout_mode(self) -> int | None:
        return self.template.readout_mode


@dataclass(eq=False)
class Target:
    id: int
    name: str
    ra_deg: float
    dec_deg: float
    epoch: str = "J2000"
    rotation_deg: float = 0.0
    roi: float = 1.0
    enabled: bool = True
    custom_horizon: HorizonDefinition | None = None
    exposure_plans: list[ExposurePlan] = field(default_factory=list)
    project: Optional["Project"] = field(default=None, repr=False)
    rejected: bool = False
    rejected_reason: str | None = None

    def __post_init__(self):
        for plan in self.exposure_plans:
            plan.target = self

    def add_exposure_plan(self, plan: ExposurePlan) -> ExposurePlan:
        plan.target = self
        self.exposure_plans.append(plan)
        return plan

    def reject(self, reason: str) -> None:
        self.rejected = True
        self.rejected_reason = reason


@dataclass(eq=False)
class Project:
    id: int
    name: str
    profile_id: str = "default"
    state: ProjectState = ProjectState.ACTIVE
    priority: ProjectPriority = ProjectPriority.NORMAL
    start_date: datetime.datetime | None = None
    end_date: datetime.datetime | None = None
    minimum_altitude_deg: float = 0.0
    use_custom_horizon: bool = False
    horizon_offset_deg: float = 0.0
    horizon: HorizonDefinition | None = None
    minimum_time_min: float = 30.0
    dither_every: int = 0
    enable_grader: bool = True
    is_mosaic: bool = False
    rule_weights: dict[str, float] = field(default_factory=dict)
    flats_handling: FlatsHandling = FlatsHandling.OFF
    flats_cadence_days: int = 0
    meridian_window_min: float = 0.0
    filter_switch_frequency: int = 0
    targets: list[Target] = field(default_factory=list)
    rejected: bool = False
    rejected_reason: str | None = None

    def __post_init__(self):
        for target in self.targets:
            target.project = self

    def add_target(self, target: Target) -> Target:
        target.project = self
        self.targets.append(target)
        return target

    def reject(self, reason: str) -> None:
        self.rejected = True
        self.rejected_reason = reason

    def is_active_at(self, t: datetime.datetime) -> bool:
        if self.state != ProjectState.ACTIVE:
            return False
        if self.start_date is not None and t < self.start_date:
            return False
        if self.end_date is not None and t > self.end_date:
            return False
        return True


def rule_weights_from_pairs(pairs) -> dict[str, float]:
    """Build a rule weight map, rejecting duplicate names and negative weights."""
    weights: dict[str, float] = {}
    for name, weight in pairs:
        if name in weights:
            raise ConfigurationError(f"Duplicate rule weight: {name}")
        if weight < 0:
            raise ConfigurationError(f"Rule weight for {name} must be non-negative")
        weights[name] = float(weight)
    return weights


@dataclass
class ImageMetrics:
    guiding_rms_arcsec: float | None = None
    guiding_rms_pixels: float | None = None
    detected_stars: int | None = None
    hfr: float | None = None


@dataclass
class ImageData:
    tag: str
    payload: dict


@dataclass
class AcquiredImage:
    project_id: int
    target_id: int
    exposure_plan_id: int
    filter_name: str
    acquired_date: datetime.datetime
    accepted: bool
    reject_reason: str
    rotation_deg: float
    roi: float
    metrics: ImageMetrics
    id: int | None = None
    image_data: list[ImageData] = field(default_factory=list)
