from abc import ABC, abstractmethod
from dataclasses import dataclass
import datetime
from typing import TYPE_CHECKING

from targetscheduler.planner.types import ImageMetrics

if TYPE_CHECKING:
    from targetscheduler.flats.expert import CameraDefaults, FlatSpec


@dataclass
class CaptureResult:
    timestamp_utc: datetime.datetime
    exposure_s: float
    metrics: ImageMetrics
    path: str | None = None


class CameraCapability(ABC):
    @abstractmethod
    def capture(
        self,
        exposure_s: float,
        gain: int | None = None,
        offset: int | None = None,
        binning: int = 1,
        roi: float = 1.0,
    ) -> CaptureResult:
        pass

    @abstractmethod
    def set_readout_mode(self, mode: int | None) -> None:
        pass

    @abstractmethod
    def defaults(self) -> "CameraDefaults":
        pass


class FilterWheelCapability(ABC):
    @abstractmethod
    def change_filter(self, filter_name: str) -> None:
        pass

    @abstractmethod
    def current_filter(self) -> str | None:
        pass


class RotatorCapability(ABC):
    @abstractmethod
    def position_deg(self) -> float:
        pass

    @abstractmethod
    def move_to(self, angle_deg: float) -> None:
        pass


class GuiderCapability(ABC):
    @abstractmethod
    def dither(self) -> None:
        pass


class FlatCapability(ABC):
    @abstractmethod
    def close_cover(self) -> None:
        pass

    @abstractmethod
    def toggle_light(self, on: bool) -> None:
        pass

    @abstractmethod
    def take_flat_set(self, spec: "FlatSpec", is_auto_exposure: bool) -> bool:
        pass


@dataclass
class DeviceSet:
    """Capabilities available to the executor; any of them may be absent."""

    camera: CameraCapability
    filter_wheel: FilterWheelCapability | None = None
    rotator: RotatorCapability | None = None
    guider: GuiderCapability | None = None
    flat_device: FlatCapability | None = None
