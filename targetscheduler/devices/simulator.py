import datetime
import logging
from typing import Callable, Iterable

from targetscheduler.errors import DeviceError
from targetscheduler.flats.expert import CameraDefaults, FlatSpec
from targetscheduler.planner.types import ImageMetrics
from .base import (
    CameraCapability,
    CaptureResult,
    DeviceSet,
    FilterWheelCapability,
    FlatCapability,
    GuiderCapability,
    RotatorCapability,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class SimulatedCamera(CameraCapability):
    """Camera that returns scripted metrics without touching hardware.

    metrics are handed out in order (the last one repeats). Capture numbers
    listed in fail_on (1-based) raise DeviceError instead.
    """

    def __init__(
        self,
        metrics: Iterable[ImageMetrics] | None = None,
        fail_on: Iterable[int] = (),
        clock: Callable[[], datetime.datetime] = _utcnow,
        defaults: CameraDefaults | None = None,
    ):
        self._metrics = list(metrics or [ImageMetrics(0.6, 0.8, 250, 2.1)])
        self._fail_on = set(fail_on)
        self._clock = clock
        self._defaults = defaults or CameraDefaults(gain=100, offset=10, readout_mode=0)
        self.readout_mode: int | None = None
        self.captures: list[dict] = []
        self._count = 0

    def capture(self, exposure_s, gain=None, offset=None, binning=1, roi=1.0):
        self._count += 1
        if self._count in self._fail_on:
            raise DeviceError(f"simulated capture failure on exposure {self._count}")
        metrics = self._metrics[min(self._count, len(self._metrics)) - 1]
        self.captures.append(
            {"exposure_s": exposure_s, "gain": gain, "offset": offset, "binning": binning, "roi": roi}
        )
        logger.debug("Simulated capture %d: %.1fs", self._count, exposure_s)
        return CaptureResult(timestamp_utc=self._clock(), exposure_s=exposure_s, metrics=metrics)

    def set_readout_mode(self, mode):
        self.readout_mode = mode

    def defaults(self):
        return self._defaults


class SimulatedFilterWheel(FilterWheelCapability):
    def __init__(self, filters: Iterable[str] | None = None):
        self._filters = set(filters) if filters is not None else None
        self._current: str | None = None
        self.changes: list[str] = []

    def change_filter(self, filter_name):
        if self._filters is not None and filter_name not in self._filters:
            raise DeviceError(f"filter not in wheel: {filter_name}")
        self._current = filter_name
        self.changes.append(filter_name)

    def current_filter(self):
        return self._current


class SimulatedRotator(RotatorCapability):
    def __init__(self, position_deg: float = 0.0):
        self._position = position_deg

    def position_deg(self):
        return self._position

    def move_to(self, angle_deg):
        self._position = angle_deg % 360.0


class SimulatedGuider(GuiderCapability):
    def __init__(self):
        self.dithers = 0

    def dither(self):
        self.dithers += 1


class SimulatedFlatPanel(FlatCapability):
    def __init__(self, fail_filters: Iterable[str] = ()):
        self._fail_filters = set(fail_filters)
        self.cover_closed = False
        self.light_on = False
        self.flat_sets: list[FlatSpec] = []

    def close_cover(self):
        self.cover_closed = True

    def toggle_light(self, on):
        self.light_on = on

    def take_flat_set(self, spec, is_auto_exposure):
        if spec.filter_name in self._fail_filters:
            logger.warning("Simulated flat set failed for %s", spec.filter_name)
            return False
        self.flat_sets.append(spec)
        return True


def simulated_devices(clock: Callable[[], datetime.datetime] = _utcnow) -> DeviceSet:
    return DeviceSet(
        camera=SimulatedCamera(clock=clock),
        filter_wheel=SimulatedFilterWheel(),
        rotator=SimulatedRotator(),
        guider=SimulatedGuider(),
        flat_device=SimulatedFlatPanel(),
    )
