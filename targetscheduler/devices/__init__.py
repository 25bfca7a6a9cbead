from .base import (
    CameraCapability,
    CaptureResult,
    DeviceSet,
    FilterWheelCapability,
    FlatCapability,
    GuiderCapability,
    RotatorCapability,
)
from .simulator import (
    SimulatedCamera,
    SimulatedFilterWheel,
    SimulatedFlatPanel,
    SimulatedGuider,
    SimulatedRotator,
    simulated_devices,
)

__all__ = [
    "CameraCapability",
    "CaptureResult",
    "DeviceSet",
    "FilterWheelCapability",
    "FlatCapability",
    "GuiderCapability",
    "RotatorCapability",
    "SimulatedCamera",
    "SimulatedFilterWheel",
    "SimulatedFlatPanel",
    "SimulatedGuider",
    "SimulatedRotator",
    "simulated_devices",
]
