from .emulator import PlannerEmulator
from .exposures import ExposureSelector, needed_exposures
from .instructions import SchedulerPlan
from .planner import Planner, PlannerState
from .scoring import ScoringEngine
from .types import (
    ExposurePlan,
    ExposureTemplate,
    ObserverLocation,
    Project,
    Target,
    TimeInterval,
)
from .visibility import VisibilityCalculator, VisibilityResult

__all__ = [
    "ExposurePlan",
    "ExposureSelector",
    "ExposureTemplate",
    "ObserverLocation",
    "Planner",
    "PlannerEmulator",
    "PlannerState",
    "Project",
    "SchedulerPlan",
    "ScoringEngine",
    "Target",
    "TimeInterval",
    "VisibilityCalculator",
    "VisibilityResult",
    "needed_exposures",
]
