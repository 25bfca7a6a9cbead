from .expert import (
    CameraDefaults,
    FlatHistory,
    FlatSpec,
    FlatsExpert,
    LightSession,
    cull_flats_by_history,
    flat_specs_for_plan,
    light_session_date,
)
from .capture import FlatSetRunner

__all__ = [
    "CameraDefaults",
    "FlatHistory",
    "FlatSetRunner",
    "FlatSpec",
    "FlatsExpert",
    "LightSession",
    "cull_flats_by_history",
    "flat_specs_for_plan",
    "light_session_date",
]
