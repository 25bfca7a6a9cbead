from .format import (
    deg_to_dms,
    deg_to_hms,
    dms_to_deg,
    format_duration,
    hms_to_deg,
)

__all__ = [
    "deg_to_dms",
    "deg_to_hms",
    "dms_to_deg",
    "format_duration",
    "hms_to_deg",
]
