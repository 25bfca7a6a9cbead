from .grader import (
    ACCEPTED,
    NOT_GRADED,
    REJECT_HFR,
    REJECT_RMS,
    REJECT_STARS,
    GradingPreferences,
    GradingResult,
    ImageGrader,
)

__all__ = [
    "ACCEPTED",
    "NOT_GRADED",
    "REJECT_HFR",
    "REJECT_RMS",
    "REJECT_STARS",
    "GradingPreferences",
    "GradingResult",
    "ImageGrader",
]
