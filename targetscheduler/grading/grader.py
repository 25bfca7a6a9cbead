import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Iterable

import numpy as np

from targetscheduler.planner.types import AcquiredImage, ImageMetrics

logger = logging.getLogger(__name__)

ACCEPTED = ""
NOT_GRADED = "not graded"
REJECT_RMS = "RMS"
REJECT_STARS = "Stars"
REJECT_HFR = "HFR"


@dataclass
class GradingPreferences:
    enable_grade_rms: bool = True
    enable_grade_stars: bool = True
    enable_grade_hfr: bool = True
    accept_improvement: bool = True
    max_sample_size: int = 10
    rms_pixel_threshold: float = 8.0
    rms_sigma_factor: float = 4.0
    stars_sigma_factor: float = 4.0
    hfr_sigma_factor: float = 4.0

    @classmethod
    def from_config(cls, config) -> "GradingPreferences":
        return cls(
            enable_grade_rms=config.grade_rms,
            enable_grade_stars=config.grade_stars,
            enable_grade_hfr=config.grade_hfr,
            accept_improvement=config.grading_accept_improvement,
            max_sample_size=config.grading_max_sample_size,
            rms_pixel_threshold=config.grading_rms_pixel_threshold,
            rms_sigma_factor=config.grading_rms_sigma_factor,
            stars_sigma_factor=config.grading_stars_sigma_factor,
            hfr_sigma_factor=config.grading_hfr_sigma_factor,
        )


@dataclass
class GradingResult:
    accepted: bool
    reason: str

    @property
    def graded(self) -> bool:
        return self.reason != NOT_GRADED


@dataclass(frozen=True)
class _Metric:
    reason: str
    attribute: str
    higher_is_worse: bool
    enabled_pref: str
    sigma_pref: str


_METRICS = (
    _Metric(REJECT_RMS, "guiding_rms_arcsec", True, "enable_grade_rms", "rms_sigma_factor"),
    _Metric(REJECT_STARS, "detected_stars", False, "enable_grade_stars", "stars_sigma_factor"),
    _Metric(REJECT_HFR, "hfr", True, "enable_grade_hfr", "hfr_sigma_factor"),
)


class ImageGrader:
    """Accept or reject images against a rolling population of accepted ones.

    One population is kept per (target id, filter name). Only accepted,
    graded images enter a population, and the oldest sample is dropped once
    max_sample_size is exceeded. Updates are not locked: the host must not
    grade two images of the same target and filter concurrently.
    """

    def __init__(self, preferences: GradingPreferences | None = None):
        self._prefs = preferences or GradingPreferences()
        if self._prefs.max_sample_size < 1:
            raise ValueError("Grading sample size must be at least 1")
        self._populations: dict[tuple[int, str], deque] = {}

    @property
    def preferences(self) -> GradingPreferences:
        return self._prefs

    def population(self, target_id: int, filter_name: str) -> list[ImageMetrics]:
        return list(self._population(target_id, filter_name))

    def _population(self, target_id: int, filter_name: str) -> deque:
        key = (target_id, filter_name)
        if key not in self._populations:
            self._populations[key] = deque(maxlen=self._prefs.max_sample_size)
        return self._populations[key]

    def seed(self, target_id: int, filter_name: str, images: Iterable[AcquiredImage]) -> None:
        """Load history, newest first, as repositories return it."""
        population = self._population(target_id, filter_name)
        population.clear()
        accepted = [img for img in images if img.accepted and img.reject_reason != NOT_GRADED]
        for image in reversed(accepted[: self._prefs.max_sample_size]):
            population.append(image.metrics)

    def grade(
        self,
        target_id: int,
        filter_name: str,
        metrics: ImageMetrics,
        grading_enabled: bool = True,
        record: bool = True,
    ) -> GradingResult:
        """Grade metrics against the population.

        With record=False an accepted sample is left out of the population;
        call admit() once the image has been stored.
        """
        if not grading_enabled:
            return GradingResult(accepted=True, reason=NOT_GRADED)

        result = self._verdict(self._population(target_id, filter_name), metrics)
        if result.accepted and record:
            self.admit(target_id, filter_name, metrics)
        logger.info(
            "Grading target %s filter %s: %s%s",
            target_id,
            filter_name,
            "accepted" if result.accepted else "rejected",
            f" ({result.reason})" if result.reason else "",
        )
        return result

    def admit(self, target_id: int, filter_name: str, metrics: ImageMetrics) -> None:
        self._population(target_id, filter_name).append(metrics)

    def _verdict(self, population: deque, metrics: ImageMetrics) -> GradingResult:
        prefs = self._prefs
        if prefs.enable_grade_rms and metrics.guiding_rms_pixels is not None:
            if metrics.guiding_rms_pixels > prefs.rms_pixel_threshold:
                return GradingResult(accepted=False, reason=REJECT_RMS)

        if not population:
            return GradingResult(accepted=True, reason=ACCEPTED)

        enabled = [m for m in _METRICS if getattr(prefs, m.enabled_pref)]
        stats = {}
        for metric in enabled:
            value = getattr(metrics, metric.attribute)
            samples = [getattr(s, metric.attribute) for s in population]
            samples = [s for s in samples if s is not None]
            if value is None or not samples:
                continue
            data = np.asarray(samples, dtype=float)
            stats[metric] = (float(value), float(np.mean(data)), float(np.std(data)))

        if prefs.accept_improvement and stats and all(
            _better(metric, value, mean) for metric, (value, mean, _) in stats.items()
        ):
            return GradingResult(accepted=True, reason=ACCEPTED)

        for metric, (value, mean, std) in stats.items():
            factor = getattr(prefs, metric.sigma_pref)
            if _outlier(metric, value, mean, std, factor, two_sided=not prefs.accept_improvement):
                return GradingResult(accepted=False, reason=metric.reason)

        return GradingResult(accepted=True, reason=ACCEPTED)


def _better(metric: _Metric, value: float, mean: float) -> bool:
    return value < mean if metric.higher_is_worse else value > mean


def _at_or_beyond(value: float, limit: float, upward: bool) -> bool:
    if math.isclose(value, limit, rel_tol=1e-9, abs_tol=1e-12):
        return True
    return value > limit if upward else value < limit


def _outlier(metric: _Metric, value: float, mean: float, std: float, factor: float, two_sided: bool) -> bool:
    if std == 0:
        # a constant population: only a strictly worse (or, two-sided, different) value is out
        if two_sided:
            return value != mean
        return not _better(metric, value, mean) and value != mean
    upper = mean + factor * std
    lower = mean - factor * std
    if metric.higher_is_worse:
        worse = _at_or_beyond(value, upper, upward=True)
        improved = _at_or_beyond(value, lower, upward=False)
    else:
        worse = _at_or_beyond(value, lower, upward=False)
        improved = _at_or_beyond(value, upper, upward=True)
    return worse or (two_sided and improved)
