import logging
import math
from typing import Mapping, Sequence

from .types import ExposurePlan, Target

logger = logging.getLogger(__name__)

DEFAULT_EXPOSURE_THROTTLE = 100.0


def completed_count(plan: ExposurePlan, grading_enabled: bool) -> int:
    """Exposures counted towards the goal: accepted when grading, else acquired."""
    return plan.accepted if grading_enabled else plan.acquired


def needed_exposures(
    plan: ExposurePlan,
    throttle_percent: float = DEFAULT_EXPOSURE_THROTTLE,
    grading_enabled: bool = True,
) -> int:
    if throttle_percent < 0:
        raise ValueError("Exposure throttle must be non-negative")
    goal = math.ceil(plan.desired * throttle_percent / 100.0)
    return max(0, goal - completed_count(plan, grading_enabled))


def is_incomplete(plan: ExposurePlan, throttle_percent: float, grading_enabled: bool) -> bool:
    return plan.enabled and needed_exposures(plan, throttle_percent, grading_enabled) > 0


class ExposureSelector:
    """Pick the next exposure plan to shoot for one target.

    Call select() repeatedly to build an exposure block. Each call returns a
    single plan, so there is at most one filter change per call. Counters are
    never touched: the caller passes the tally already planned in this block.
    """

    def __init__(
        self,
        target: Target,
        throttle_percent: float = DEFAULT_EXPOSURE_THROTTLE,
        override_order: Sequence[int] | None = None,
    ):
        self._target = target
        self._throttle = throttle_percent
        self._grading = target.project.enable_grader if target.project is not None else True
        self._switch_frequency = target.project.filter_switch_frequency if target.project is not None else 0
        self._override = list(override_order) if override_order else None
        self._current: ExposurePlan | None = None
        self._taken_on_current = 0

    def remaining(self, plan: ExposurePlan, planned: Mapping[int, int] | None = None) -> int:
        already = planned.get(plan.id, 0) if planned else 0
        if not plan.enabled:
            return 0
        return max(0, needed_exposures(plan, self._throttle, self._grading) - already)

    def incomplete_plans(self, planned: Mapping[int, int] | None = None) -> list[ExposurePlan]:
        return [p for p in self._target.exposure_plans if self.remaining(p, planned) > 0]

    def ordered_plans(self, planned: Mapping[int, int] | None = None) -> list[ExposurePlan]:
        incomplete = self.incomplete_plans(planned)
        override = self._valid_override()
        if override is not None:
            by_id = {p.id: p for p in incomplete}
            return [by_id[pid] for pid in override if pid in by_id]

        position = {p.id: i for i, p in enumerate(self._target.exposure_plans)}
        manual = sorted(
            (p for p in incomplete if p.manual_order is not None),
            key=lambda p: (p.manual_order, position[p.id]),
        )
        automatic = sorted(
            (p for p in incomplete if p.manual_order is None),
            key=lambda p: (self._incompleteness(p, planned), position[p.id]),
        )
        return manual + automatic

    def _incompleteness(self, plan: ExposurePlan, planned: Mapping[int, int] | None) -> float:
        goal = math.ceil(plan.desired * self._throttle / 100.0)
        if goal <= 0:
            return 0.0
        return self.remaining(plan, planned) / goal

    def _valid_override(self) -> list[int] | None:
        if self._override is None:
            return None
        ids = {p.id for p in self._target.exposure_plans}
        required = {p.id for p in self.incomplete_plans()}
        if len(set(self._override)) != len(self._override):
            logger.warning("Target %s: override order has duplicates, ignoring", self._target.name)
            return None
        if not set(self._override) <= ids:
            logger.warning("Target %s: override order references unknown plans, ignoring", self._target.name)
            return None
        if not required <= set(self._override):
            logger.warning("Target %s: override order does not cover all incomplete plans, ignoring", self._target.name)
            return None
        return self._override

    def _sequence(self) -> list[ExposurePlan]:
        """All enabled plans in their stable order, used for filter rotation."""
        plans = [p for p in self._target.exposure_plans if p.enabled]
        override = self._valid_override()
        if override is not None:
            by_id = {p.id: p for p in plans}
            return [by_id[pid] for pid in override if pid in by_id]
        position = {p.id: i for i, p in enumerate(plans)}
        return sorted(
            plans,
            key=lambda p: (p.manual_order is None, p.manual_order or 0, position[p.id]),
        )

    def select(self, planned: Mapping[int, int] | None = None) -> ExposurePlan | None:
        """Return the next plan to shoot, or None when the target needs nothing."""
        ordered = self.ordered_plans(planned)
        if not ordered:
            return None

        current = self._current
        if current is not None and current in ordered:
            if self._switch_frequency == 0 or self._taken_on_current < self._switch_frequency:
                self._taken_on_current += 1
                return current
            nxt = self._next_after(current, ordered)
        elif current is not None and self._switch_frequency > 0:
            nxt = self._next_after(current, ordered)
        else:
            nxt = ordered[0]

        self._current = nxt
        self._taken_on_current = 1
        return nxt

    def _next_after(self, plan: ExposurePlan, ordered: list[ExposurePlan]) -> ExposurePlan:
        sequence = self._sequence()
        start = sequence.index(plan) if plan in sequence else -1
        for offset in range(1, len(sequence) + 1):
            candidate = sequence[(start + offset) % len(sequence)]
            if candidate in ordered:
                return candidate
        return ordered[0]
