import datetime
import logging
from dataclasses import dataclass, field
from typing import Callable

from targetscheduler.errors import RepositoryError, SequenceCancelled, SequenceFailedError
from targetscheduler.planner.instructions import SchedulerPlan
from .executor import ExecutionResult, PlanExecutor

logger = logging.getLogger(__name__)

PlanSource = Callable[[SchedulerPlan | None], SchedulerPlan | None]
ClosingSource = Callable[[SchedulerPlan], SchedulerPlan | None]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def planner_source(planner, clock: Callable[[], datetime.datetime] = _utcnow) -> PlanSource:
    def next_plan(previous: SchedulerPlan | None) -> SchedulerPlan | None:
        return planner.get_plan(now=clock(), previous_plan=previous)

    return next_plan


def planner_closing(planner, clock: Callable[[], datetime.datetime] = _utcnow) -> ClosingSource:
    def close(previous: SchedulerPlan) -> SchedulerPlan | None:
        return planner.closing_plan(previous, now=clock())

    return close


def emulator_source(emulator) -> PlanSource:
    def next_plan(previous: SchedulerPlan | None) -> SchedulerPlan | None:
        return emulator.get_plan(previous.target if previous is not None else None)

    return next_plan


@dataclass
class RunSummary:
    cycles: int = 0
    waits: int = 0
    results: list[ExecutionResult] = field(default_factory=list)
    cancelled: bool = False
    cadence_flat_sessions: int = 0


class SchedulerRunner:
    """Alternate between asking for a plan and executing it until the night ends."""

    def __init__(
        self,
        source: PlanSource,
        executor: PlanExecutor,
        clock: Callable[[], datetime.datetime] = _utcnow,
        sleep: Callable[[float], bool] | None = None,
        max_cycles: int | None = None,
        cadence_flats: Callable[[], list] | None = None,
        closing: ClosingSource | None = None,
    ):
        self._source = source
        self._executor = executor
        self._clock = clock
        self._sleep = sleep or executor.token.wait
        self._max_cycles = max_cycles
        self._cadence_flats = cadence_flats
        self._closing = closing

    def run(self) -> RunSummary:
        summary = RunSummary()
        token = self._executor.token
        previous: SchedulerPlan | None = None

        while self._max_cycles is None or summary.cycles < self._max_cycles:
            if token.is_cancelled:
                summary.cancelled = True
                break
            summary.cycles += 1
            plan = self._source(previous)

            if plan is None:
                logger.info("No more plans; run complete after %d cycles", summary.cycles)
                if previous is not None and not self._close(previous, summary):
                    break
                summary.cadence_flat_sessions = self._run_cadence_flats(summary)
                break

            if plan.is_wait:
                summary.waits += 1
                seconds = (plan.wait_until - self._clock()).total_seconds()
                logger.info("Waiting %.0fs until %s", max(0.0, seconds), plan.wait_until.isoformat())
                if self._sleep(max(0.0, seconds)):
                    summary.cancelled = True
                    break
                continue

            try:
                summary.results.append(self._executor.execute(plan))
            except SequenceCancelled as exc:
                logger.warning("Run cancelled during %s: %s", plan.target.name, exc)
                summary.cancelled = True
                break
            except (SequenceFailedError, RepositoryError) as exc:
                logger.error("Plan for %s failed: %s", plan.target.name, exc)
            previous = plan

        return summary

    def _close(self, previous: SchedulerPlan, summary: RunSummary) -> bool:
        """Run the closing plan for the last target; False when the run was cancelled."""
        if self._closing is None:
            return True
        plan = self._closing(previous)
        if plan is None:
            return True
        try:
            summary.results.append(self._executor.execute(plan))
        except SequenceCancelled as exc:
            logger.warning("Run cancelled while closing %s: %s", previous.target.name, exc)
            summary.cancelled = True
            return False
        except (SequenceFailedError, RepositoryError) as exc:
            logger.error("Closing %s failed: %s", previous.target.name, exc)
        return True

    def _run_cadence_flats(self, summary: RunSummary) -> int:
        if self._cadence_flats is None:
            return 0
        sessions = self._cadence_flats()
        if not sessions:
            return 0
        try:
            return self._executor.take_flats(sessions)
        except SequenceCancelled:
            summary.cancelled = True
            return 0
