from .executor import ExecutionResult, PlanExecutor
from .runner import RunSummary, SchedulerRunner, emulator_source, planner_closing, planner_source
from .token import CancellationToken

__all__ = [
    "CancellationToken",
    "ExecutionResult",
    "PlanExecutor",
    "RunSummary",
    "SchedulerRunner",
    "emulator_source",
    "planner_closing",
    "planner_source",
]
