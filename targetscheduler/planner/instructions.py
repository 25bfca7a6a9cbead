import datetime
import uuid
from dataclasses import dataclass, field
from typing import ClassVar, Sequence, Union

from .types import ExposurePlan, Target, TimeInterval


@dataclass(frozen=True)
class Message:
    text: str
    kind: ClassVar[str] = "message"


@dataclass(frozen=True)
class SetReadoutMode:
    exposure_plan: ExposurePlan
    kind: ClassVar[str] = "set_readout_mode"


@dataclass(frozen=True)
class SwitchFilter:
    exposure_plan: ExposurePlan
    kind: ClassVar[str] = "switch_filter"


@dataclass(frozen=True)
class TakeExposure:
    exposure_plan: ExposurePlan
    kind: ClassVar[str] = "take_exposure"


@dataclass(frozen=True)
class Dither:
    kind: ClassVar[str] = "dither"


@dataclass(frozen=True)
class BeforeTargetHook:
    target: Target
    kind: ClassVar[str] = "before_target"


@dataclass(frozen=True)
class AfterTargetHook:
    target: Target
    kind: ClassVar[str] = "after_target"


@dataclass(frozen=True)
class TakeFlats:
    """Flat sets owed to a previously imaged target (see flats.expert.LightSession)."""

    light_sessions: tuple
    kind: ClassVar[str] = "take_flats"


PlanInstruction = Union[
    Message,
    SetReadoutMode,
    SwitchFilter,
    TakeExposure,
    Dither,
    BeforeTargetHook,
    AfterTargetHook,
    TakeFlats,
]


@dataclass
class SchedulerPlan:
    """Output of one planning cycle: either a wait or a target with instructions."""

    target: Target | None = None
    time_interval: TimeInterval | None = None
    instructions: Sequence[PlanInstruction] = field(default_factory=list)
    wait_until: datetime.datetime | None = None
    is_emulator: bool = False
    plan_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def wait(cls, until: datetime.datetime, is_emulator: bool = False) -> "SchedulerPlan":
        return cls(wait_until=until, is_emulator=is_emulator)

    @property
    def is_wait(self) -> bool:
        return self.wait_until is not None

    def exposures(self) -> list[TakeExposure]:
        return [i for i in self.instructions if isinstance(i, TakeExposure)]

    def summary(self) -> str:
        if self.is_wait:
            return f"wait until {self.wait_until.isoformat()}"
        kinds = ", ".join(_describe(i) for i in self.instructions)
        return f"{self.target.name}: {kinds}"


def _describe(instruction: PlanInstruction) -> str:
    if isinstance(instruction, (SwitchFilter, TakeExposure, SetReadoutMode)):
        return f"{instruction.kind}({instruction.exposure_plan.filter_name})"
    if isinstance(instruction, (BeforeTargetHook, AfterTargetHook)):
        return f"{instruction.kind}({instruction.target.name})"
    return instruction.kind
