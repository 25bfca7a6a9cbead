import datetime
import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping

from targetscheduler.devices.base import DeviceSet
from targetscheduler.errors import DeviceError, RepositoryError, SequenceCancelled, SequenceFatalError
from targetscheduler.flats.capture import FlatSetRunner
from targetscheduler.grading.grader import ImageGrader
from targetscheduler.planner.instructions import (
    AfterTargetHook,
    BeforeTargetHook,
    Dither,
    Message,
    SchedulerPlan,
    SetReadoutMode,
    SwitchFilter,
    TakeExposure,
    TakeFlats,
)
from targetscheduler.planner.types import AcquiredImage, ExposurePlan, ImageData, Target
from .token import CancellationToken

logger = logging.getLogger(__name__)

TargetHook = Callable[[Target], None]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class ExecutionResult:
    plan_id: str
    target_name: str | None = None
    exposures_attempted: int = 0
    exposures_acquired: int = 0
    exposures_accepted: int = 0
    flat_sessions: int = 0
    failures: list[str] = field(default_factory=list)


class PlanExecutor:
    """Run a SchedulerPlan's instructions against the connected devices.

    Acquisitions are graded and recorded as they complete. With an exposure
    authority the executor hands acquisitions to it and leaves counters alone.
    """

    def __init__(
        self,
        devices: DeviceSet,
        repository,
        grader: ImageGrader | None = None,
        authority=None,
        token: CancellationToken | None = None,
        flats_auto_exposure: bool = False,
        hooks: Mapping[str, TargetHook] | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ):
        self._devices = devices
        self._repository = repository
        self._grader = grader or ImageGrader()
        self._authority = authority
        self._token = token or CancellationToken()
        self._hooks = dict(hooks or {})
        self._clock = clock
        self._flats = FlatSetRunner(
            devices.flat_device,
            repository,
            token=self._token,
            auto_exposure=flats_auto_exposure,
            clock=clock,
        )
        self._seeded: set[tuple[int, str]] = set()

    @property
    def token(self) -> CancellationToken:
        return self._token

    def execute(self, plan: SchedulerPlan | None) -> ExecutionResult:
        if plan is None:
            raise SequenceFatalError("Executor started without a plan")
        result = ExecutionResult(plan_id=plan.plan_id)
        if plan.is_wait:
            return result
        if plan.target is None:
            raise SequenceFatalError(f"Plan {plan.plan_id} has no target")
        self._check_containment(plan)

        target = plan.target
        result.target_name = target.name
        logger.info("Executing plan %s for %s (%d instructions)", plan.plan_id, target.name, len(plan.instructions))
        for instruction in plan.instructions:
            self._token.raise_if_cancelled()
            if isinstance(instruction, TakeExposure):
                self._take_exposure(instruction.exposure_plan, target, result, persist=not plan.is_emulator)
                continue
            try:
                self._dispatch(instruction, result)
            except DeviceError as exc:
                logger.warning("%s failed: %s", instruction.kind, exc)
                result.failures.append(f"{instruction.kind}: {exc}")

        logger.info(
            "Plan %s finished: %d/%d acquired, %d accepted",
            plan.plan_id,
            result.exposures_acquired,
            result.exposures_attempted,
            result.exposures_accepted,
        )
        return result

    def take_flats(self, sessions) -> int:
        return len(self._flats.run(sessions))

    def _check_containment(self, plan: SchedulerPlan) -> None:
        for instruction in plan.instructions:
            if not isinstance(instruction, (SetReadoutMode, SwitchFilter, TakeExposure)):
                continue
            owner = instruction.exposure_plan.target
            if owner is None or owner.id != plan.target.id:
                raise SequenceFatalError(
                    f"{instruction.kind} for exposure plan {instruction.exposure_plan.id} "
                    f"is not part of target {plan.target.name}"
                )

    def _dispatch(self, instruction, result: ExecutionResult) -> None:
        devices = self._devices
        if isinstance(instruction, Message):
            logger.info("Plan message: %s", instruction.text)
        elif isinstance(instruction, SetReadoutMode):
            devices.camera.set_readout_mode(instruction.exposure_plan.readout_mode)
        elif isinstance(instruction, SwitchFilter):
            if devices.filter_wheel is None:
                logger.debug("No filter wheel; skipping switch to %s", instruction.exposure_plan.filter_name)
                return
            filter_name = instruction.exposure_plan.filter_name
            if devices.filter_wheel.current_filter() == filter_name:
                logger.debug("Filter %s already in place", filter_name)
                return
            devices.filter_wheel.change_filter(filter_name)
        elif isinstance(instruction, Dither):
            if devices.guider is not None:
                devices.guider.dither()
        elif isinstance(instruction, BeforeTargetHook):
            if devices.rotator is not None:
                devices.rotator.move_to(instruction.target.rotation_deg)
            self._run_hook("before_target", instruction.target)
        elif isinstance(instruction, AfterTargetHook):
            self._run_hook("after_target", instruction.target)
        elif isinstance(instruction, TakeFlats):
            result.flat_sessions += self.take_flats(list(instruction.light_sessions))
        else:
            raise SequenceFatalError(f"Unknown instruction: {instruction!r}")

    def _run_hook(self, name: str, target: Target) -> None:
        hook = self._hooks.get(name)
        if hook is not None:
            logger.debug("Running %s hook for %s", name, target.name)
            hook(target)

    def _take_exposure(
        self,
        exposure_plan: ExposurePlan,
        target: Target,
        result: ExecutionResult,
        persist: bool = True,
    ) -> None:
        project = target.project
        snapshot = (exposure_plan.acquired, exposure_plan.accepted)
        result.exposures_attempted += 1
        try:
            capture = self._devices.camera.capture(
                exposure_plan.exposure_length_s,
                gain=exposure_plan.gain,
                offset=exposure_plan.offset,
                binning=exposure_plan.binning,
                roi=target.roi,
            )
        except DeviceError as exc:
            logger.warning("Exposure %s on %s failed: %s", exposure_plan.filter_name, target.name, exc)
            result.failures.append(f"take_exposure: {exc}")
            return

        try:
            self._token.raise_if_cancelled()
            self._seed_grader(target, exposure_plan.filter_name)
            grading = self._grader.grade(
                target.id,
                exposure_plan.filter_name,
                capture.metrics,
                grading_enabled=project.enable_grader if project is not None else True,
                record=False,
            )
            image = AcquiredImage(
                project_id=project.id if project is not None else 0,
                target_id=target.id,
                exposure_plan_id=exposure_plan.id,
                filter_name=exposure_plan.filter_name,
                acquired_date=capture.timestamp_utc,
                accepted=grading.accepted,
                reject_reason=grading.reason,
                rotation_deg=self._rotation(target),
                roi=target.roi,
                metrics=capture.metrics,
                image_data=[ImageData(tag="capture", payload={"exposure_s": capture.exposure_s, "path": capture.path})],
            )
            if persist:
                self._record(exposure_plan, image)
        except SequenceCancelled:
            exposure_plan.acquired, exposure_plan.accepted = snapshot
            logger.warning("Exposure on %s cancelled; counters restored", target.name)
            raise
        except RepositoryError as exc:
            exposure_plan.acquired, exposure_plan.accepted = snapshot
            logger.error("Could not record exposure %s on %s: %s", exposure_plan.filter_name, target.name, exc)
            result.failures.append(f"take_exposure: {exc}")
            return
        except Exception:
            exposure_plan.acquired, exposure_plan.accepted = snapshot
            raise

        if grading.accepted and grading.graded:
            self._grader.admit(target.id, exposure_plan.filter_name, capture.metrics)
        result.exposures_acquired += 1
        if image.accepted:
            result.exposures_accepted += 1

    def _seed_grader(self, target: Target, filter_name: str) -> None:
        key = (target.id, filter_name)
        if key in self._seeded:
            return
        self._grader.seed(target.id, filter_name, self._repository.get_acquired_images(target.id, filter_name))
        self._seeded.add(key)

    def _rotation(self, target: Target) -> float:
        if self._devices.rotator is not None:
            return self._devices.rotator.position_deg()
        return target.rotation_deg

    def _record(self, exposure_plan: ExposurePlan, image: AcquiredImage) -> None:
        if self._authority is not None:
            self._authority.submit_acquisition(exposure_plan, image)
            return
        self._repository.record_acquisition(exposure_plan, image)
