from abc import ABC, abstractmethod
import logging

from targetscheduler.planner.types import AcquiredImage, ExposurePlan

logger = logging.getLogger(__name__)


class ExposureAuthority(ABC):
    """Owner of exposure counters when several instances share projects.

    In client mode the planner reads counts from the authority instead of the
    plan, and the executor hands acquisitions to it rather than updating
    counters itself.
    """

    @abstractmethod
    def exposure_counts(self, plan: ExposurePlan) -> tuple[int, int]:
        """Return (acquired, accepted) for an exposure plan."""
        raise NotImplementedError

    @abstractmethod
    def submit_acquisition(self, plan: ExposurePlan, image: AcquiredImage) -> None:
        raise NotImplementedError


class LocalAuthority(ExposureAuthority):
    """Authority backed by a repository, as a server instance would run it."""

    def __init__(self, repository):
        self._repository = repository

    def exposure_counts(self, plan):
        return plan.acquired, plan.accepted

    def submit_acquisition(self, plan, image):
        self._repository.record_acquisition(plan, image)
        logger.debug(
            "Authority recorded exposure for plan %s: acquired=%d accepted=%d",
            plan.id,
            plan.acquired,
            plan.accepted,
        )
