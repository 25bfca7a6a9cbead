from abc import ABC, abstractmethod
import datetime
import logging
from typing import Sequence

from targetscheduler.flats.expert import FlatHistory
from targetscheduler.planner.types import AcquiredImage, ExposurePlan, Project, Target

logger = logging.getLogger(__name__)


class ProjectRepository(ABC):
    """Storage for projects, exposure history and flat history.

    Writes are upserts and must be all-or-nothing; failures raise
    RepositoryError instead of leaving partial state.
    """

    @abstractmethod
    def get_all_projects(self, profile_id: str) -> Sequence[Project]:
        raise NotImplementedError

    @abstractmethod
    def get_active_projects(self, profile_id: str, at_time: datetime.datetime) -> Sequence[Project]:
        raise NotImplementedError

    @abstractmethod
    def save_project(self, project: Project) -> Project:
        raise NotImplementedError

    @abstractmethod
    def save_target(self, target: Target) -> Target:
        raise NotImplementedError

    @abstractmethod
    def save_exposure_plan(self, plan: ExposurePlan) -> ExposurePlan:
        raise NotImplementedError

    @abstractmethod
    def get_acquired_images(self, target_id: int, filter_name: str) -> Sequence[AcquiredImage]:
        """Images for a target and filter, newest first."""
        raise NotImplementedError

    @abstractmethod
    def add_acquired_image(self, image: AcquiredImage) -> AcquiredImage:
        raise NotImplementedError

    def record_acquisition(self, plan: ExposurePlan, image: AcquiredImage) -> AcquiredImage:
        """Count an acquisition on plan and store its image, or do neither.

        The counter is saved first; if the image cannot be stored the counter
        is put back and saved again.
        """
        counts = (plan.acquired, plan.accepted)
        plan.acquired += 1
        if image.accepted:
            plan.accepted += 1
        try:
            self.save_exposure_plan(plan)
        except Exception:
            plan.acquired, plan.accepted = counts
            raise
        try:
            return self.add_acquired_image(image)
        except Exception:
            plan.acquired, plan.accepted = counts
            try:
                self.save_exposure_plan(plan)
            except Exception:
                logger.exception("Could not restore counters of exposure plan %s", plan.id)
            raise

    @abstractmethod
    def get_flats_history(self, session_date: datetime.date) -> Sequence[FlatHistory]:
        raise NotImplementedError

    @abstractmethod
    def add_flat_history(self, history: FlatHistory) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_acquired_images_since(self, since: datetime.datetime) -> Sequence[AcquiredImage]:
        raise NotImplementedError
