import datetime
import itertools
import logging
import threading
from typing import Iterable

from targetscheduler.errors import RepositoryError
from targetscheduler.flats.expert import FlatHistory
from targetscheduler.planner.types import AcquiredImage, ExposurePlan, Project, Target
from .base import ProjectRepository

logger = logging.getLogger(__name__)


class InMemoryRepository(ProjectRepository):
    def __init__(self, projects: Iterable[Project] = ()):
        self._lock = threading.Lock()
        self._projects: dict[int, Project] = {}
        self._images: list[AcquiredImage] = []
        self._flat_history: list[FlatHistory] = []
        self._image_ids = itertools.count(1)
        for project in projects:
            self.save_project(project)

    def get_all_projects(self, profile_id):
        with self._lock:
            return [p for p in self._projects.values() if p.profile_id == profile_id]

    def get_active_projects(self, profile_id, at_time):
        return [p for p in self.get_all_projects(profile_id) if p.is_active_at(at_time)]

    def save_project(self, project):
        logger.debug("Saving project id=%s name=%s", project.id, project.name)
        with self._lock:
            self._projects[project.id] = project
        return project

    def save_target(self, target):
        logger.debug("Saving target id=%s name=%s", target.id, target.name)
        with self._lock:
            project = self._project_for(target)
            existing = next((t for t in project.targets if t.id == target.id), None)
            if existing is None:
                project.add_target(target)
            elif existing is not target:
                project.targets[project.targets.index(existing)] = target
                target.project = project
        return target

    def save_exposure_plan(self, plan):
        logger.debug("Saving exposure plan id=%s", plan.id)
        with self._lock:
            if plan.target is None:
                raise RepositoryError(f"Exposure plan {plan.id} has no target")
            project = self._project_for(plan.target)
            target = next((t for t in project.targets if t.id == plan.target.id), None)
            if target is None:
                raise RepositoryError(f"Target {plan.target.name} is not stored under project {project.name}")
            existing = next((p for p in target.exposure_plans if p.id == plan.id), None)
            if existing is None:
                target.add_exposure_plan(plan)
            elif existing is not plan:
                # copy counters so readers holding the stored instance see them
                existing.desired = plan.desired
                existing.acquired = plan.acquired
                existing.accepted = plan.accepted
                existing.enabled = plan.enabled
        return plan

    def _project_for(self, target: Target) -> Project:
        if target.project is None or target.project.id not in self._projects:
            raise RepositoryError(f"Target {target.name} does not belong to a stored project")
        return self._projects[target.project.id]

    def get_acquired_images(self, target_id, filter_name):
        with self._lock:
            images = [i for i in self._images if i.target_id == target_id and i.filter_name == filter_name]
        return sorted(images, key=lambda i: i.acquired_date, reverse=True)

    def get_acquired_images_since(self, since):
        with self._lock:
            return [i for i in self._images if i.acquired_date >= since]

    def add_acquired_image(self, image):
        with self._lock:
            if image.id is None:
                image.id = next(self._image_ids)
            self._images.append(image)
        return image

    def get_flats_history(self, session_date):
        with self._lock:
            return [h for h in self._flat_history if h.light_session_date == session_date]

    def add_flat_history(self, history):
        with self._lock:
            self._flat_history.append(history)
