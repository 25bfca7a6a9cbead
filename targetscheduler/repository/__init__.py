from .base import ProjectRepository
from .loader import load_projects_file, load_repository, parse_projects
from .memory import InMemoryRepository
from .sync import ExposureAuthority, LocalAuthority

__all__ = [
    "ExposureAuthority",
    "InMemoryRepository",
    "LocalAuthority",
    "ProjectRepository",
    "load_projects_file",
    "load_repository",
    "parse_projects",
]
