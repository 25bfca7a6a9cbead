import datetime

import pytest

from targetscheduler.planner.types import (
    ExposurePlan,
    ExposureTemplate,
    ObserverLocation,
    Project,
    Target,
)


def pytest_addoption(parser):
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run tests marked as integration",
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--integration"):
        return

    for item in items:
        if "integration" in item.keywords:
            item.add_marker(
                pytest.mark.skip(
                    reason="need --integration option to run integration tests"
                )
            )


# 2024-07-01T14:00Z is astronomical night at the site below, so tests that
# depend on darkness stay reproducible.
NIGHT = datetime.datetime(2024, 7, 1, 14, 0, tzinfo=datetime.timezone.utc)
SITE = ObserverLocation(latitude_deg=-34.93, longitude_deg=138.60, elevation_m=50, name="Adelaide")


@pytest.fixture
def night():
    return NIGHT


@pytest.fixture
def site():
    return SITE


@pytest.fixture
def make_project():
    """Factory for a project with one target per (id, name, ra, dec) row.

    Every target gets one exposure plan per filter. Dec -80 at this site is
    circumpolar (altitude 25-45 deg); dec +80 never rises.
    """

    def factory(
        project_id=1,
        name="P1",
        targets=((1, "T1", 0.0, -80.0),),
        filters=("Lum",),
        desired=10,
        exposure_s=300.0,
        **project_kwargs,
    ):
        project = Project(id=project_id, name=name, **project_kwargs)
        plan_id = project_id * 100
        for target_id, target_name, ra, dec in targets:
            target = project.add_target(Target(id=target_id, name=target_name, ra_deg=ra, dec_deg=dec))
            for filter_name in filters:
                plan_id += 1
                template = ExposureTemplate(
                    id=plan_id,
                    name=filter_name,
                    filter_name=filter_name,
                    default_exposure_s=exposure_s,
                )
                target.add_exposure_plan(ExposurePlan(id=plan_id, template=template, desired=desired))
        return project

    return factory
