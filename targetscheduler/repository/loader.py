import datetime
import json
import logging
from pathlib import Path

from targetscheduler.errors import ConfigurationError
from targetscheduler.planner.types import (
    EPOCHS,
    ExposurePlan,
    ExposureTemplate,
    FlatsHandling,
    HorizonDefinition,
    Project,
    ProjectPriority,
    ProjectState,
    Target,
    TwilightLevel,
    rule_weights_from_pairs,
)
from targetscheduler.util.format import dms_to_deg, hms_to_deg
from .memory import InMemoryRepository

logger = logging.getLogger(__name__)


def load_projects_file(path: Path) -> list[Project]:
    """Read projects from a JSON project file.

    The file holds a "templates" list and a "projects" list; exposure plans
    refer to templates by id. Coordinates may be given in degrees (ra_deg,
    dec_deg) or sexagesimal strings (ra "05:35:17", dec "-05:23:28").
    """
    if not path.exists():
        raise FileNotFoundError(f"Project file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid project file {path}: {exc}") from exc
    return parse_projects(data)


def load_repository(path: Path) -> InMemoryRepository:
    return InMemoryRepository(load_projects_file(path))


def parse_projects(data: dict) -> list[Project]:
    templates = {}
    try:
        for row in data.get("templates", []):
            template = _parse_template(row)
            templates[template.id] = template

        projects = [_parse_project(row, templates) for row in data.get("projects", [])]
    except KeyError as exc:
        raise ConfigurationError(f"Invalid project file: missing field {exc}") from exc
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigurationError(f"Invalid project file: {exc}") from exc
    logger.info("Loaded %d projects, %d templates", len(projects), len(templates))
    return projects


def _parse_template(row: dict) -> ExposureTemplate:
    return ExposureTemplate(
        id=int(row["id"]),
        name=row.get("name") or row["filter"],
        filter_name=row["filter"],
        default_exposure_s=float(row.get("exposure_s", 60.0)),
        profile_id=row.get("profile_id", "default"),
        gain=_parse_int(row.get("gain")),
        offset=_parse_int(row.get("offset")),
        binning=int(row.get("binning", 1)),
        readout_mode=_parse_int(row.get("readout_mode")),
        twilight_level=_parse_enum(TwilightLevel, row.get("twilight"), TwilightLevel.NIGHTTIME),
        moon_avoidance_enabled=bool(row.get("moon_avoidance", False)),
        moon_avoidance_separation_deg=float(row.get("moon_separation_deg", 0.0)),
        moon_avoidance_width=float(row.get("moon_width", 0.0)),
        maximum_humidity=_parse_float(row.get("maximum_humidity")),
    )


def _parse_project(row: dict, templates: dict[int, ExposureTemplate]) -> Project:
    name = row["name"]
    project = Project(
        id=int(row["id"]),
        name=name,
        profile_id=row.get("profile_id", "default"),
        state=_parse_enum(ProjectState, row.get("state"), ProjectState.ACTIVE),
        priority=_parse_priority(row.get("priority")),
        start_date=_parse_datetime(row.get("start")),
        end_date=_parse_datetime(row.get("end")),
        minimum_altitude_deg=float(row.get("minimum_altitude_deg", 0.0)),
        use_custom_horizon=bool(row.get("use_custom_horizon", False)),
        horizon_offset_deg=float(row.get("horizon_offset_deg", 0.0)),
        horizon=_parse_horizon(row.get("horizon")),
        minimum_time_min=float(row.get("minimum_time_min", 30.0)),
        dither_every=int(row.get("dither_every", 0)),
        enable_grader=bool(row.get("enable_grader", True)),
        is_mosaic=bool(row.get("is_mosaic", False)),
        flats_handling=_parse_enum(FlatsHandling, row.get("flats_handling"), FlatsHandling.OFF),
        flats_cadence_days=int(row.get("flats_cadence_days", 0)),
        meridian_window_min=float(row.get("meridian_window_min", 0.0)),
        filter_switch_frequency=int(row.get("filter_switch_frequency", 0)),
    )
    try:
        project.rule_weights = rule_weights_from_pairs(_weight_pairs(row.get("rule_weights")))
    except ConfigurationError as exc:
        logger.warning("Project %s rejected: %s", name, exc)
        project.reject(str(exc))

    for target_row in row.get("targets", []):
        project.add_target(_parse_target(target_row, templates))
    return project


def _parse_target(row: dict, templates: dict[int, ExposureTemplate]) -> Target:
    epoch = (row.get("epoch") or "J2000").upper()
    if epoch not in EPOCHS:
        raise ConfigurationError(f"Target {row['name']}: unknown epoch {epoch}")
    target = Target(
        id=int(row["id"]),
        name=row["name"],
        ra_deg=_parse_coordinate(row, "ra", hms_to_deg),
        dec_deg=_parse_coordinate(row, "dec", dms_to_deg),
        epoch=epoch,
        rotation_deg=float(row.get("rotation_deg", 0.0)),
        roi=float(row.get("roi", 1.0)),
        enabled=bool(row.get("enabled", True)),
        custom_horizon=_parse_horizon(row.get("horizon")),
    )
    for plan_row in row.get("exposure_plans", []):
        template_id = int(plan_row["template"])
        if template_id not in templates:
            raise ConfigurationError(f"Target {target.name}: unknown exposure template {template_id}")
        target.add_exposure_plan(
            ExposurePlan(
                id=int(plan_row["id"]),
                template=templates[template_id],
                desired=int(plan_row.get("desired", 0)),
                acquired=int(plan_row.get("acquired", 0)),
                accepted=int(plan_row.get("accepted", 0)),
                exposure_s=_parse_float(plan_row.get("exposure_s")),
                manual_order=_parse_int(plan_row.get("order")),
                enabled=bool(plan_row.get("enabled", True)),
            )
        )
    return target


def _weight_pairs(value) -> list[tuple[str, float]]:
    if value is None:
        return []
    if isinstance(value, dict):
        return [(name, float(weight)) for name, weight in value.items()]
    # list form keeps duplicates visible so they can be rejected
    return [(item["name"], float(item["weight"])) for item in value]


def _parse_coordinate(row: dict, key: str, parse_text) -> float:
    if f"{key}_deg" in row:
        return float(row[f"{key}_deg"])
    value = row.get(key)
    if value is None:
        raise ConfigurationError(f"Target {row.get('name')}: missing {key}")
    if isinstance(value, str):
        return parse_text(value)
    return float(value)


def _parse_horizon(value) -> HorizonDefinition | None:
    if not value:
        return None
    return HorizonDefinition(points=[(float(az), float(alt)) for az, alt in value])


def _parse_priority(value) -> ProjectPriority:
    if value is None:
        return ProjectPriority.NORMAL
    if isinstance(value, int):
        return ProjectPriority(value)
    try:
        return ProjectPriority[str(value).strip().upper()]
    except KeyError as exc:
        raise ConfigurationError(f"Unknown project priority: {value}") from exc


def _parse_enum(enum_cls, value, default):
    if value is None:
        return default
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError as exc:
        raise ConfigurationError(f"Unknown {enum_cls.__name__} value: {value}") from exc


def _parse_datetime(value: str | None) -> datetime.datetime | None:
    if not value:
        return None
    parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def _parse_float(value) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def _parse_int(value) -> int | None:
    if value is None or value == "":
        return None
    return int(value)
