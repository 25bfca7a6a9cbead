import datetime
import json
import logging
import sys
from pathlib import Path

from targetscheduler.config import load_config
from targetscheduler.devices import simulated_devices
from targetscheduler.errors import ConfigurationError, SchedulerError
from targetscheduler.grading import GradingPreferences, ImageGrader
from targetscheduler.planner import ObserverLocation, Planner, PlannerEmulator
from targetscheduler.planner.formatters import format_text as format_plan_text
from targetscheduler.planner.formatters import plan_to_dict
from targetscheduler.planner.scoring import ScoringEngine
from targetscheduler.planner.visibility import validate_horizon_settings
from targetscheduler.repository import InMemoryRepository, LocalAuthority, load_repository
from targetscheduler.sequencer import PlanExecutor, SchedulerRunner, emulator_source


def _json_envelope(command: str, ok: bool, data=None, error=None) -> dict:
    return {
        "ok": ok,
        "command": command,
        "timestamp_utc": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "data": data,
        "error": error,
    }


def _init_logging(level: str | None) -> None:
    if not level:
        return
    level_map = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warn": logging.WARNING,
        "error": logging.ERROR,
    }
    logging.basicConfig(level=level_map.get(level, logging.INFO))


def _report_error(command: str, args, code: str, exc: Exception) -> int:
    if args is not None and getattr(args, "json", False):
        payload = _json_envelope(
            command=command,
            ok=False,
            data=None,
            error={"code": code, "message": str(exc), "details": None},
        )
        print(json.dumps(payload, indent=2))
    else:
        print(str(exc), file=sys.stderr)
    return 2


def _config_path_from_args(args) -> Path | None:
    if args is None:
        return None
    path = getattr(args, "config", None)
    return Path(path) if path else None


def _parse_datetime_arg(value: str | None) -> datetime.datetime | None:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.datetime.fromisoformat(value)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt


def _parse_location_args(args) -> ObserverLocation | None:
    lat = getattr(args, "latitude_deg", None)
    lon = getattr(args, "longitude_deg", None)
    elev = getattr(args, "elevation_m", None)
    if lat is None and lon is None and elev is None:
        return None
    if lat is None or lon is None:
        raise ValueError("Both latitude and longitude are required when specifying location")
    return ObserverLocation(latitude_deg=lat, longitude_deg=lon, elevation_m=elev)


def run_plan(args) -> int:
    _init_logging(getattr(args, "log_level", None))
    try:
        config = load_config(_config_path_from_args(args))
        repository = load_repository(Path(args.projects))
        location = _parse_location_args(args)
        authority = LocalAuthority(repository) if config.sync_mode == "server" else None
        planner = Planner.from_config(config, repository, authority=authority, location=location)
    except FileNotFoundError as e:
        return _report_error("plan", args, "not_found", e)
    except (ValueError, ConfigurationError) as e:
        return _report_error("plan", args, "invalid_input", e)

    try:
        at = _parse_datetime_arg(getattr(args, "at", None))
    except ValueError as e:
        return _report_error("plan", args, "invalid_input", e)

    try:
        plan = planner.get_plan(now=at)
    except SchedulerError as e:
        return _report_error("plan", args, "fatal", e)

    rejected = [
        {"project": p.name, "reason": p.rejected_reason}
        for p in repository.get_all_projects(config.profile_id)
        if p.rejected
    ]
    if getattr(args, "json", False):
        payload = _json_envelope(
            command="plan",
            ok=True,
            data={"plan": plan_to_dict(plan), "rejected_projects": rejected},
            error=None,
        )
        print(json.dumps(payload, indent=2, default=str))
    else:
        print(format_plan_text(plan, verbose=getattr(args, "verbose", False)))
        for item in rejected:
            print(f"Rejected project {item['project']}: {item['reason']}", file=sys.stderr)
    return 0


def run_emulate(args) -> int:
    _init_logging(getattr(args, "log_level", None))
    try:
        config = load_config(_config_path_from_args(args))
    except (FileNotFoundError, ValueError) as e:
        return _report_error("emulate", args, "invalid_config", e)

    devices = simulated_devices()
    executor = PlanExecutor(
        devices,
        InMemoryRepository(),
        grader=ImageGrader(GradingPreferences.from_config(config)),
        flats_auto_exposure=config.flats_auto_exposure,
    )
    sleep = (lambda seconds: False) if getattr(args, "no_wait", False) else None
    runner = SchedulerRunner(emulator_source(PlannerEmulator()), executor, sleep=sleep)
    try:
        summary = runner.run()
    except SchedulerError as e:
        return _report_error("emulate", args, "fatal", e)

    data = {
        "cycles": summary.cycles,
        "waits": summary.waits,
        "cancelled": summary.cancelled,
        "plans": [
            {
                "target": r.target_name,
                "attempted": r.exposures_attempted,
                "acquired": r.exposures_acquired,
                "accepted": r.exposures_accepted,
                "failures": r.failures,
            }
            for r in summary.results
        ],
        "filter_changes": list(devices.filter_wheel.changes),
        "dithers": devices.guider.dithers,
    }
    if getattr(args, "json", False):
        print(json.dumps(_json_envelope(command="emulate", ok=True, data=data), indent=2))
    else:
        print("Emulator Run")
        print("============")
        for entry in data["plans"]:
            print(f"{entry['target']:24} : {entry['acquired']}/{entry['attempted']} acquired, {entry['accepted']} accepted")
        print(f"\nCycles: {data['cycles']}  waits: {data['waits']}  dithers: {data['dithers']}")
    return 0


def run_doctor(args=None) -> int:
    _init_logging(getattr(args, "log_level", None))

    def check_config():
        try:
            load_config(_config_path_from_args(args))
            return {"ok": True, "detail": "loaded (defaults applied if missing)"}
        except Exception as e:
            return {"ok": False, "detail": f"invalid config: {e}"}

    def check_site():
        try:
            config = load_config(_config_path_from_args(args))
        except Exception:
            return {"ok": False, "detail": "config not readable"}
        if config.site_latitude_deg is None or config.site_longitude_deg is None:
            return {"ok": False, "detail": "site latitude/longitude not set"}
        try:
            zone = config.site_timezone
        except ValueError as e:
            return {"ok": False, "detail": str(e)}
        zone_name = zone.key if zone is not None else "local mean time"
        return {"ok": True, "detail": f"lat {config.site_latitude_deg}, lon {config.site_longitude_deg}, {zone_name}"}

    def check_astropy():
        try:
            import astropy
        except ImportError:
            return {"ok": False, "detail": "not installed (needed for JNOW/B1950 targets)"}
        return {"ok": True, "detail": astropy.__version__}

    def check_projects():
        path = getattr(args, "projects", None)
        if not path:
            return {"ok": True, "detail": "no project file given"}
        try:
            repository = load_repository(Path(path))
        except (FileNotFoundError, ValueError, ConfigurationError) as e:
            return {"ok": False, "detail": str(e)}
        scoring = ScoringEngine()
        problems = []
        projects = list(repository.get_all_projects(getattr(args, "profile", None) or "default"))
        for project in projects:
            try:
                if project.rejected:
                    raise ConfigurationError(project.rejected_reason)
                for target in project.targets:
                    validate_horizon_settings(project, target)
                scoring.weights_for(project)
            except ConfigurationError as e:
                problems.append(f"{project.name}: {e}")
        if problems:
            return {"ok": False, "detail": "; ".join(problems)}
        return {"ok": True, "detail": f"{len(projects)} projects valid"}

    checks = {
        "config": check_config(),
        "site": check_site(),
        "astropy": check_astropy(),
        "projects": check_projects(),
    }

    ok = all(c["ok"] for c in checks.values())

    if args is not None and getattr(args, "json", False):
        payload = _json_envelope(
            command="doctor",
            ok=ok,
            data={"checks": checks},
            error=None
            if ok
            else {
                "code": "doctor_failed",
                "message": "one or more checks failed",
                "details": None,
            },
        )
        print(json.dumps(payload, indent=2))
    else:
        print("Target Scheduler Doctor Report")
        print("==============================")

        for name, result in checks.items():
            status = "OK" if result["ok"] else "MISSING"
            print(f"{name:20} : {status} ({result['detail']})")

        if ok:
            print("\nSystem ready.")
        else:
            print("\nSome components are missing or not configured.")

    return 0 if ok else 1
