import argparse
import sys

from targetscheduler import __version__
from targetscheduler.cli import commands


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to config.toml")
    parser.add_argument("--json", action="store_true", help="Output result as JSON")
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=["debug", "info", "warn", "error"],
        help="Enable logging at the given level",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="targetscheduler")
    parser.add_argument("--version", action="store_true", help="Show version and exit")

    subparsers = parser.add_subparsers(dest="command")

    doctor_parser = subparsers.add_parser("doctor", help="Check configuration and project files")
    _add_common(doctor_parser)
    doctor_parser.add_argument("--projects", help="Project file (JSON) to validate")
    doctor_parser.add_argument("--profile", help="Profile id to validate (default: default)")

    plan_parser = subparsers.add_parser("plan", help="Run one planning cycle")
    _add_common(plan_parser)
    plan_parser.add_argument("--projects", required=True, help="Project file (JSON)")
    plan_parser.add_argument("--at", help="Planning time (ISO 8601, default now)")
    plan_parser.add_argument("--lat", dest="latitude_deg", type=float, help="Site latitude in degrees")
    plan_parser.add_argument("--lon", dest="longitude_deg", type=float, help="Site longitude in degrees (east positive)")
    plan_parser.add_argument("--elevation", dest="elevation_m", type=float, help="Site elevation in metres")
    plan_parser.add_argument("--verbose", action="store_true", help="List every exposure separately")

    emulate_parser = subparsers.add_parser("emulate", help="Run the canned emulator plans on simulated devices")
    _add_common(emulate_parser)
    emulate_parser.add_argument("--no-wait", dest="no_wait", action="store_true", help="Skip wait plans")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"targetscheduler {__version__}")
        return 0

    if args.command == "doctor":
        return commands.run_doctor(args)

    if args.command == "plan":
        return commands.run_plan(args)

    if args.command == "emulate":
        return commands.run_emulate(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
