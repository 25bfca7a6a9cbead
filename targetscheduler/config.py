from pathlib import Path
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

if TYPE_CHECKING:
    import tomli as tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:  # Python < 3.11
        import tomli as tomllib

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "targetscheduler" / "config.toml"


class Config:
    def __init__(self, data: dict):
        self._data = data

    def _section(self, name: str) -> dict:
        return self._data.get(name, {})

    @property
    def profile_id(self):
        return self._section("profile").get("id", "default")

    @property
    def exposure_throttle(self):
        return float(self._section("profile").get("exposure_throttle", 100.0))

    @property
    def site_latitude_deg(self):
        return self._section("site").get("latitude_deg", None)

    @property
    def site_longitude_deg(self):
        return self._section("site").get("longitude_deg", None)

    @property
    def site_elevation_m(self):
        return self._section("site").get("elevation_m", None)

    @property
    def site_name(self):
        return self._section("site").get("name", None)

    @property
    def site_timezone(self) -> ZoneInfo | None:
        name = self._section("site").get("timezone", None)
        if not name:
            return None
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown site timezone: {name}") from e

    @property
    def planner_horizon_hours(self):
        return float(self._section("planner").get("horizon_hours", 12.0))

    @property
    def planner_sample_minutes(self):
        return float(self._section("planner").get("sample_minutes", 2.0))

    @property
    def planner_retry_wait_s(self):
        return float(self._section("planner").get("retry_wait_s", 60.0))

    @property
    def grade_rms(self):
        return bool(self._section("grading").get("enable_rms", True))

    @property
    def grade_stars(self):
        return bool(self._section("grading").get("enable_stars", True))

    @property
    def grade_hfr(self):
        return bool(self._section("grading").get("enable_hfr", True))

    @property
    def grading_accept_improvement(self):
        return bool(self._section("grading").get("accept_improvement", True))

    @property
    def grading_max_sample_size(self):
        return int(self._section("grading").get("max_sample_size", 10))

    @property
    def grading_rms_pixel_threshold(self):
        return float(self._section("grading").get("rms_pixel_threshold", 8.0))

    @property
    def grading_rms_sigma_factor(self):
        return float(self._section("grading").get("rms_sigma_factor", 4.0))

    @property
    def grading_stars_sigma_factor(self):
        return float(self._section("grading").get("stars_sigma_factor", 4.0))

    @property
    def grading_hfr_sigma_factor(self):
        return float(self._section("grading").get("hfr_sigma_factor", 4.0))

    @property
    def flats_always_repeat(self):
        return bool(self._section("flats").get("always_repeat_flat_set", True))

    @property
    def flats_auto_exposure(self):
        return bool(self._section("flats").get("auto_exposure", False))

    @property
    def sync_mode(self):
        return self._section("sync").get("mode", "standalone")


def load_config(path: Path | None = None) -> Config:
    explicit_path = path
    path = path or DEFAULT_CONFIG_PATH

    if not path.exists():
        if explicit_path is not None:
            raise FileNotFoundError(f"Config file not found: {path}")
        # Return default config if default file missing
        return Config({})

    with open(path, "rb") as f:
        data = tomllib.load(f)

    return Config(data)
