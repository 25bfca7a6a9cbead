import datetime
from typing import Tuple


def _split_sexagesimal(value: float, precision: int) -> Tuple[int, int, int, float]:
    sign = -1 if value < 0 else 1
    total_seconds = round(abs(value) * 3600.0, precision)
    whole = int(total_seconds // 3600)
    rem = total_seconds - whole * 3600
    minutes = int(rem // 60)
    seconds = rem - minutes * 60
    return sign, whole, minutes, seconds


def _parse_sexagesimal(text: str) -> float:
    text = text.strip()
    if not text:
        raise ValueError("Empty sexagesimal value")
    negative = text.startswith("-")
    parts = text.lstrip("+-").split(":")
    if len(parts) > 3:
        raise ValueError(f"Invalid sexagesimal value: {text}")
    value = 0.0
    for scale, part in zip((1.0, 60.0, 3600.0), parts):
        value += float(part) / scale
    return -value if negative else value


def hms_to_deg(text: str) -> float:
    """Parse an hours:minutes:seconds right ascension into degrees."""
    return (_parse_sexagesimal(text) * 15.0) % 360.0


def dms_to_deg(text: str) -> float:
    """Parse a signed degrees:minutes:seconds declination into degrees."""
    return _parse_sexagesimal(text)


def deg_to_hms(angle_deg: float, precision: int = 1) -> str:
    hours = (angle_deg % 360.0) / 15.0
    _, h, m, s = _split_sexagesimal(hours, precision)
    h %= 24
    s_fmt = f"{s:0{3 + precision}.{precision}f}"
    return f"{h:02d}:{m:02d}:{s_fmt}"


def deg_to_dms(angle_deg: float, precision: int = 1) -> str:
    sign_val, d, m, s = _split_sexagesimal(angle_deg, precision)
    sign = "-" if sign_val < 0 else "+"
    s_fmt = f"{s:0{3 + precision}.{precision}f}"
    return f"{sign}{d:02d}:{m:02d}:{s_fmt}"


def format_duration(delta: datetime.timedelta) -> str:
    total = int(round(delta.total_seconds()))
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    if hours:
        return f"{sign}{hours}h{minutes:02d}m"
    if minutes:
        return f"{sign}{minutes}m{seconds:02d}s"
    return f"{sign}{seconds}s"
