import datetime
import math
from dataclasses import dataclass

from astropy.coordinates import FK4, FK5, SkyCoord
from astropy.time import Time
import astropy.units as u

SIDEREAL_RATE = 1.00273790935
J2000 = datetime.datetime(2000, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)


def _utc(dt: datetime.datetime) -> datetime.datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)


def days_since_j2000(dt: datetime.datetime) -> float:
    return (_utc(dt) - J2000).total_seconds() / 86400.0


def local_sidereal_time_deg(dt: datetime.datetime, longitude_deg: float) -> float:
    d = days_since_j2000(dt)
    gmst_hours = 18.697374558 + 24.06570982441908 * d
    return ((gmst_hours % 24.0) * 15.0 + longitude_deg) % 360.0


def hour_angle_deg(ra_deg: float, dt: datetime.datetime, longitude_deg: float) -> float:
    """Hour angle wrapped into [-180, 180); negative before culmination."""
    ha = (local_sidereal_time_deg(dt, longitude_deg) - ra_deg) % 360.0
    if ha >= 180.0:
        ha -= 360.0
    return ha


def alt_az_deg(
    ra_deg: float,
    dec_deg: float,
    latitude_deg: float,
    longitude_deg: float,
    dt: datetime.datetime,
) -> tuple[float, float]:
    ha = math.radians(hour_angle_deg(ra_deg, dt, longitude_deg))
    dec = math.radians(dec_deg)
    lat = math.radians(latitude_deg)
    sin_alt = math.sin(dec) * math.sin(lat) + math.cos(dec) * math.cos(lat) * math.cos(ha)
    alt = math.asin(max(-1.0, min(1.0, sin_alt)))
    az = math.atan2(
        -math.sin(ha),
        math.tan(dec) * math.cos(lat) - math.sin(lat) * math.cos(ha),
    )
    return math.degrees(alt), math.degrees(az) % 360.0


def _ecliptic_to_equatorial(lon_deg: float, lat_deg: float, days: float) -> tuple[float, float]:
    """Geocentric ecliptic longitude/latitude to (RA, Dec), all in degrees."""
    lam, beta, eps = map(math.radians, (lon_deg, lat_deg, 23.439 - 0.0000004 * days))
    sin_dec = math.sin(beta) * math.cos(eps) + math.cos(beta) * math.sin(eps) * math.sin(lam)
    ra = math.atan2(math.sin(lam) * math.cos(eps) - math.tan(beta) * math.sin(eps), math.cos(lam))
    return math.degrees(ra) % 360.0, math.degrees(math.asin(max(-1.0, min(1.0, sin_dec))))


def sun_ra_dec_deg(dt: datetime.datetime) -> tuple[float, float]:
    # low-precision solar position, about 0.01 deg
    days = days_since_j2000(dt)
    anomaly = math.radians(357.528 + 0.9856003 * days)
    longitude = 280.460 + 0.9856474 * days + 1.915 * math.sin(anomaly) + 0.020 * math.sin(2 * anomaly)
    return _ecliptic_to_equatorial(longitude, 0.0, days)


def moon_ra_dec_deg(dt: datetime.datetime) -> tuple[float, float]:
    # main terms only; good to a degree or so, enough for avoidance
    days = days_since_j2000(dt)
    longitude = 218.316 + 13.176396 * days + 6.289 * math.sin(math.radians(134.963 + 13.064993 * days))
    latitude = 5.128 * math.sin(math.radians(93.272 + 13.229350 * days))
    return _ecliptic_to_equatorial(longitude, latitude, days)


def angular_separation_deg(ra1: float, dec1: float, ra2: float, dec2: float) -> float:
    r1, d1, r2, d2 = map(math.radians, (ra1, dec1, ra2, dec2))
    cos_sep = math.sin(d1) * math.sin(d2) + math.cos(d1) * math.cos(d2) * math.cos(r1 - r2)
    return math.degrees(math.acos(max(-1.0, min(1.0, cos_sep))))


def moon_illumination_fraction(dt: datetime.datetime) -> float:
    """Illuminated fraction from the sun-moon elongation (0 new, 1 full)."""
    elongation = angular_separation_deg(*sun_ra_dec_deg(dt), *moon_ra_dec_deg(dt))
    return 0.5 * (1.0 - math.cos(math.radians(elongation)))


def to_j2000(ra_deg: float, dec_deg: float, epoch: str, when: datetime.datetime) -> tuple[float, float]:
    epoch = epoch.upper()
    if epoch == "J2000":
        return ra_deg, dec_deg
    if epoch == "JNOW":
        frame = FK5(equinox=Time(_utc(when)))
    elif epoch == "B1950":
        frame = FK4()
    else:
        raise ValueError(f"Unsupported epoch: {epoch}")
    c = SkyCoord(ra=ra_deg * u.deg, dec=dec_deg * u.deg, frame=frame)
    j2000 = c.transform_to(FK5())
    return j2000.ra.deg, j2000.dec.deg


@dataclass(frozen=True)
class SkySample:
    """Sun and moon circumstances at one instant, shared by every target."""

    time: datetime.datetime
    sun_alt_deg: float
    moon_ra_deg: float
    moon_dec_deg: float
    moon_alt_deg: float
    moon_illumination: float


def sky_sample(dt: datetime.datetime, latitude_deg: float, longitude_deg: float) -> SkySample:
    sun_ra, sun_dec = sun_ra_dec_deg(dt)
    sun_alt, _ = alt_az_deg(sun_ra, sun_dec, latitude_deg, longitude_deg, dt)
    moon_ra, moon_dec = moon_ra_dec_deg(dt)
    moon_alt, _ = alt_az_deg(moon_ra, moon_dec, latitude_deg, longitude_deg, dt)
    return SkySample(
        time=dt,
        sun_alt_deg=sun_alt,
        moon_ra_deg=moon_ra,
        moon_dec_deg=moon_dec,
        moon_alt_deg=moon_alt,
        moon_illumination=moon_illumination_fraction(dt),
    )
