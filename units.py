"""
Unit and metric helpers for workout display values.

Pure conversions (speed, distance, time), bearing buckets and labels, and
the distance metrics shared by the correlation engine.
"""

import math
from dataclasses import dataclass
from typing import Optional

from constants import (
    MPS_TO_MPH, METERS_TO_FEET, METERS_PER_MILE, SECONDS_PER_MINUTE,
    EARTH_RADIUS_M,
)


COMPASS_8 = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")
COMPASS_16 = ("N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
              "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW")

_BUCKET_LABELS = {
    "N": "North", "NE": "North-East", "E": "East", "SE": "South-East",
    "S": "South", "SW": "South-West", "W": "West", "NW": "North-West",
}

_BUCKET_ARROWS = {
    "N": "⬆️", "NE": "↗️", "E": "➡️", "SE": "↘️",
    "S": "⬇️", "SW": "↙️", "W": "⬅️", "NW": "↖️",
}


def mps_to_mph(mps: float) -> float:
    return mps * MPS_TO_MPH


def mph_to_mps(mph: float) -> float:
    return mph / MPS_TO_MPH


def meters_to_feet(meters: float) -> float:
    return meters * METERS_TO_FEET


def feet_to_meters(feet: float) -> float:
    return feet / METERS_TO_FEET


def meters_to_miles(meters: float) -> float:
    return meters / METERS_PER_MILE


def seconds_to_minutes(seconds: float) -> float:
    return seconds / SECONDS_PER_MINUTE


def normalize_bearing(bearing: float) -> float:
    """Wrap a bearing into [0, 360)."""
    result = bearing % 360.0
    # -1e-20 % 360 rounds to 360.0
    return 0.0 if result >= 360.0 else result


def angular_difference(a: float, b: float) -> float:
    """Smallest absolute angle between two bearings, in [0, 180]."""
    diff = abs(normalize_bearing(a) - normalize_bearing(b))
    return 360.0 - diff if diff > 180.0 else diff


def compass_bucket(bearing: float, points: int = 8) -> str:
    """Map a bearing onto a compass rose bucket centred on its heading.

    Args:
        bearing: Course in degrees (0=North, 90=East, clockwise)
        points: 8 or 16 point rose

    Returns:
        Bucket name such as "NE" or "NNE"
    """
    if points == 8:
        names = COMPASS_8
    elif points == 16:
        names = COMPASS_16
    else:
        raise ValueError(f"Unsupported compass rose: {points} points")

    width = 360.0 / points
    index = int((normalize_bearing(bearing) + width / 2) // width) % points
    return names[index]


def bearing_label(bearing: float) -> str:
    """Readable direction label, e.g. 'South-West'."""
    return _BUCKET_LABELS[compass_bucket(bearing)]


def bearing_arrow(bearing: float) -> str:
    """Arrow emoji pointing along the bearing."""
    return _BUCKET_ARROWS[compass_bucket(bearing)]


def haversine_distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def planar_distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Local equirectangular distance in meters.

    Accurate to well under a percent at the scale of a single workout and
    much cheaper than haversine when scanning every waypoint.
    """
    mean_lat = math.radians((lat1 + lat2) / 2)
    dx = math.radians(lon2 - lon1) * math.cos(mean_lat)
    dy = math.radians(lat2 - lat1)
    return EARTH_RADIUS_M * math.hypot(dx, dy)


@dataclass(frozen=True)
class UnitPreferences:
    """Display units for the waypoint inspector.

    Attributes:
        altitude: 'feet' or 'meters'
        speed: 'mph' or 'mps' (meters per second)
    """
    altitude: str = "feet"
    speed: str = "mph"

    def __post_init__(self):
        if self.altitude not in ("feet", "meters"):
            raise ValueError(f"Invalid altitude unit: {self.altitude}")
        if self.speed not in ("mph", "mps"):
            raise ValueError(f"Invalid speed unit: {self.speed}")

    @property
    def altitude_unit(self) -> str:
        return "ft" if self.altitude == "feet" else "m"

    @property
    def speed_unit(self) -> str:
        return "mph" if self.speed == "mph" else "m/s"

    def convert_speed(self, mps: float) -> float:
        return mps_to_mph(mps) if self.speed == "mph" else mps

    def convert_altitude(self, meters: float) -> float:
        return meters_to_feet(meters) if self.altitude == "feet" else meters

    def format_speed(self, mps: Optional[float]) -> str:
        if mps is None or math.isnan(mps):
            return "N/A"
        return f"{self.convert_speed(mps):.1f} {self.speed_unit}"

    def format_altitude(self, meters: Optional[float]) -> str:
        if meters is None or math.isnan(meters):
            return "N/A"
        return f"{self.convert_altitude(meters):.0f} {self.altitude_unit}"
