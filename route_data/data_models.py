"""
Data models for recorded workout routes.

Pydantic models for GPS samples (waypoints), the ordered route they form,
and the route's derived aggregates (bounding box, speeds, distance, timing).
"""

import math
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from units import haversine_distance_m, meters_to_miles, normalize_bearing

# Health export form: 2024-04-27 17:53:50 -0600
_EXPORT_TIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S %z",
    "%Y-%m-%d %H:%M:%S",
)


def parse_timestamp(value: str) -> datetime:
    """
    Parse a waypoint timestamp.

    Accepts ISO-8601 and the health export format ('2024-04-27 17:53:50 -0600').
    Naive times are assumed to be UTC.

    Raises:
        ValueError: If the string matches none of the known formats
    """
    text = value.strip()
    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _EXPORT_TIME_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        raise ValueError(f"Unrecognized timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Waypoint(BaseModel):
    """
    Single GPS sample of a workout route.

    Immutable once ingested. A waypoint has no identity of its own; within a
    route it is identified by its index.
    """
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90.0, le=90.0, description="WGS84 latitude in degrees")
    longitude: float = Field(ge=-180.0, le=180.0, description="WGS84 longitude in degrees")
    altitude: Optional[float] = Field(default=None, description="Altitude in meters (None if unknown)")
    speed: float = Field(default=0.0, description="Speed in meters per second")
    course: float = Field(default=0.0, description="Course over ground in degrees (0=North, 90=East)")
    timestamp: datetime = Field(description="Sample time (timezone aware)")

    @field_validator("speed", "course", mode="before")
    @classmethod
    def _missing_as_zero(cls, value):
        if value is None or (isinstance(value, float) and math.isnan(value)):
            return 0.0
        return value

    @field_validator("course")
    @classmethod
    def _normalize_course(cls, value: float) -> float:
        return normalize_bearing(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, value):
        if isinstance(value, str):
            return parse_timestamp(value)
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def latlng(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)

    @property
    def altitude_or_zero(self) -> float:
        """Altitude with missing or NaN values treated as sea level."""
        if self.altitude is None or math.isnan(self.altitude):
            return 0.0
        return self.altitude


class BoundingBox(BaseModel):
    """Geographic bounding box in degrees."""
    model_config = ConfigDict(frozen=True)

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @model_validator(mode="after")
    def _check_order(self) -> "BoundingBox":
        if self.min_lat > self.max_lat or self.min_lng > self.max_lng:
            raise ValueError("Bounding box minimum exceeds maximum")
        return self

    @classmethod
    def from_points(cls, points: Iterable[Tuple[float, float]]) -> "BoundingBox":
        """Smallest box containing every (lat, lng) point."""
        points = list(points)
        if not points:
            raise ValueError("Cannot bound an empty set of points")
        lats = [p[0] for p in points]
        lngs = [p[1] for p in points]
        return cls(min_lat=min(lats), max_lat=max(lats), min_lng=min(lngs), max_lng=max(lngs))

    @property
    def lat_span(self) -> float:
        return self.max_lat - self.min_lat

    @property
    def lng_span(self) -> float:
        return self.max_lng - self.min_lng

    @property
    def span(self) -> float:
        """Larger of the two spans, in degrees."""
        return max(self.lat_span, self.lng_span)

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.max_lat + self.min_lat) / 2, (self.max_lng + self.min_lng) / 2)

    @property
    def corners(self) -> List[Tuple[float, float]]:
        """The four (lat, lng) corners of the box."""
        return [
            (self.min_lat, self.min_lng),
            (self.min_lat, self.max_lng),
            (self.max_lat, self.min_lng),
            (self.max_lat, self.max_lng),
        ]

    def padded(self, pad: float) -> "BoundingBox":
        """Box grown by `pad` degrees on every side."""
        return BoundingBox(
            min_lat=self.min_lat - pad,
            max_lat=self.max_lat + pad,
            min_lng=self.min_lng - pad,
            max_lng=self.max_lng + pad,
        )


class RouteDistance(BaseModel):
    """Distance as reported by the recording device."""
    model_config = ConfigDict(frozen=True)

    qty: float
    units: str = "mi"

    @property
    def label(self) -> str:
        return f"{round(self.qty, 2)} {self.units}"


class Route(BaseModel):
    """
    Complete GPS track of a single recorded workout.

    Waypoints are ordered chronologically and the route is read-only after
    construction, so every aggregate below is a pure function of the
    waypoint sequence.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(default="Workout", description="Display name")
    waypoints: Tuple[Waypoint, ...] = Field(default=(), description="Samples in chronological order")
    reported_distance: Optional[RouteDistance] = Field(default=None, description="Distance from the export")
    reported_duration: Optional[float] = Field(default=None, description="Duration in seconds from the export")
    reported_start: Optional[datetime] = Field(default=None, description="Workout start from the export")
    reported_end: Optional[datetime] = Field(default=None, description="Workout end from the export")

    @field_validator("reported_start", "reported_end", mode="before")
    @classmethod
    def _parse_times(cls, value):
        if isinstance(value, str):
            return parse_timestamp(value)
        return value

    @model_validator(mode="after")
    def _check_chronological(self) -> "Route":
        for i in range(1, len(self.waypoints)):
            if self.waypoints[i].timestamp < self.waypoints[i - 1].timestamp:
                raise ValueError(
                    f"Waypoint {i} ({self.waypoints[i].timestamp.isoformat()}) is earlier "
                    f"than waypoint {i - 1}"
                )
        return self

    def __len__(self) -> int:
        return len(self.waypoints)

    def __getitem__(self, index: int) -> Waypoint:
        return self.waypoints[index]

    def __iter__(self) -> Iterator[Waypoint]:
        return iter(self.waypoints)

    @property
    def is_empty(self) -> bool:
        return not self.waypoints

    @property
    def bounding_box(self) -> Optional[BoundingBox]:
        """Bounding box of all waypoints, or None for an empty route."""
        if self.is_empty:
            return None
        return BoundingBox.from_points(w.latlng for w in self.waypoints)

    @property
    def middle_point(self) -> Optional[Tuple[float, float]]:
        """Center of the bounding box (not the midpoint along the track)."""
        box = self.bounding_box
        return box.center if box else None

    @property
    def start(self) -> Optional[Tuple[float, float]]:
        return self.waypoints[0].latlng if self.waypoints else None

    @property
    def finish(self) -> Optional[Tuple[float, float]]:
        return self.waypoints[-1].latlng if self.waypoints else None

    @property
    def distance_meters(self) -> float:
        """Sum of great-circle distances between consecutive waypoints."""
        total = 0.0
        for prev, cur in zip(self.waypoints, self.waypoints[1:]):
            total += haversine_distance_m(prev.latitude, prev.longitude, cur.latitude, cur.longitude)
        return total

    @property
    def distance_label(self) -> str:
        """Reported distance if available, otherwise the computed distance in miles."""
        if self.reported_distance is not None:
            return self.reported_distance.label
        return f"{round(meters_to_miles(self.distance_meters), 2)} mi"

    @property
    def average_speed(self) -> float:
        if not self.waypoints:
            return 0.0
        return sum(w.speed for w in self.waypoints) / len(self.waypoints)

    @property
    def min_speed(self) -> float:
        return min((w.speed for w in self.waypoints), default=0.0)

    @property
    def max_speed(self) -> float:
        return max((w.speed for w in self.waypoints), default=0.0)

    @property
    def start_time(self) -> Optional[datetime]:
        if self.reported_start is not None:
            return self.reported_start
        return self.waypoints[0].timestamp if self.waypoints else None

    @property
    def end_time(self) -> Optional[datetime]:
        if self.reported_end is not None:
            return self.reported_end
        return self.waypoints[-1].timestamp if self.waypoints else None

    @property
    def duration_seconds(self) -> float:
        """Reported duration, or the span between first and last sample."""
        if self.reported_duration is not None:
            return self.reported_duration
        if len(self.waypoints) < 2:
            return 0.0
        return (self.waypoints[-1].timestamp - self.waypoints[0].timestamp).total_seconds()

    def relocated(self, latitude: float, longitude: float) -> "Route":
        """
        Return a copy of the route translated so it starts at (latitude, longitude).

        Used to anonymize a workout before sharing it: the shape, timing and
        speeds are preserved, only the location moves.

        Args:
            latitude: Target latitude for the first waypoint
            longitude: Target longitude for the first waypoint

        Returns:
            New Route; an empty route is returned unchanged
        """
        if self.is_empty:
            return self

        start_lat, start_lng = self.start
        lat_delta = latitude - start_lat
        lng_delta = longitude - start_lng

        moved = []
        for w in self.waypoints:
            new_lat = max(-90.0, min(90.0, w.latitude + lat_delta))
            new_lng = (w.longitude + lng_delta + 180.0) % 360.0 - 180.0
            moved.append(w.model_copy(update={"latitude": new_lat, "longitude": new_lng}))

        return self.model_copy(update={"waypoints": tuple(moved)})
