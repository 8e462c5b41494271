"""
Waypoint correlation for route inspection.

Finds the waypoint nearest to an arbitrary query point (cursor inspection)
and the "opposite" waypoint of a waypoint: on an out-and-back route, the
sample passed on the other leg at the same place, later or earlier in time
and heading the other way.

Both searches are linear scans over the route. Ties resolve to the first
waypoint in sequence order.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from constants import (
    CORRELATION_DISTANCE_THRESHOLD_M,
    CORRELATION_TIME_THRESHOLD_S,
    CORRELATION_COURSE_THRESHOLD_DEG,
    EARTH_RADIUS_M,
)
from route_data.data_models import Route, Waypoint
from units import angular_difference, planar_distance_m

logger = logging.getLogger(__name__)


class NoWaypointsError(ValueError):
    """Raised when a correlation query is made against an empty route."""


class FallbackPolicy(str, Enum):
    """What find_opposite returns when no waypoint satisfies the full predicate.

    NONE: no correlate
    NEAREST: the nearest waypoint that is not close in time
    NEAREST_IF_CLOSE: as NEAREST, but only if it is also close in space
    """
    NONE = "none"
    NEAREST = "nearest"
    NEAREST_IF_CLOSE = "nearest_if_close"


class CorrelationConfig(BaseModel):
    """Tunable thresholds for opposite-waypoint matching."""
    model_config = ConfigDict(frozen=True)

    distance_threshold_m: float = Field(
        default=CORRELATION_DISTANCE_THRESHOLD_M, gt=0,
        description="Maximum distance for two waypoints to be close in space")
    time_threshold_s: float = Field(
        default=CORRELATION_TIME_THRESHOLD_S, ge=0,
        description="Minimum time apart for two waypoints not to be close in time")
    course_threshold_deg: float = Field(
        default=CORRELATION_COURSE_THRESHOLD_DEG, ge=0, le=180,
        description="Minimum course difference for opposite directions")
    fallback: FallbackPolicy = Field(
        default=FallbackPolicy.NEAREST_IF_CLOSE,
        description="Result when nothing matches the full predicate")


DEFAULT_CORRELATION = CorrelationConfig()

WaypointsLike = Union[Route, Sequence[Waypoint]]


def _as_sequence(waypoints: WaypointsLike) -> Sequence[Waypoint]:
    seq = waypoints.waypoints if isinstance(waypoints, Route) else waypoints
    if len(seq) == 0:
        raise NoWaypointsError("Route has no waypoints")
    return seq


def _distances_m(lat: float, lng: float, waypoints: Sequence[Waypoint]) -> np.ndarray:
    """Vectorized planar_distance_m from one point to every waypoint."""
    lats = np.radians(np.array([w.latitude for w in waypoints], dtype=np.float64))
    lngs = np.radians(np.array([w.longitude for w in waypoints], dtype=np.float64))
    lat_r = np.radians(lat)
    dx = (lngs - np.radians(lng)) * np.cos((lats + lat_r) / 2)
    dy = lats - lat_r
    return EARTH_RADIUS_M * np.hypot(dx, dy)


def find_nearest_index(latitude: float, longitude: float, waypoints: WaypointsLike) -> int:
    """
    Index of the waypoint nearest to a query point.

    A waypoint whose coordinates equal the query exactly is returned even if
    distance noise would rank another waypoint first; among several exact
    matches the earliest wins.

    Raises:
        NoWaypointsError: If there are no waypoints
    """
    seq = _as_sequence(waypoints)

    for i, w in enumerate(seq):
        if w.latitude == latitude and w.longitude == longitude:
            return i

    # argmin returns the first occurrence, which keeps ties in sequence order
    return int(np.argmin(_distances_m(latitude, longitude, seq)))


def find_nearest(latitude: float, longitude: float, waypoints: WaypointsLike) -> Waypoint:
    """Waypoint nearest to a query point. See find_nearest_index."""
    seq = _as_sequence(waypoints)
    return seq[find_nearest_index(latitude, longitude, seq)]


def close_in_space(a: Waypoint, b: Waypoint, config: CorrelationConfig = DEFAULT_CORRELATION) -> bool:
    return planar_distance_m(a.latitude, a.longitude, b.latitude, b.longitude) < config.distance_threshold_m


def close_in_time(a: Waypoint, b: Waypoint, config: CorrelationConfig = DEFAULT_CORRELATION) -> bool:
    return abs((a.timestamp - b.timestamp).total_seconds()) <= config.time_threshold_s


def opposite_directions(a: Waypoint, b: Waypoint, config: CorrelationConfig = DEFAULT_CORRELATION) -> bool:
    return angular_difference(a.course, b.course) > config.course_threshold_deg


def is_opposite(a: Waypoint, b: Waypoint, config: CorrelationConfig = DEFAULT_CORRELATION) -> bool:
    """True if b is a correlate of a: near it, well apart in time, heading the other way."""
    return (close_in_space(a, b, config)
            and not close_in_time(a, b, config)
            and opposite_directions(a, b, config))


def find_opposite_index(index: int, waypoints: WaypointsLike,
                        config: CorrelationConfig = DEFAULT_CORRELATION) -> Optional[int]:
    """
    Index of the opposite-direction correlate of the waypoint at `index`.

    Among waypoints satisfying the full predicate, the nearest wins (first in
    sequence order on ties). When none does, the config's fallback policy
    decides.

    Returns:
        Index of the correlate, or None if there is none

    Raises:
        NoWaypointsError: If there are no waypoints
        IndexError: If index is out of range
    """
    seq = _as_sequence(waypoints)
    if not -len(seq) <= index < len(seq):
        raise IndexError(f"Waypoint index {index} out of range for {len(seq)} waypoints")
    index %= len(seq)
    query = seq[index]

    distances = _distances_m(query.latitude, query.longitude, seq)

    best: Optional[int] = None
    fallback: Optional[int] = None
    for i, candidate in enumerate(seq):
        if i == index or close_in_time(query, candidate, config):
            continue
        if fallback is None or distances[i] < distances[fallback]:
            fallback = i
        if (distances[i] < config.distance_threshold_m
                and opposite_directions(query, candidate, config)
                and (best is None or distances[i] < distances[best])):
            best = i

    if best is not None:
        return best

    if fallback is None or config.fallback == FallbackPolicy.NONE:
        return None
    if config.fallback == FallbackPolicy.NEAREST_IF_CLOSE and distances[fallback] >= config.distance_threshold_m:
        return None
    logger.debug(f"No opposite for waypoint {index}, falling back to nearest ({fallback})")
    return fallback


def find_opposite(waypoint: Waypoint, waypoints: WaypointsLike,
                  config: CorrelationConfig = DEFAULT_CORRELATION) -> Optional[Waypoint]:
    """
    Opposite-direction correlate of a waypoint, or None.

    The waypoint is located in the sequence by identity first, then by
    equality.

    Raises:
        NoWaypointsError: If there are no waypoints
        ValueError: If the waypoint is not part of the sequence
    """
    seq = _as_sequence(waypoints)
    index = next((i for i, w in enumerate(seq) if w is waypoint), None)
    if index is None:
        index = next((i for i, w in enumerate(seq) if w == waypoint), None)
    if index is None:
        raise ValueError("Waypoint is not part of the route")

    found = find_opposite_index(index, seq, config)
    return seq[found] if found is not None else None


@dataclass(frozen=True)
class CorrelatedPair:
    """A waypoint and its opposite-direction correlate (if any)."""
    index: int
    waypoint: Waypoint
    opposite_index: Optional[int] = None
    opposite: Optional[Waypoint] = None

    @property
    def has_opposite(self) -> bool:
        return self.opposite is not None


class Correlator:
    """
    Correlation queries bound to one route and threshold set.

    Args:
        route: Route to search
        config: Correlation thresholds and fallback policy
    """

    def __init__(self, route: WaypointsLike, config: CorrelationConfig = DEFAULT_CORRELATION):
        self.waypoints = tuple(route.waypoints if isinstance(route, Route) else route)
        self.config = config

    def __len__(self) -> int:
        return len(self.waypoints)

    def pair(self, index: int) -> CorrelatedPair:
        """The waypoint at `index` and its correlate."""
        opposite_index = find_opposite_index(index, self.waypoints, self.config)
        index %= len(self.waypoints)
        return CorrelatedPair(
            index=index,
            waypoint=self.waypoints[index],
            opposite_index=opposite_index,
            opposite=self.waypoints[opposite_index] if opposite_index is not None else None,
        )

    def nearest(self, latitude: float, longitude: float) -> CorrelatedPair:
        """Nearest waypoint to a cursor position, with its correlate."""
        return self.pair(find_nearest_index(latitude, longitude, self.waypoints))
