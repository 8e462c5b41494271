"""
Geodetic to rendering-plane projection for workout routes.

Maps a route's waypoints into local scene coordinates (x, y-elevation, z)
under a configurable transform: per-axis scale, offsets, axis flips,
rotation about the vertical axis and an optional axis swap.

The overall scale is derived from the route's larger bounding-box span, so
any configuration change requires a full re-projection.
"""

import colorsys
import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from constants import (
    DEFAULT_LAT_SCALE, DEFAULT_LNG_SCALE, DEFAULT_LAT_OFFSET, DEFAULT_LNG_OFFSET,
    DEFAULT_ELEVATION_SCALE, NEUTRAL_ELEVATION_SCALE,
    GROUND_SIZE, GROUND_CENTER_OFFSET, PROJECTION_MIN_SCALE,
    SPEED_HUE_MAX, SPEED_SATURATION, SPEED_LIGHTNESS,
)
from route_data.data_models import Route, Waypoint

logger = logging.getLogger(__name__)


class ProjectionConfig(BaseModel):
    """
    Transform from geodetic coordinates to the rendering plane.

    Replaced wholesale, never mutated. Invalid values (zero or non-finite
    scales, non-positive ground size) are rejected at construction.
    """
    model_config = ConfigDict(frozen=True)

    lat_scale: float = Field(default=DEFAULT_LAT_SCALE, description="Latitude multiplier")
    lng_scale: float = Field(default=DEFAULT_LNG_SCALE, description="Longitude multiplier")
    rotation: float = Field(default=0.0, description="Rotation about the vertical axis (radians)")
    lat_offset: float = Field(default=DEFAULT_LAT_OFFSET, description="Latitude offset (degrees)")
    lng_offset: float = Field(default=DEFAULT_LNG_OFFSET, description="Longitude offset (degrees)")
    ground_size: float = Field(default=GROUND_SIZE, gt=0, description="Route footprint size (scene units)")
    center_offset: float = Field(default=GROUND_CENTER_OFFSET, description="Shift onto the plane origin")
    elevation_scale: float = Field(default=DEFAULT_ELEVATION_SCALE, description="Altitude multiplier")
    flip_latitude: bool = Field(default=True, description="Negate the latitude axis")
    flip_longitude: bool = Field(default=False, description="Negate the longitude axis")
    swap_axes: bool = Field(default=False, description="Map latitude to x and longitude to z")

    @field_validator("lat_scale", "lng_scale")
    @classmethod
    def _non_zero_scale(cls, value: float) -> float:
        if not math.isfinite(value) or value == 0:
            raise ValueError("scale must be a finite, non-zero number")
        return value

    @field_validator("rotation", "lat_offset", "lng_offset", "ground_size",
                     "center_offset", "elevation_scale")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("must be finite")
        return value

    @classmethod
    def neutral(cls) -> "ProjectionConfig":
        """Identity-like settings used by the projection controls' reset."""
        return cls(
            lat_scale=1.0,
            lng_scale=1.0,
            rotation=0.0,
            lat_offset=0.0,
            lng_offset=0.0,
            elevation_scale=NEUTRAL_ELEVATION_SCALE,
            flip_latitude=True,
            flip_longitude=False,
            swap_axes=False,
        )

    def with_changes(self, **changes) -> "ProjectionConfig":
        """Validated copy with some fields replaced.

        Raises:
            pydantic.ValidationError: If the resulting configuration is invalid
        """
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown projection option(s): {', '.join(sorted(unknown))}")
        return type(self)(**{**self.model_dump(), **changes})


DEFAULT_PROJECTION = ProjectionConfig()


@dataclass(frozen=True)
class ProjectedPoint:
    """A waypoint in scene coordinates.

    Attributes:
        x, z: Position on the ground plane
        y: Elevation (altitude times elevation scale)
        speed: Speed in m/s, carried for coloring
        source_index: Index of the originating waypoint
    """
    x: float
    y: float
    z: float
    speed: float
    source_index: int

    @property
    def position(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)


def project(route: Union[Route, Sequence[Waypoint]],
            config: ProjectionConfig = DEFAULT_PROJECTION) -> List[ProjectedPoint]:
    """
    Project waypoints onto the rendering plane.

    Pure and deterministic: neither the route nor the config is modified,
    and identical inputs produce identical output.

    Args:
        route: Route or ordered waypoint sequence
        config: Projection transform

    Returns:
        One ProjectedPoint per waypoint, in the same order. Empty input
        gives an empty list.
    """
    waypoints = route.waypoints if isinstance(route, Route) else tuple(route)
    if not waypoints:
        return []

    lats = np.array([w.latitude for w in waypoints], dtype=np.float64)
    lngs = np.array([w.longitude for w in waypoints], dtype=np.float64)
    alts = np.array([w.altitude_or_zero for w in waypoints], dtype=np.float64)
    speeds = [w.speed for w in waypoints]

    min_lat, max_lat = lats.min(), lats.max()
    min_lng, max_lng = lngs.min(), lngs.max()

    span = max(max_lat - min_lat, max_lng - min_lng)
    ys = alts * config.elevation_scale

    if span <= 0:
        # No footprint (one point, or every sample identical): collapse to the origin
        return [
            ProjectedPoint(x=0.0, y=float(ys[i]), z=0.0, speed=speeds[i], source_index=i)
            for i in range(len(waypoints))
        ]

    scale = max(span / config.ground_size, PROJECTION_MIN_SCALE)

    lat = (lats - min_lat) * config.lat_scale + config.lat_offset
    lng = (lngs - min_lng) * config.lng_scale + config.lng_offset

    if config.flip_longitude:
        lng = -lng
    if config.flip_latitude:
        lat = -lat

    if config.rotation != 0:
        cos_r = math.cos(config.rotation)
        sin_r = math.sin(config.rotation)
        lat, lng = lat * cos_r - lng * sin_r, lat * sin_r + lng * cos_r

    if config.swap_axes:
        xs = lat / scale - config.center_offset
        zs = lng / scale - config.center_offset
    else:
        xs = lng / scale - config.center_offset
        zs = lat / scale - config.center_offset

    return [
        ProjectedPoint(x=float(xs[i]), y=float(ys[i]), z=float(zs[i]),
                       speed=speeds[i], source_index=i)
        for i in range(len(waypoints))
    ]


def speed_hue(speed: float, min_speed: float, max_speed: float) -> float:
    """HSL hue for a speed: green (0.3) when slowest down to red (0.0) when fastest."""
    if max_speed > min_speed:
        ratio = (speed - min_speed) / (max_speed - min_speed)
        return SPEED_HUE_MAX * (1 - ratio)
    return SPEED_HUE_MAX


def speed_color(speed: float, min_speed: float, max_speed: float) -> Tuple[int, int, int]:
    """RGB color for a speed relative to the route's speed range."""
    hue = speed_hue(speed, min_speed, max_speed)
    # colorsys takes HLS order
    r, g, b = colorsys.hls_to_rgb(hue, SPEED_LIGHTNESS, SPEED_SATURATION)
    return (int(round(r * 255)), int(round(g * 255)), int(round(b * 255)))


def speed_colors(points: Sequence[ProjectedPoint]) -> List[Tuple[int, int, int]]:
    """Per-point colors using the actual speed range of the points."""
    if not points:
        return []
    speeds = [p.speed for p in points]
    lo, hi = min(speeds), max(speeds)
    return [speed_color(s, lo, hi) for s in speeds]


ProjectionListener = Callable[[List[ProjectedPoint], ProjectionConfig], None]


class ProjectionSession:
    """
    Owns the projected geometry of one route.

    Holds the last-known-good configuration. A configuration change is
    validated in full before it is applied; an invalid change leaves the
    previous configuration and points in effect. Every accepted change
    re-projects the whole route and notifies listeners so derived scene
    geometry can be rebuilt.

    Args:
        route: Route to project
        config: Initial configuration (default: calibrated defaults)
    """

    def __init__(self, route: Route, config: ProjectionConfig = DEFAULT_PROJECTION):
        self._route = route
        self._config = config
        self._points: List[ProjectedPoint] = project(route, config)
        self._listeners: List[ProjectionListener] = []

    @property
    def route(self) -> Route:
        return self._route

    @property
    def config(self) -> ProjectionConfig:
        return self._config

    @property
    def points(self) -> List[ProjectedPoint]:
        """Current projected points (a copy; the session's list is never exposed)."""
        return list(self._points)

    def subscribe(self, listener: ProjectionListener) -> None:
        """Register a callback invoked after each re-projection."""
        self._listeners.append(listener)

    def replace(self, config: ProjectionConfig) -> List[ProjectedPoint]:
        """Apply an already-validated configuration and re-project."""
        self._config = config
        self._points = project(self._route, config)
        logger.debug(f"Re-projected {len(self._points)} points")
        for listener in self._listeners:
            listener(self.points, config)
        return self.points

    def update(self, **changes) -> List[ProjectedPoint]:
        """
        Change some projection options.

        Raises:
            ValueError: If the options are unknown or produce an invalid
                configuration (pydantic.ValidationError is a ValueError);
                the current configuration is kept.
        """
        try:
            config = self._config.with_changes(**changes)
        except ValueError as e:
            logger.warning(f"Rejected projection change {changes}: {e}")
            raise
        return self.replace(config)

    def reset(self) -> List[ProjectedPoint]:
        """Return to the neutral projection controls."""
        return self.replace(ProjectionConfig.neutral())
