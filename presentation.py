"""
Presentation boundary for the route viewer.

The core never touches a graphics API. SceneBuilder turns projected points,
basemap plans and correlated pairs into calls on a RenderBackend; concrete
backends decide how ground meshes, polylines and markers are drawn.
TopDownImageBackend is the bundled implementation: a Pillow rendering of
the scene seen from directly above.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
from PIL import Image, ImageDraw

from constants import (
    COLORS,
    GROUND_PLANE_SIZE,
    CAMERA_ROTATION_X, CAMERA_ROTATION_Y, CAMERA_DISTANCE,
    CAMERA_MIN_DISTANCE, CAMERA_MAX_DISTANCE,
    WAYPOINT_CUBE_SIZE, ENDPOINT_SPHERE_RADIUS, HIGHLIGHT_SCALE,
)
from correlation import CorrelatedPair
from projection import ProjectedPoint, speed_colors
from route_data.data_models import Route, Waypoint
from tiles import BasemapPlan
from units import UnitPreferences, bearing_arrow, bearing_label, seconds_to_minutes

logger = logging.getLogger(__name__)

Vector3 = Tuple[float, float, float]
RGB = Tuple[int, int, int]

# Marker kinds
CUBE = "cube"
SPHERE = "sphere"
CURRENT = "current"
OPPOSITE = "opposite"

# Kinds that replace the previous marker of the same kind instead of accumulating
HIGHLIGHT_KINDS = (CURRENT, OPPOSITE)


class RenderBackend(ABC):
    """
    Abstract drawing surface for the route scene.

    Coordinates are scene units: x east-west, y up, z north-south, with the
    ground plane centered on the origin.

    Subclasses must implement every method below. Markers of a highlight
    kind ('current', 'opposite') replace the previous marker of that kind.
    """

    @abstractmethod
    def build_ground_mesh(self, size: float, texture: Optional[Image.Image] = None,
                          color: RGB = COLORS.GROUND_GREEN) -> None:
        """Create (or replace) the square ground plane, textured or flat."""
        pass

    @abstractmethod
    def build_polyline(self, vertices: Sequence[Vector3], colors: Sequence[RGB]) -> None:
        """Add a polyline with one color per vertex."""
        pass

    @abstractmethod
    def build_marker(self, position: Vector3, color: RGB, size: float, kind: str = CUBE) -> None:
        pass

    @abstractmethod
    def set_camera_pose(self, position: Vector3, look_at: Vector3) -> None:
        pass

    @abstractmethod
    def clear_route(self) -> None:
        """Remove every polyline and marker, keeping the ground."""
        pass


@dataclass(frozen=True)
class OrbitCamera:
    """
    Fixed orbit pose around a target point.

    Distance is clamped to [CAMERA_MIN_DISTANCE, CAMERA_MAX_DISTANCE].
    """
    rotation_x: float = CAMERA_ROTATION_X
    rotation_y: float = CAMERA_ROTATION_Y
    distance: float = CAMERA_DISTANCE
    target: Vector3 = (0.0, 0.0, 0.0)

    def __post_init__(self):
        clamped = max(CAMERA_MIN_DISTANCE, min(CAMERA_MAX_DISTANCE, self.distance))
        object.__setattr__(self, "distance", clamped)

    def position(self) -> Vector3:
        """Camera position in scene units."""
        tx, ty, tz = self.target
        horizontal = self.distance * math.cos(self.rotation_x)
        return (
            tx + horizontal * math.sin(self.rotation_y),
            ty + self.distance * math.sin(self.rotation_x),
            tz + horizontal * math.cos(self.rotation_y),
        )


class SceneBuilder:
    """
    Translates route geometry into RenderBackend calls.

    Args:
        backend: Drawing surface
        camera: Camera pose applied when the ground is built
    """

    def __init__(self, backend: RenderBackend, camera: Optional[OrbitCamera] = None):
        self.backend = backend
        self.camera = camera or OrbitCamera()

    def build_ground(self, plan: Optional[BasemapPlan] = None,
                     texture: Optional[Image.Image] = None) -> None:
        """
        Build the ground plane and place the camera.

        Without a texture (no plan, no tiles or an empty route) the ground is
        a flat colour.
        """
        if texture is None:
            logger.debug("Building flat ground")
        elif plan is not None:
            logger.debug(f"Building ground textured at zoom {plan.zoom} ({plan.tile_bounds.total} tiles)")
        self.backend.build_ground_mesh(GROUND_PLANE_SIZE, texture=texture, color=COLORS.GROUND_GREEN)
        self.backend.set_camera_pose(self.camera.position(), self.camera.target)

    def build_route(self, points: Sequence[ProjectedPoint]) -> None:
        """Draw the speed-colored track, per-waypoint cubes and start/end spheres."""
        self.backend.clear_route()
        if not points:
            return

        colors = speed_colors(points)
        self.backend.build_polyline([p.position for p in points], colors)
        for point, color in zip(points, colors):
            self.backend.build_marker(point.position, color, WAYPOINT_CUBE_SIZE, CUBE)

        self.backend.build_marker(points[0].position, COLORS.START_MARKER, ENDPOINT_SPHERE_RADIUS, SPHERE)
        self.backend.build_marker(points[-1].position, COLORS.END_MARKER, ENDPOINT_SPHERE_RADIUS, SPHERE)

    def highlight(self, pair: Optional[CorrelatedPair], points: Sequence[ProjectedPoint]) -> None:
        """Enlarge the current waypoint and its correlate (if any)."""
        if pair is None or not points:
            return
        size = WAYPOINT_CUBE_SIZE * HIGHLIGHT_SCALE
        self.backend.build_marker(points[pair.index].position, COLORS.CURRENT_MARKER, size, CURRENT)
        if pair.opposite_index is not None:
            self.backend.build_marker(points[pair.opposite_index].position,
                                      COLORS.OPPOSITE_MARKER, size, OPPOSITE)


@dataclass
class _Marker:
    position: Vector3
    color: RGB
    size: float
    kind: str


@dataclass
class _Polyline:
    vertices: List[Vector3]
    colors: List[RGB] = field(default_factory=list)


class TopDownImageBackend(RenderBackend):
    """
    Renders the scene as seen from straight above into an RGB image.

    Scene x maps to image columns and scene z to image rows, so with the
    default projection north is up. Elevation is ignored.

    Args:
        image_size: Output edge in pixels (square)
        background: Colour outside the ground plane
        line_width: Track line width in pixels
    """

    def __init__(self, image_size: int = 800, background: RGB = COLORS.SKY_BLUE,
                 line_width: int = 3):
        if image_size <= 0:
            raise ValueError("image_size must be positive")
        self.image_size = image_size
        self.background = background
        self.line_width = line_width

        self.ground_size: float = GROUND_PLANE_SIZE
        self.ground_texture: Optional[Image.Image] = None
        self.ground_color: Optional[RGB] = None
        self.camera_pose: Optional[Tuple[Vector3, Vector3]] = None
        self.polylines: List[_Polyline] = []
        self.markers: List[_Marker] = []

    def build_ground_mesh(self, size: float, texture: Optional[Image.Image] = None,
                          color: RGB = COLORS.GROUND_GREEN) -> None:
        if size <= 0:
            raise ValueError("Ground size must be positive")
        self.ground_size = size
        self.ground_texture = texture
        self.ground_color = color

    def build_polyline(self, vertices: Sequence[Vector3], colors: Sequence[RGB]) -> None:
        if len(colors) != len(vertices):
            raise ValueError("Polyline needs one color per vertex")
        self.polylines.append(_Polyline(list(vertices), list(colors)))

    def build_marker(self, position: Vector3, color: RGB, size: float, kind: str = CUBE) -> None:
        if kind in HIGHLIGHT_KINDS:
            self.markers = [m for m in self.markers if m.kind != kind]
        self.markers.append(_Marker(position, color, size, kind))

    def set_camera_pose(self, position: Vector3, look_at: Vector3) -> None:
        self.camera_pose = (position, look_at)

    def clear_route(self) -> None:
        self.polylines.clear()
        self.markers.clear()

    @property
    def pixels_per_unit(self) -> float:
        return self.image_size / self.ground_size

    def to_pixel(self, position: Vector3) -> Tuple[float, float]:
        """Image (column, row) of a scene position."""
        x, _, z = position
        half = self.image_size / 2
        return (half + x * self.pixels_per_unit, half + z * self.pixels_per_unit)

    def render(self) -> np.ndarray:
        """
        Draw the current scene.

        Returns:
            RGB image array of shape (image_size, image_size, 3)
        """
        img = Image.new('RGB', (self.image_size, self.image_size), self.background)

        if self.ground_texture is not None:
            img.paste(self.ground_texture.convert('RGB').resize((self.image_size, self.image_size)), (0, 0))
        elif self.ground_color is not None:
            img.paste(self.ground_color, (0, 0, self.image_size, self.image_size))

        draw = ImageDraw.Draw(img)

        for line in self.polylines:
            pts = [self.to_pixel(v) for v in line.vertices]
            for i in range(len(pts) - 1):
                draw.line([pts[i], pts[i + 1]], fill=line.colors[i], width=self.line_width)

        # Regular markers first so highlights stay on top
        ordered = sorted(self.markers, key=lambda m: m.kind in HIGHLIGHT_KINDS)
        for marker in ordered:
            cx, cy = self.to_pixel(marker.position)
            r = max(1.0, marker.size * self.pixels_per_unit / 2)
            box = [cx - r, cy - r, cx + r, cy + r]
            if marker.kind == SPHERE:
                draw.ellipse(box, fill=marker.color, outline=COLORS.BLACK)
            elif marker.kind in HIGHLIGHT_KINDS:
                draw.rectangle(box, fill=marker.color, outline=COLORS.WHITE, width=2)
            else:
                draw.rectangle(box, fill=marker.color)

        return np.array(img)

    def save(self, path: Union[str, Path]) -> Path:
        """Render and write the image; format follows the file extension."""
        path = Path(path)
        Image.fromarray(self.render()).save(path)
        logger.info(f"Saved route image to {path}")
        return path


# =============================================================================
# Overlay text
# =============================================================================

def _format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "N/A"
    return value.strftime("%Y-%m-%d %H:%M:%S %z").strip()


def waypoint_stats(index: int, waypoint: Waypoint, point: Optional[ProjectedPoint] = None,
                   prefs: UnitPreferences = UnitPreferences()) -> List[Tuple[str, str]]:
    """Label/value rows for the waypoint inspector."""
    rows = [
        ("Waypoint", str(index)),
        ("Time", _format_time(waypoint.timestamp)),
        ("Latitude", f"{waypoint.latitude:.6f}"),
        ("Longitude", f"{waypoint.longitude:.6f}"),
        ("Altitude", prefs.format_altitude(waypoint.altitude)),
        ("Speed", prefs.format_speed(waypoint.speed)),
        ("Course", f"{waypoint.course:.0f}° {bearing_arrow(waypoint.course)} {bearing_label(waypoint.course)}"),
    ]
    if point is not None:
        rows.append(("Scene", f"({point.x:.1f}, {point.y:.1f}, {point.z:.1f})"))
    return rows


def workout_summary(route: Route, prefs: UnitPreferences = UnitPreferences()) -> List[Tuple[str, str]]:
    """Label/value rows describing a whole workout."""
    if route.is_empty:
        return [("Name", route.name), ("Waypoints", "0")]

    lat, lng = route.middle_point
    return [
        ("Name", route.name),
        ("Waypoints", str(len(route))),
        ("Distance", route.distance_label),
        ("Duration", f"{seconds_to_minutes(route.duration_seconds):.1f} min"),
        ("Start", _format_time(route.start_time)),
        ("End", _format_time(route.end_time)),
        ("Average speed", prefs.format_speed(route.average_speed)),
        ("Min speed", prefs.format_speed(route.min_speed)),
        ("Max speed", prefs.format_speed(route.max_speed)),
        ("Center", f"{lat:.5f}, {lng:.5f}"),
    ]
