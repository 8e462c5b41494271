"""
Constants for the workout route viewer.

Centralized definitions for tiling, projection defaults, correlation
thresholds, playback timing, key bindings and colors.
"""

from typing import Dict, Tuple
from dataclasses import dataclass


# =============================================================================
# Colors (RGB format for Pillow)
# =============================================================================

@dataclass(frozen=True)
class Colors:
    """Common colors in RGB format."""
    WHITE: Tuple[int, int, int] = (255, 255, 255)
    BLACK: Tuple[int, int, int] = (0, 0, 0)
    GREEN: Tuple[int, int, int] = (0, 255, 0)
    RED: Tuple[int, int, int] = (255, 0, 0)
    GREY: Tuple[int, int, int] = (136, 136, 136)

    # Scene
    SKY_BLUE: Tuple[int, int, int] = (135, 206, 235)       # Scene background
    GROUND_GREEN: Tuple[int, int, int] = (144, 238, 144)   # Placeholder ground (no tiles)
    TILE_BLANK: Tuple[int, int, int] = (15, 18, 22)        # Failed tile region

    # Markers
    START_MARKER: Tuple[int, int, int] = (0, 255, 0)
    END_MARKER: Tuple[int, int, int] = (255, 0, 0)
    CURRENT_MARKER: Tuple[int, int, int] = (255, 140, 50)  # Playback cursor
    OPPOSITE_MARKER: Tuple[int, int, int] = (0, 200, 255)  # Correlated waypoint


COLORS = Colors()


# =============================================================================
# Tile Compositor
# =============================================================================

TILE_SIZE = 256                 # Standard web map tile size (pixels)
TILE_PADDING_DEG = 0.001        # Padding around the route bounding box
TILE_FETCH_TIMEOUT = 5          # Seconds per tile request
TILE_MAX_WORKERS = 8            # Concurrent tile fetches
TILE_USER_AGENT = "WorkoutRouteViewer/1.0"
MERCATOR_MAX_LAT = 85.05112878  # Web-Mercator latitude limit

TILE_URL_TEMPLATES: Dict[str, str] = {
    "street": "https://tile.openstreetmap.org/{z}/{x}/{y}.png",
    "satellite": "https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/tile/{z}/{y}/{x}",
}

# (span threshold in degrees, zoom) - first threshold the span strictly exceeds wins
ZOOM_STEPS: Tuple[Tuple[float, int], ...] = (
    (1.0, 10),
    (0.1, 12),
    (0.01, 14),
    (0.001, 16),
)
ZOOM_MAX = 18


# =============================================================================
# Projection
# =============================================================================

GROUND_PLANE_SIZE = 200         # Ground mesh edge length (scene units)
GROUND_SIZE = 180               # Route footprint inside the ground plane (with margin)
GROUND_CENTER_OFFSET = 90       # Shifts the footprint onto the plane origin
PROJECTION_MIN_SCALE = 1e-9     # Clamp for single-point routes (zero span)

# Calibrated defaults from the projection controls
DEFAULT_LAT_SCALE = 0.849
DEFAULT_LNG_SCALE = 0.861
DEFAULT_LAT_OFFSET = -0.0435
DEFAULT_LNG_OFFSET = 0.0116
DEFAULT_ELEVATION_SCALE = 0.2

# "Reset to defaults" values of the projection controls
NEUTRAL_ELEVATION_SCALE = 0.1

# Speed coloring (HSL): hue 0.3 = green (slow) down to 0.0 = red (fast)
SPEED_HUE_MAX = 0.3
SPEED_SATURATION = 1.0
SPEED_LIGHTNESS = 0.5


# =============================================================================
# Correlation
# =============================================================================

CORRELATION_DISTANCE_THRESHOLD_M = 10.0   # Same place
CORRELATION_TIME_THRESHOLD_S = 60.0       # Far enough apart in time
CORRELATION_COURSE_THRESHOLD_DEG = 120.0  # Heading the other way


# =============================================================================
# Playback
# =============================================================================

PLAYBACK_BASE_INTERVAL_MS = 200.0
FRAME_INTERVAL_MS = 1000.0 / 60.0

# Key identifiers -> playback action
KEY_BINDINGS: Dict[str, str] = {
    "ArrowRight": "forward",
    "l": "forward",
    "ArrowLeft": "back",
    "h": "back",
    "r": "ride",
    " ": "ride",
    "p": "pause",
    "Escape": "reset",
    "0": "reset",
}

PLAYBACK_ACTIONS = frozenset({"forward", "back", "ride", "pause", "reset"})


# =============================================================================
# Camera
# =============================================================================

CAMERA_ROTATION_X = 0.70        # Approximately 40 degrees of elevation
CAMERA_ROTATION_Y = 0.0
CAMERA_DISTANCE = 100.0
CAMERA_MIN_DISTANCE = 2.0
CAMERA_MAX_DISTANCE = 200.0


# =============================================================================
# Markers
# =============================================================================

WAYPOINT_CUBE_SIZE = 0.5
ENDPOINT_SPHERE_RADIUS = 1.0
HIGHLIGHT_SCALE = 3.0


# =============================================================================
# Conversion Constants
# =============================================================================

MPS_TO_MPH = 2.23694          # meters per second to miles per hour
METERS_TO_FEET = 3.28084
METERS_PER_MILE = 1609.344
SECONDS_PER_MINUTE = 60.0
EARTH_RADIUS_M = 6371008.8    # Mean Earth radius


# =============================================================================
# Relocation anchors (route anonymization)
# =============================================================================

OUTBACK_LATITUDE = -25.751525
OUTBACK_LONGITUDE = 134.1065540
EVEREST_LATITUDE = 27.98789
EVEREST_LONGITUDE = 86.92502

RELOCATION_ANCHORS: Dict[str, Tuple[float, float]] = {
    "outback": (OUTBACK_LATITUDE, OUTBACK_LONGITUDE),
    "everest": (EVEREST_LATITUDE, EVEREST_LONGITUDE),
}
