"""
Route data module for recorded workouts.

Models GPS samples and routes, and loads them from health-export JSON
documents.
"""

from route_data.data_models import (
    BoundingBox,
    Route,
    RouteDistance,
    Waypoint,
    parse_timestamp,
)
from route_data.loader import RouteLoadError, load_workout_file, parse_workout_document

__all__ = [
    "BoundingBox",
    "Route",
    "RouteDistance",
    "Waypoint",
    "parse_timestamp",
    "RouteLoadError",
    "load_workout_file",
    "parse_workout_document",
]
