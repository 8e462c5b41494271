"""
Loader for health-export workout documents.

The export is a nested JSON document:

    {"data": {"workouts": [{"name": ..., "start": ..., "end": ...,
                            "duration": 3346.0,
                            "distance": {"qty": 9.2, "units": "mi"},
                            "route": [{"latitude": ..., "longitude": ...,
                                       "altitude": ..., "speed": ...,
                                       "course": ..., "timestamp": ...}, ...]}]}}
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

from pydantic import ValidationError

from route_data.data_models import Route, RouteDistance, Waypoint

logger = logging.getLogger(__name__)


class RouteLoadError(ValueError):
    """Raised when a workout document cannot be turned into a Route."""


def _workouts(document: Dict[str, Any]) -> list:
    # Accept both the full export and the bare {"workouts": [...]} payload
    payload = document.get("data", document)
    if not isinstance(payload, dict):
        raise RouteLoadError("Workout document has no 'data' object")
    workouts = payload.get("workouts")
    if not isinstance(workouts, list):
        raise RouteLoadError("Workout document has no 'workouts' list")
    return workouts


def parse_workout_document(document: Dict[str, Any], index: int = 0) -> Route:
    """
    Build a Route from a parsed export document.

    Args:
        document: Decoded JSON document
        index: Which workout of the export to use (default: the first)

    Returns:
        Route with waypoints in file order. A workout without a 'route' array
        yields an empty route.

    Raises:
        RouteLoadError: If the workout is missing or any sample is invalid
    """
    workouts = _workouts(document)
    if not -len(workouts) <= index < len(workouts):
        raise RouteLoadError(f"Workout {index} not found ({len(workouts)} in document)")
    workout = workouts[index]

    samples = workout.get("route") or []
    waypoints = []
    for i, sample in enumerate(samples):
        try:
            waypoints.append(Waypoint.model_validate(sample))
        except ValidationError as e:
            raise RouteLoadError(f"Invalid route sample {i}: {e}") from e

    distance = workout.get("distance")
    reported_distance = None
    if isinstance(distance, dict) and "qty" in distance:
        reported_distance = RouteDistance(qty=distance["qty"], units=distance.get("units", "mi"))

    try:
        route = Route(
            name=workout.get("name") or "Workout",
            waypoints=tuple(waypoints),
            reported_distance=reported_distance,
            reported_duration=workout.get("duration"),
            reported_start=workout.get("start"),
            reported_end=workout.get("end"),
        )
    except ValidationError as e:
        raise RouteLoadError(f"Invalid workout: {e}") from e

    if route.is_empty:
        logger.warning(f"Workout '{route.name}' has no route samples")
    else:
        logger.info(
            f"Loaded workout '{route.name}': {len(route)} waypoints, "
            f"{route.distance_meters:.1f}m, {route.duration_seconds:.0f}s"
        )
    return route


def load_workout_file(path: Union[str, Path], index: int = 0) -> Route:
    """
    Read and parse a workout export file.

    Raises:
        RouteLoadError: If the file is not valid JSON or not a workout export
        OSError: If the file cannot be read
    """
    path = Path(path)
    with open(path, 'r', encoding='utf-8') as f:
        try:
            document = json.load(f)
        except json.JSONDecodeError as e:
            raise RouteLoadError(f"{path} is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise RouteLoadError(f"{path} does not contain a workout document")
    return parse_workout_document(document, index=index)
