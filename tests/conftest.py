"""
Pytest configuration and fixtures for route viewer tests.

Provides a synthetic out-and-back route, a sample health export document
and a fake tile source so no test touches the network.
"""

import pytest
from datetime import datetime, timedelta, timezone
from typing import List
from unittest.mock import MagicMock

from PIL import Image

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from route_data.data_models import Route, Waypoint


START_TIME = datetime(2024, 4, 27, 17, 53, 50, tzinfo=timezone.utc)
BASE_LAT = 40.0
BASE_LNG = -105.0
LAT_STEP = 0.0002           # ~22 m between consecutive samples
RETURN_LNG_OFFSET = 0.00003  # ~2.5 m east of the outbound leg
LEG_POINTS = 10
RETURN_DELAY_S = 400        # Return leg starts well after the outbound leg ends


def make_waypoint(lat: float, lng: float, seconds: float, course: float = 0.0,
                  speed: float = 3.0, altitude: float = 1600.0) -> Waypoint:
    """Waypoint at START_TIME + seconds."""
    return Waypoint(
        latitude=lat,
        longitude=lng,
        altitude=altitude,
        speed=speed,
        course=course,
        timestamp=START_TIME + timedelta(seconds=seconds),
    )


def out_and_back_waypoints() -> List[Waypoint]:
    """
    Ten samples heading north, then ten heading south over the same ground.

    Outbound sample i (index i) and return sample 19 - i share a latitude,
    lie ~2.5 m apart, are at least 310 s apart and have opposite courses.
    """
    outbound = [
        make_waypoint(BASE_LAT + i * LAT_STEP, BASE_LNG, seconds=i * 10,
                      course=0.0, speed=3.0 + i * 0.1, altitude=1600.0 + i)
        for i in range(LEG_POINTS)
    ]
    inbound = [
        make_waypoint(BASE_LAT + (LEG_POINTS - 1 - k) * LAT_STEP, BASE_LNG + RETURN_LNG_OFFSET,
                      seconds=RETURN_DELAY_S + k * 10, course=180.0, speed=4.0,
                      altitude=1609.0 - k)
        for k in range(LEG_POINTS)
    ]
    return outbound + inbound


@pytest.fixture
def out_and_back_route() -> Route:
    """Fixture providing a 20-point out-and-back route."""
    return Route(name="Out and Back", waypoints=tuple(out_and_back_waypoints()))


@pytest.fixture
def single_point_route() -> Route:
    """Fixture providing a route with one waypoint."""
    return Route(waypoints=(make_waypoint(BASE_LAT, BASE_LNG, 0),))


@pytest.fixture
def empty_route() -> Route:
    """Fixture providing a route without waypoints."""
    return Route()


@pytest.fixture
def sample_export_document():
    """Fixture providing a health export document with one short workout."""
    return {
        "data": {
            "workouts": [
                {
                    "name": "Outdoor Run",
                    "start": "2024-04-27 17:53:50 -0600",
                    "end": "2024-04-27 18:49:36 -0600",
                    "duration": 3346.0,
                    "distance": {"qty": 9.2012, "units": "mi"},
                    "route": [
                        {"latitude": 40.0, "longitude": -105.0, "altitude": 1600.5,
                         "speed": 3.1, "course": 10.0,
                         "timestamp": "2024-04-27 17:53:50 -0600"},
                        {"latitude": 40.0002, "longitude": -105.0, "altitude": 1601.0,
                         "speed": 3.3, "course": 12.0,
                         "timestamp": "2024-04-27 17:54:00 -0600"},
                        {"latitude": 40.0004, "longitude": -105.0001, "altitude": 1601.8,
                         "speed": 3.6, "course": -1.0,
                         "timestamp": "2024-04-27 17:54:10 -0600"},
                    ],
                }
            ]
        }
    }


@pytest.fixture
def fake_tile_source():
    """Fixture providing a tile source that returns solid gray tiles."""
    source = MagicMock()
    source.fetch.side_effect = lambda z, x, y: Image.new('RGB', (256, 256), (128, 128, 128))
    return source
