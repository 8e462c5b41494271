#!/usr/bin/env python3
"""
Render a recorded workout route over a map and step through it.

Usage:
    python main.py workout.json --output route.png
    python main.py workout.json --map-style satellite --playback 20
    python main.py workout.json --no-tiles --anonymize outback
"""

import argparse
import asyncio
import logging
import math
import sys
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from constants import (
    CORRELATION_COURSE_THRESHOLD_DEG,
    CORRELATION_DISTANCE_THRESHOLD_M,
    CORRELATION_TIME_THRESHOLD_S,
    DEFAULT_ELEVATION_SCALE,
    RELOCATION_ANCHORS,
    TILE_URL_TEMPLATES,
)
from correlation import CorrelatedPair, CorrelationConfig, FallbackPolicy
from playback import PlaybackSnapshot
from presentation import TopDownImageBackend, waypoint_stats, workout_summary
from projection import ProjectionConfig
from rich_console import (
    console,
    setup_rich_logging,
    create_tile_progress,
    print_route_summary,
    print_waypoint_panel,
    print_completion_summary,
    print_error,
)
from route_data import RouteLoadError, load_workout_file
from scheduler import VirtualScheduler
from session import RouteSession
from tiles import HttpTileSource, TileCompositor
from units import UnitPreferences

logger = logging.getLogger(__name__)


class ViewerConfig(BaseModel):
    """Validated command-line configuration."""
    input_file: str
    output_file: str = "route.png"
    workout_index: int = Field(default=0, ge=0)
    map_style: str = "street"
    tiles: bool = True
    image_size: int = Field(default=800, ge=64)
    elevation_scale: float = DEFAULT_ELEVATION_SCALE
    distance_threshold_m: float = Field(default=CORRELATION_DISTANCE_THRESHOLD_M, gt=0)
    time_threshold_s: float = Field(default=CORRELATION_TIME_THRESHOLD_S, ge=0)
    course_threshold_deg: float = Field(default=CORRELATION_COURSE_THRESHOLD_DEG, ge=0, le=180)
    fallback: FallbackPolicy = FallbackPolicy.NEAREST_IF_CLOSE
    playback_ticks: int = Field(default=0, ge=0)
    anonymize: Optional[str] = None
    metric: bool = False
    verbose: bool = False

    @field_validator("map_style")
    @classmethod
    def _known_style(cls, value: str) -> str:
        if value not in TILE_URL_TEMPLATES:
            raise ValueError(f"Unknown map style '{value}'. Use one of: {', '.join(sorted(TILE_URL_TEMPLATES))}")
        return value

    @field_validator("elevation_scale", "distance_threshold_m", "time_threshold_s", "course_threshold_deg")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("must be finite")
        return value

    @field_validator("anonymize")
    @classmethod
    def _known_anchor(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in RELOCATION_ANCHORS:
            raise ValueError(f"Unknown anonymize target '{value}'. Use one of: {', '.join(sorted(RELOCATION_ANCHORS))}")
        return value

    def projection_config(self) -> ProjectionConfig:
        return ProjectionConfig(elevation_scale=self.elevation_scale)

    def correlation_config(self) -> CorrelationConfig:
        return CorrelationConfig(
            distance_threshold_m=self.distance_threshold_m,
            time_threshold_s=self.time_threshold_s,
            course_threshold_deg=self.course_threshold_deg,
            fallback=self.fallback,
        )

    def unit_preferences(self) -> UnitPreferences:
        if self.metric:
            return UnitPreferences(altitude="meters", speed="mps")
        return UnitPreferences()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Render a workout route over a map and inspect opposite-direction passes."
    )
    parser.add_argument("input_file", help="Workout export JSON file")
    parser.add_argument("-o", "--output", dest="output_file", default="route.png",
                        help="Output image path (default: route.png)")
    parser.add_argument("--workout", dest="workout_index", type=int, default=0,
                        help="Index of the workout within the export (default: 0)")
    parser.add_argument("--map-style", choices=sorted(TILE_URL_TEMPLATES), default="street",
                        help="Basemap imagery (default: street)")
    parser.add_argument("--no-tiles", dest="tiles", action="store_false",
                        help="Skip tile downloads and draw a flat ground")
    parser.add_argument("--image-size", type=int, default=800,
                        help="Output image edge in pixels (default: 800)")
    parser.add_argument("--elevation-scale", type=float, default=DEFAULT_ELEVATION_SCALE,
                        help=f"Altitude multiplier (default: {DEFAULT_ELEVATION_SCALE})")
    parser.add_argument("--distance-threshold", dest="distance_threshold_m", type=float,
                        default=CORRELATION_DISTANCE_THRESHOLD_M,
                        help=f"Meters for two waypoints to count as the same place (default: {CORRELATION_DISTANCE_THRESHOLD_M:g})")
    parser.add_argument("--time-threshold", dest="time_threshold_s", type=float,
                        default=CORRELATION_TIME_THRESHOLD_S,
                        help=f"Seconds two waypoints must be apart (default: {CORRELATION_TIME_THRESHOLD_S:g})")
    parser.add_argument("--course-threshold", dest="course_threshold_deg", type=float,
                        default=CORRELATION_COURSE_THRESHOLD_DEG,
                        help=f"Degrees of course difference for opposite directions (default: {CORRELATION_COURSE_THRESHOLD_DEG:g})")
    parser.add_argument("--fallback", choices=[p.value for p in FallbackPolicy],
                        default=FallbackPolicy.NEAREST_IF_CLOSE.value,
                        help="Correlate to report when no waypoint is a full match")
    parser.add_argument("--playback", dest="playback_ticks", type=int, default=0,
                        help="Play this many waypoints and print each one")
    parser.add_argument("--anonymize", choices=sorted(RELOCATION_ANCHORS),
                        help="Move the route to a remote location before rendering")
    parser.add_argument("--metric", action="store_true",
                        help="Show meters and m/s instead of feet and mph")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> ViewerConfig:
    args = build_parser().parse_args(argv)
    try:
        return ViewerConfig(**vars(args))
    except ValidationError as e:
        print_error(f"Invalid configuration: {e}")
        sys.exit(1)


def _print_playback(session: RouteSession, prefs: UnitPreferences):
    def listener(snapshot: PlaybackSnapshot, pair: Optional[CorrelatedPair]) -> None:
        if pair is None:
            return
        points = session.points
        rows = waypoint_stats(pair.index, pair.waypoint, points[pair.index], prefs)
        opposite_rows = None
        if pair.has_opposite:
            opposite_rows = waypoint_stats(pair.opposite_index, pair.opposite,
                                           points[pair.opposite_index], prefs)
        print_waypoint_panel(rows, opposite_rows)
    return listener


def run(config: ViewerConfig) -> int:
    """
    Load, render and optionally play back one workout.

    Returns:
        Process exit code
    """
    setup_rich_logging(config.verbose)
    prefs = config.unit_preferences()
    try:
        projection = config.projection_config()
        correlation = config.correlation_config()
    except ValidationError as e:
        print_error(f"Invalid configuration: {e}")
        return 1

    try:
        route = load_workout_file(config.input_file, config.workout_index)
    except (RouteLoadError, OSError) as e:
        print_error(str(e), hint="Expected a health export JSON with data.workouts[].route")
        return 1

    if config.anonymize:
        route = route.relocated(*RELOCATION_ANCHORS[config.anonymize])
        logger.info(f"Relocated route to {config.anonymize}")

    print_route_summary(workout_summary(route, prefs), title=route.name)

    compositor = TileCompositor(HttpTileSource(config.map_style)) if config.tiles else None
    backend = TopDownImageBackend(image_size=config.image_size)
    scheduler = VirtualScheduler()
    session = RouteSession(
        backend, scheduler, compositor,
        projection=projection, correlation=correlation,
    )

    try:
        session.load_route(route)

        tiles_total = session.plan.tile_bounds.total if session.plan and compositor else None
        if tiles_total:
            with create_tile_progress() as progress:
                task = progress.add_task("Fetching map tiles", total=tiles_total)
                asyncio.run(session.load_basemap(
                    progress_callback=lambda done, total: progress.update(task, completed=done)))

        if config.playback_ticks and not route.is_empty:
            playback = session.playback
            playback.subscribe(_print_playback(session, prefs))
            playback.start()
            for _ in range(config.playback_ticks - 1):
                scheduler.advance(playback.tick_interval_ms)
            playback.pause()

        try:
            backend.save(config.output_file)
        except (OSError, ValueError) as e:
            print_error(f"Could not write {config.output_file}: {e}")
            return 1
    finally:
        session.close()
        if compositor is not None:
            compositor.source.close()

    print_completion_summary(config.output_file, len(route),
                             tiles=tiles_total if session.texture is not None else None)
    console.print()
    return 0


def main():
    sys.exit(run(parse_args()))


if __name__ == "__main__":
    main()
