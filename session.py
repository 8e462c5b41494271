"""
Route viewing session.

Wires one loaded route to the projection, correlation, tiling, playback and
presentation services. Collaborators are passed in explicitly; nothing is
looked up from module globals.

Loading a new route bumps a route token. Work started for an older route
(a basemap still being composed) checks the token when it finishes and
discards its result if the route has changed in the meantime.
"""

import asyncio
import functools
import logging
from typing import Callable, List, Optional

from PIL import Image

from correlation import CorrelatedPair, CorrelationConfig, Correlator, DEFAULT_CORRELATION
from playback import PlaybackController, PlaybackSnapshot
from presentation import RenderBackend, SceneBuilder
from projection import DEFAULT_PROJECTION, ProjectedPoint, ProjectionConfig, ProjectionSession
from route_data.data_models import Route
from scheduler import FrameLoop, Scheduler
from tiles import BasemapPlan, ProgressCallback, TileCompositor, plan_basemap

logger = logging.getLogger(__name__)


class RouteSession:
    """
    Owns everything derived from the currently loaded route.

    Args:
        backend: Presentation backend the scene is built on
        scheduler: Timer source for playback and frame loops
        compositor: Tile compositor for the basemap (None disables tiles)
        projection: Initial projection configuration
        correlation: Correlation thresholds and fallback policy
    """

    def __init__(self, backend: RenderBackend, scheduler: Scheduler,
                 compositor: Optional[TileCompositor] = None,
                 projection: ProjectionConfig = DEFAULT_PROJECTION,
                 correlation: CorrelationConfig = DEFAULT_CORRELATION):
        self.backend = backend
        self.scheduler = scheduler
        self.compositor = compositor
        self.correlation = correlation
        self.scene = SceneBuilder(backend)

        self._projection_config = projection
        self._token = 0
        self._closed = False

        self.route: Optional[Route] = None
        self.projection: Optional[ProjectionSession] = None
        self.correlator: Optional[Correlator] = None
        self.playback: Optional[PlaybackController] = None
        self.plan: Optional[BasemapPlan] = None
        self.texture: Optional[Image.Image] = None
        self.selected: Optional[CorrelatedPair] = None
        self._frame_loops: List[FrameLoop] = []

    @property
    def route_token(self) -> int:
        """Incremented on every load_route()."""
        return self._token

    @property
    def points(self) -> List[ProjectedPoint]:
        return self.projection.points if self.projection else []

    def load_route(self, route: Route) -> None:
        """
        Make a route current, replacing any previous one.

        Cancels playback of the previous route, re-projects, rebuilds the
        scene on a flat ground (the basemap arrives via load_basemap) and
        creates a fresh playback controller.
        """
        self._check_open()
        if self.playback is not None:
            self.playback.close()

        self._token += 1
        self.route = route
        self.texture = None
        self.selected = None

        self.projection = ProjectionSession(route, self._projection_config)
        self.projection.subscribe(self._on_reprojected)
        self.correlator = Correlator(route, self.correlation) if not route.is_empty else None
        self.plan = plan_basemap(route)

        self.scene.build_ground(self.plan, None)
        self.scene.build_route(self.projection.points)

        self.playback = PlaybackController(len(route), self.scheduler, self.correlator)
        self.playback.subscribe(self._on_playback)
        self.scene.highlight(self.playback.current_pair, self.projection.points)

        logger.info(f"Loaded route '{route.name}' with {len(route)} waypoints")

    async def load_basemap(self, progress_callback: Optional[ProgressCallback] = None
                           ) -> Optional[Image.Image]:
        """
        Compose the basemap for the current route off the event loop.

        Args:
            progress_callback: Optional callable(done, total), called from the
                worker thread after each tile

        Returns:
            The applied texture, or None if there is nothing to fetch or the
            route changed while the tiles were loading
        """
        self._check_open()
        plan = self.plan
        if plan is None or self.compositor is None:
            return None

        token = self._token
        loop = asyncio.get_running_loop()
        texture = await loop.run_in_executor(
            None, functools.partial(self.compositor.compose, plan.tile_bounds,
                                    progress_callback=progress_callback))

        if token != self._token or self._closed:
            logger.warning("Route changed while the basemap was loading, discarding it")
            return None

        self.texture = texture
        self.scene.build_ground(plan, texture)
        return texture

    def update_projection(self, **changes) -> List[ProjectedPoint]:
        """
        Change projection options and rebuild the route geometry.

        Raises:
            ValueError: If the change is invalid; the previous configuration
                stays in effect
        """
        self._require_route()
        points = self.projection.update(**changes)
        self._projection_config = self.projection.config
        return points

    def reset_projection(self) -> List[ProjectedPoint]:
        self._require_route()
        points = self.projection.reset()
        self._projection_config = self.projection.config
        return points

    def select_point(self, latitude: float, longitude: float) -> CorrelatedPair:
        """
        Inspect the waypoint nearest to a cursor position.

        Raises:
            NoWaypointsError: If the current route is empty
        """
        self._require_route()
        correlator = self.correlator or Correlator(self.route, self.correlation)
        pair = correlator.nearest(latitude, longitude)
        self.selected = pair
        self.scene.highlight(pair, self.projection.points)
        return pair

    def animate(self, on_frame: Callable[[float], None]) -> FrameLoop:
        """Start a frame loop on the session's scheduler; stopped by close()."""
        self._check_open()
        loop = FrameLoop(self.scheduler, on_frame)
        self._frame_loops.append(loop)
        loop.start()
        return loop

    def close(self) -> None:
        """Cancel playback and frame loops. Idempotent."""
        if self.playback is not None:
            self.playback.close()
        for loop in self._frame_loops:
            loop.stop()
        self._frame_loops.clear()
        self._token += 1
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Route session is closed")

    def _require_route(self) -> None:
        self._check_open()
        if self.route is None:
            raise RuntimeError("No route loaded")

    def _on_reprojected(self, points: List[ProjectedPoint], config: ProjectionConfig) -> None:
        self.scene.build_route(points)
        pair = self.selected or (self.playback.current_pair if self.playback else None)
        self.scene.highlight(pair, points)

    def _on_playback(self, snapshot: PlaybackSnapshot, pair: Optional[CorrelatedPair]) -> None:
        self.selected = None
        self.scene.highlight(pair, self.projection.points)
