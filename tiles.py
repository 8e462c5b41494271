"""
Basemap tile compositor for workout routes.

Chooses a zoom level for a route's bounding box, computes the covering
slippy-map tile range, and stitches the fetched tiles into one composite
image used as the ground texture.

Key design principles:
- Tile Y grows southward while latitude grows northward, so the minimum
  tile row comes from the maximum latitude
- A failed tile leaves its region blank; the composite still completes once
  every tile has either loaded or failed
- Completion fires exactly once, whatever order the fetches finish in
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from io import BytesIO
from typing import Callable, Iterator, Optional, Tuple

import requests
from PIL import Image

from constants import (
    COLORS,
    TILE_SIZE, TILE_PADDING_DEG, TILE_FETCH_TIMEOUT, TILE_MAX_WORKERS,
    TILE_USER_AGENT, TILE_URL_TEMPLATES, MERCATOR_MAX_LAT,
    ZOOM_STEPS, ZOOM_MAX,
)
from route_data.data_models import BoundingBox, Route

logger = logging.getLogger(__name__)


def choose_zoom(bbox: BoundingBox) -> int:
    """Pick a zoom level from the larger span of a bounding box.

    A coarse monotonic step function; exact threshold values resolve to the
    coarser zoom because comparisons are strict.
    """
    span = bbox.span
    for threshold, zoom in ZOOM_STEPS:
        if span > threshold:
            return zoom
    return ZOOM_MAX


def pad_bounds(bbox: BoundingBox, pad: float = TILE_PADDING_DEG) -> BoundingBox:
    """Grow a bounding box so routes hugging its edge are not clipped."""
    return bbox.padded(pad)


def latlon_to_tile(lat: float, lon: float, zoom: int) -> Tuple[int, int]:
    """Convert lat/lon to tile coordinates at given zoom level.

    Returns (tile_x, tile_y) - integer tile coordinates in the global grid,
    clamped to the valid range for the zoom level.
    """
    n = 2 ** zoom
    lat = max(-MERCATOR_MAX_LAT, min(MERCATOR_MAX_LAT, lat))
    lat_rad = math.radians(lat)

    tile_x = math.floor((lon + 180.0) / 360.0 * n)
    tile_y = math.floor((1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * n)

    tile_x = max(0, min(n - 1, tile_x))
    tile_y = max(0, min(n - 1, tile_y))
    return tile_x, tile_y


def tile_to_latlon(tile_x: int, tile_y: int, zoom: int) -> Tuple[float, float]:
    """Convert tile coordinates to lat/lon of the tile's NW corner."""
    n = 2 ** zoom
    lon = tile_x / n * 360.0 - 180.0
    lat_rad = math.atan(math.sinh(math.pi * (1 - 2 * tile_y / n)))
    return math.degrees(lat_rad), lon


@dataclass(frozen=True)
class TileBounds:
    """Inclusive rectangular tile range at one zoom level."""
    min_x: int
    max_x: int
    min_y: int
    max_y: int
    zoom: int

    def __post_init__(self):
        if self.min_x > self.max_x or self.min_y > self.max_y:
            raise ValueError(f"Empty tile range: {self}")

    @property
    def cols(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def rows(self) -> int:
        return self.max_y - self.min_y + 1

    @property
    def total(self) -> int:
        return self.cols * self.rows

    def contains(self, x: int, y: int) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def tiles(self) -> Iterator[Tuple[int, int]]:
        """Every (x, y) in the range, row by row from the north-west corner."""
        for y in range(self.min_y, self.max_y + 1):
            for x in range(self.min_x, self.max_x + 1):
                yield x, y

    @property
    def origin(self) -> Tuple[float, float]:
        """Lat/lon of the NW corner of the composite."""
        return tile_to_latlon(self.min_x, self.min_y, self.zoom)

    @property
    def extent(self) -> BoundingBox:
        """Geographic area covered by the composite image."""
        north, west = tile_to_latlon(self.min_x, self.min_y, self.zoom)
        south, east = tile_to_latlon(self.max_x + 1, self.max_y + 1, self.zoom)
        return BoundingBox(min_lat=south, max_lat=north, min_lng=west, max_lng=east)


def compute_tile_range(bbox: BoundingBox, zoom: int) -> TileBounds:
    """Tile range covering a bounding box.

    Because tile Y increases southward, min_y is computed from max_lat and
    max_y from min_lat. The result always spans at least one tile.
    """
    min_x, min_y = latlon_to_tile(bbox.max_lat, bbox.min_lng, zoom)
    max_x, max_y = latlon_to_tile(bbox.min_lat, bbox.max_lng, zoom)
    return TileBounds(min_x=min_x, max_x=max_x, min_y=min_y, max_y=max_y, zoom=zoom)


@dataclass(frozen=True)
class BasemapPlan:
    """Tiling decision for a route.

    Attributes:
        bounds: Route bounding box
        padded_bounds: Bounding box the tile range was computed from
        zoom: Chosen zoom level
        tile_bounds: Tiles to fetch
    """
    bounds: BoundingBox
    padded_bounds: BoundingBox
    zoom: int
    tile_bounds: TileBounds


def plan_basemap(route: Route, pad: float = TILE_PADDING_DEG) -> Optional[BasemapPlan]:
    """Decide zoom and tile range for a route.

    Returns None for an empty route; the caller then uses a flat placeholder
    ground instead of tiles.
    """
    bounds = route.bounding_box
    if bounds is None:
        logger.info("Route has no waypoints, using placeholder ground")
        return None

    zoom = choose_zoom(bounds)
    padded = pad_bounds(bounds, pad)
    tile_bounds = compute_tile_range(padded, zoom)
    logger.debug(
        f"Basemap zoom {zoom}: tiles x {tile_bounds.min_x}-{tile_bounds.max_x}, "
        f"y {tile_bounds.min_y}-{tile_bounds.max_y} ({tile_bounds.total} tiles)"
    )
    return BasemapPlan(bounds=bounds, padded_bounds=padded, zoom=zoom, tile_bounds=tile_bounds)


def placeholder_ground(size: Tuple[int, int] = (TILE_SIZE, TILE_SIZE)) -> Image.Image:
    """Flat ground image used when no tiles are available."""
    return Image.new('RGB', size, COLORS.GROUND_GREEN)


class HttpTileSource:
    """Fetches raster tiles addressed by {z}/{x}/{y}.

    Args:
        style: "street" (OpenStreetMap) or "satellite" (ArcGIS imagery)
        url_template: Custom template with {z}, {x} and {y} fields; overrides style
        timeout: Seconds to wait per request
        session: Optional requests.Session to reuse
    """

    def __init__(self, style: str = "street", url_template: Optional[str] = None,
                 timeout: float = TILE_FETCH_TIMEOUT,
                 session: Optional[requests.Session] = None):
        if url_template is None:
            if style not in TILE_URL_TEMPLATES:
                raise ValueError(
                    f"Unknown map style: {style}. Use one of: {', '.join(sorted(TILE_URL_TEMPLATES))}"
                )
            url_template = TILE_URL_TEMPLATES[style]
        self.style = style
        self.url_template = url_template
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", TILE_USER_AGENT)

    def url(self, z: int, x: int, y: int) -> str:
        return self.url_template.format(z=z, x=x, y=y)

    def fetch(self, z: int, x: int, y: int) -> Image.Image:
        """Fetch one tile.

        Raises:
            requests.RequestException: On network or HTTP errors
            OSError: If the response is not a decodable image
        """
        resp = self._session.get(self.url(z, x, y), timeout=self.timeout)
        resp.raise_for_status()
        return Image.open(BytesIO(resp.content)).convert('RGB')

    def close(self) -> None:
        self._session.close()


CompositeCallback = Callable[[Image.Image], None]


class CompositeJob:
    """
    Completion barrier for one composite image.

    Counts tiles that have loaded or failed; when the count reaches the
    total, the completion callback fires exactly once. Reports may arrive in
    any order and duplicates are ignored.

    Args:
        bounds: Tile range being composed
        on_complete: Called with the finished canvas
        tile_size: Tile edge in pixels
    """

    def __init__(self, bounds: TileBounds, on_complete: Optional[CompositeCallback] = None,
                 tile_size: int = TILE_SIZE):
        self.bounds = bounds
        self.tile_size = tile_size
        self.canvas = Image.new('RGB', (bounds.cols * tile_size, bounds.rows * tile_size),
                                COLORS.TILE_BLANK)
        self._on_complete = on_complete
        self._reported: set = set()
        self._completed = False
        self.loaded = 0
        self.failed = 0

    @property
    def loaded_or_failed(self) -> int:
        return len(self._reported)

    @property
    def is_complete(self) -> bool:
        return self._completed

    def tile_done(self, x: int, y: int, image: Optional[Image.Image]) -> bool:
        """
        Record the outcome of one tile fetch.

        Args:
            x, y: Tile coordinates within the job's range
            image: Tile image, or None if the fetch failed

        Returns:
            True if this report completed the composite
        """
        if not self.bounds.contains(x, y):
            raise ValueError(f"Tile {x}/{y} is outside the composite range")
        key = (x, y)
        if key in self._reported:
            logger.debug(f"Ignoring duplicate report for tile {x}/{y}")
            return False
        self._reported.add(key)

        if image is not None:
            if image.size != (self.tile_size, self.tile_size):
                image = image.resize((self.tile_size, self.tile_size))
            px = (x - self.bounds.min_x) * self.tile_size
            py = (y - self.bounds.min_y) * self.tile_size
            self.canvas.paste(image, (px, py))
            self.loaded += 1
        else:
            self.failed += 1

        if self.loaded_or_failed == self.bounds.total and not self._completed:
            self._completed = True
            if self.loaded == 0:
                logger.warning("Failed to fetch any map tiles, basemap will be blank")
            elif self.failed:
                logger.warning(f"{self.failed} of {self.bounds.total} map tiles failed to load")
            if self._on_complete is not None:
                self._on_complete(self.canvas)
            return True
        return False


ProgressCallback = Callable[[int, int], None]


class TileCompositor:
    """Fetches a tile range concurrently and stitches it into one image.

    Fetches run on a thread pool; results are collected on the calling
    thread, so the composite canvas is only touched from one thread.

    Args:
        source: Object with fetch(z, x, y) -> PIL.Image (default: OSM street tiles)
        max_workers: Maximum concurrent fetches
        tile_size: Tile edge in pixels
    """

    def __init__(self, source=None, max_workers: int = TILE_MAX_WORKERS,
                 tile_size: int = TILE_SIZE):
        self.source = source if source is not None else HttpTileSource()
        self.max_workers = max_workers
        self.tile_size = tile_size

    def _fetch(self, zoom: int, x: int, y: int) -> Tuple[int, int, Optional[Image.Image]]:
        try:
            return x, y, self.source.fetch(zoom, x, y)
        except Exception as e:
            logger.debug(f"Failed to fetch tile {zoom}/{x}/{y}: {e}")
            return x, y, None

    def compose(self, bounds: TileBounds, on_complete: Optional[CompositeCallback] = None,
                progress_callback: Optional[ProgressCallback] = None) -> Image.Image:
        """
        Build the composite for a tile range.

        Waits until every tile has loaded or failed; individual failures leave
        blank regions rather than aborting.

        Args:
            bounds: Tile range to compose
            on_complete: Called once with the finished canvas
            progress_callback: Optional callable(done, total) after each tile

        Returns:
            Composite image of cols*tile_size by rows*tile_size pixels
        """
        job = CompositeJob(bounds, on_complete=on_complete, tile_size=self.tile_size)
        workers = max(1, min(self.max_workers, bounds.total))

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self._fetch, bounds.zoom, x, y) for x, y in bounds.tiles()]
            for future in as_completed(futures):
                x, y, image = future.result()
                job.tile_done(x, y, image)
                if progress_callback:
                    progress_callback(job.loaded_or_failed, bounds.total)

        logger.info(f"Composed basemap from {job.loaded}/{bounds.total} tiles at zoom {bounds.zoom}")
        return job.canvas
