"""
Tests for zoom selection, tile math and basemap composition.

All tile fetches go through fakes; no network access.
"""

import itertools
from unittest.mock import MagicMock

import numpy as np
import pytest
import requests
from PIL import Image

from constants import COLORS, TILE_SIZE
from route_data.data_models import BoundingBox
from tiles import (
    CompositeJob,
    HttpTileSource,
    TileBounds,
    TileCompositor,
    choose_zoom,
    compute_tile_range,
    latlon_to_tile,
    placeholder_ground,
    plan_basemap,
    tile_to_latlon,
)


def box_with_span(span: float, lat: float = 40.0, lng: float = -105.0) -> BoundingBox:
    return BoundingBox(min_lat=lat, max_lat=lat + span, min_lng=lng, max_lng=lng + span / 2)


def solid_tile(color=(200, 10, 10), size=TILE_SIZE) -> Image.Image:
    return Image.new('RGB', (size, size), color)


class TestChooseZoom:
    """Tests for the zoom step function."""

    @pytest.mark.parametrize("span,zoom", [
        (2.0, 10),
        (0.5, 12),
        (0.05, 14),
        (0.005, 16),
        (0.0001, 18),
        (0.0, 18),
    ])
    def test_steps(self, span, zoom):
        assert choose_zoom(box_with_span(span)) == zoom

    def test_threshold_is_exclusive(self):
        box = BoundingBox(min_lat=0.0, max_lat=1.0, min_lng=0.0, max_lng=0.0)
        assert choose_zoom(box) == 12

    def test_larger_span_never_zooms_in(self):
        spans = [0.0, 0.0005, 0.002, 0.02, 0.2, 2.0, 20.0]
        zooms = [choose_zoom(box_with_span(s)) for s in spans]
        assert zooms == sorted(zooms, reverse=True)


class TestTileMath:
    """Tests for slippy-map tile conversions."""

    def test_origin_tile(self):
        assert latlon_to_tile(0.0, 0.0, 1) == (1, 1)
        assert latlon_to_tile(0.0, -180.0, 0) == (0, 0)

    def test_clamped_at_poles_and_antimeridian(self):
        n = 2 ** 5
        x, y = latlon_to_tile(89.9, 180.0, 5)
        assert x == n - 1
        assert y == 0
        assert latlon_to_tile(-89.9, 0.0, 5)[1] == n - 1

    def test_tile_corner_roundtrip(self):
        lat, lon = tile_to_latlon(300, 400, 10)
        # A point just inside the NW corner belongs to that tile
        assert latlon_to_tile(lat - 1e-7, lon + 1e-7, 10) == (300, 400)

    def test_min_y_from_max_lat(self):
        box = BoundingBox(min_lat=40.0, max_lat=41.0, min_lng=-105.0, max_lng=-104.0)
        bounds = compute_tile_range(box, 10)
        assert bounds.min_y == latlon_to_tile(41.0, -105.0, 10)[1]
        assert bounds.max_y == latlon_to_tile(40.0, -105.0, 10)[1]
        assert bounds.min_y < bounds.max_y

    def test_tiny_box_is_one_tile(self):
        box = BoundingBox(min_lat=40.00001, max_lat=40.00002, min_lng=-105.00002, max_lng=-105.00001)
        bounds = compute_tile_range(box, 12)
        assert bounds.total == 1

    def test_empty_range_rejected(self):
        with pytest.raises(ValueError):
            TileBounds(min_x=2, max_x=1, min_y=0, max_y=0, zoom=3)

    def test_tiles_enumerates_range(self):
        bounds = TileBounds(min_x=1, max_x=2, min_y=5, max_y=7, zoom=4)
        tiles = list(bounds.tiles())
        assert len(tiles) == bounds.total == 6
        assert len(set(tiles)) == 6
        assert all(bounds.contains(x, y) for x, y in tiles)

    def test_tiles_row_major(self):
        bounds = TileBounds(min_x=1, max_x=2, min_y=5, max_y=6, zoom=4)
        assert list(bounds.tiles()) == [(1, 5), (2, 5), (1, 6), (2, 6)]

    def test_extent_covers_box(self):
        box = BoundingBox(min_lat=40.0, max_lat=40.05, min_lng=-105.05, max_lng=-105.0)
        extent = compute_tile_range(box, 12).extent
        assert extent.min_lat <= box.min_lat and extent.max_lat >= box.max_lat
        assert extent.min_lng <= box.min_lng and extent.max_lng >= box.max_lng


class TestPlanBasemap:
    """Tests for basemap planning."""

    def test_empty_route_has_no_plan(self, empty_route):
        assert plan_basemap(empty_route) is None

    def test_zoom_from_route_span(self, out_and_back_route):
        plan = plan_basemap(out_and_back_route)
        # Span is 0.0018 degrees
        assert plan.zoom == 16
        assert plan.padded_bounds.min_lat == pytest.approx(plan.bounds.min_lat - 0.001)

    def test_single_point_route(self, single_point_route):
        plan = plan_basemap(single_point_route)
        assert plan.zoom == 18
        assert plan.bounds.span == 0
        assert plan.tile_bounds.total >= 1

    def test_placeholder_ground(self):
        img = placeholder_ground((8, 8))
        assert img.getpixel((0, 0)) == COLORS.GROUND_GREEN


class TestCompositeJob:
    """Tests for the completion barrier."""

    def test_fires_once_in_any_order_with_failures(self):
        """Every arrival order completes exactly once, failures included."""
        bounds = TileBounds(min_x=0, max_x=1, min_y=0, max_y=1, zoom=1)
        tiles = list(bounds.tiles())
        for order in itertools.permutations(tiles):
            completions = []
            job = CompositeJob(bounds, on_complete=completions.append, tile_size=4)
            results = []
            for i, (x, y) in enumerate(order):
                image = None if i % 2 else solid_tile(size=4)
                results.append(job.tile_done(x, y, image))
            assert completions == [job.canvas]
            assert results == [False, False, False, True]
            assert job.loaded == 2 and job.failed == 2

    def test_duplicates_ignored(self):
        bounds = TileBounds(min_x=0, max_x=1, min_y=0, max_y=0, zoom=1)
        on_complete = MagicMock()
        job = CompositeJob(bounds, on_complete=on_complete, tile_size=4)
        job.tile_done(0, 0, None)
        assert job.tile_done(0, 0, None) is False
        assert job.loaded_or_failed == 1
        assert job.tile_done(1, 0, None) is True
        job.tile_done(1, 0, None)
        on_complete.assert_called_once()

    def test_outside_range_raises(self):
        job = CompositeJob(TileBounds(min_x=0, max_x=0, min_y=0, max_y=0, zoom=1), tile_size=4)
        with pytest.raises(ValueError, match="outside"):
            job.tile_done(5, 5, None)

    def test_tile_placement(self):
        bounds = TileBounds(min_x=10, max_x=11, min_y=20, max_y=20, zoom=5)
        job = CompositeJob(bounds, tile_size=4)
        job.tile_done(11, 20, solid_tile((1, 2, 3), size=4))
        job.tile_done(10, 20, None)
        canvas = np.array(job.canvas)
        assert canvas.shape == (4, 8, 3)
        assert tuple(canvas[0, 5]) == (1, 2, 3)
        assert tuple(canvas[0, 0]) == COLORS.TILE_BLANK

    def test_mismatched_tile_resized(self):
        job = CompositeJob(TileBounds(min_x=0, max_x=0, min_y=0, max_y=0, zoom=1), tile_size=4)
        job.tile_done(0, 0, solid_tile((9, 9, 9), size=16))
        assert job.canvas.size == (4, 4)
        assert job.canvas.getpixel((3, 3)) == (9, 9, 9)


class TestTileCompositor:
    """Tests for concurrent composition with a fake source."""

    def test_compose_all_tiles(self, fake_tile_source):
        bounds = TileBounds(min_x=3, max_x=4, min_y=7, max_y=9, zoom=6)
        on_complete = MagicMock()
        progress = []
        compositor = TileCompositor(fake_tile_source, max_workers=3)

        canvas = compositor.compose(bounds, on_complete=on_complete,
                                    progress_callback=lambda done, total: progress.append((done, total)))

        assert canvas.size == (2 * TILE_SIZE, 3 * TILE_SIZE)
        assert fake_tile_source.fetch.call_count == 6
        on_complete.assert_called_once_with(canvas)
        assert [d for d, _ in progress] == [1, 2, 3, 4, 5, 6]
        assert canvas.getpixel((0, 0)) == (128, 128, 128)

    def test_failed_tiles_leave_blank(self):
        def fetch(z, x, y):
            if x == 1:
                raise requests.ConnectionError("offline")
            return solid_tile(size=8)

        source = MagicMock()
        source.fetch.side_effect = fetch
        bounds = TileBounds(min_x=0, max_x=1, min_y=0, max_y=0, zoom=1)
        on_complete = MagicMock()

        canvas = TileCompositor(source, tile_size=8).compose(bounds, on_complete=on_complete)

        on_complete.assert_called_once()
        assert canvas.getpixel((12, 4)) == COLORS.TILE_BLANK
        assert canvas.getpixel((4, 4)) == (200, 10, 10)

    def test_all_tiles_failing_still_completes(self, caplog):
        source = MagicMock()
        source.fetch.side_effect = OSError("bad image")
        bounds = TileBounds(min_x=0, max_x=0, min_y=0, max_y=1, zoom=1)
        on_complete = MagicMock()

        TileCompositor(source, tile_size=8).compose(bounds, on_complete=on_complete)

        on_complete.assert_called_once()
        assert "Failed to fetch any map tiles" in caplog.text


class TestHttpTileSource:
    """Tests for the HTTP tile source (session mocked)."""

    def test_street_url(self):
        source = HttpTileSource("street", session=MagicMock(headers={}))
        assert source.url(3, 1, 2) == "https://tile.openstreetmap.org/3/1/2.png"

    def test_satellite_url_is_y_then_x(self):
        source = HttpTileSource("satellite", session=MagicMock(headers={}))
        assert source.url(3, 1, 2).endswith("/tile/3/2/1")

    def test_unknown_style(self):
        with pytest.raises(ValueError, match="Unknown map style"):
            HttpTileSource("watercolor", session=MagicMock(headers={}))

    def test_sets_user_agent(self):
        session = MagicMock(headers={})
        HttpTileSource(session=session)
        assert "User-Agent" in session.headers

    def test_fetch_decodes_png(self):
        import io
        buf = io.BytesIO()
        solid_tile((5, 6, 7), size=8).save(buf, format="PNG")
        response = MagicMock(content=buf.getvalue())
        session = MagicMock(headers={})
        session.get.return_value = response

        img = HttpTileSource(session=session, timeout=2).fetch(1, 0, 0)

        response.raise_for_status.assert_called_once()
        session.get.assert_called_once_with("https://tile.openstreetmap.org/1/0/0.png", timeout=2)
        assert img.getpixel((0, 0)) == (5, 6, 7)

    def test_http_error_propagates(self):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("404")
        session = MagicMock(headers={})
        session.get.return_value = response
        with pytest.raises(requests.HTTPError):
            HttpTileSource(session=session).fetch(1, 0, 0)
