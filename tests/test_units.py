"""
Tests for unit conversions, bearing helpers and distance metrics.
"""

import math

import pytest

from units import (
    UnitPreferences,
    angular_difference,
    bearing_arrow,
    bearing_label,
    compass_bucket,
    feet_to_meters,
    haversine_distance_m,
    meters_to_feet,
    meters_to_miles,
    mph_to_mps,
    mps_to_mph,
    normalize_bearing,
    planar_distance_m,
    seconds_to_minutes,
)


class TestConversions:
    """Tests for scalar unit conversions."""

    def test_mps_to_mph(self):
        assert mps_to_mph(1.0) == pytest.approx(2.23694)

    def test_speed_roundtrip(self):
        assert mph_to_mps(mps_to_mph(4.2)) == pytest.approx(4.2)

    def test_meters_to_feet(self):
        assert meters_to_feet(1000.0) == pytest.approx(3280.84)
        assert feet_to_meters(3.28084) == pytest.approx(1.0)

    def test_meters_to_miles(self):
        assert meters_to_miles(1609.344) == pytest.approx(1.0)

    def test_seconds_to_minutes(self):
        assert seconds_to_minutes(90) == 1.5


class TestBearings:
    """Tests for bearing normalization and compass buckets."""

    @pytest.mark.parametrize("bearing,expected", [
        (0, 0), (360, 0), (-1, 359), (725, 5), (-360, 0),
    ])
    def test_normalize(self, bearing, expected):
        assert normalize_bearing(bearing) == pytest.approx(expected)

    def test_normalize_tiny_negative_stays_in_range(self):
        """Rounding must not produce exactly 360."""
        assert 0 <= normalize_bearing(-1e-20) < 360

    @pytest.mark.parametrize("a,b,expected", [
        (0, 180, 180), (350, 10, 20), (10, 350, 20), (90, 90, 0), (0, 270, 90),
    ])
    def test_angular_difference_wraps(self, a, b, expected):
        assert angular_difference(a, b) == pytest.approx(expected)

    @pytest.mark.parametrize("bearing,expected", [
        (0, "N"), (22, "N"), (23, "NE"), (90, "E"), (180, "S"), (225, "SW"), (337.6, "N"), (-45, "NW"),
    ])
    def test_compass_8(self, bearing, expected):
        assert compass_bucket(bearing) == expected

    def test_compass_16(self):
        assert compass_bucket(22.5, points=16) == "NNE"
        assert compass_bucket(0, points=16) == "N"

    def test_unsupported_rose_raises(self):
        with pytest.raises(ValueError, match="Unsupported"):
            compass_bucket(10, points=4)

    def test_label_and_arrow(self):
        assert bearing_label(45) == "North-East"
        assert bearing_label(200) == "South"
        assert bearing_arrow(90) == "➡️"


class TestDistances:
    """Tests for distance metrics."""

    def test_zero_distance(self):
        assert haversine_distance_m(40, -105, 40, -105) == 0
        assert planar_distance_m(40, -105, 40, -105) == 0

    def test_one_degree_latitude(self):
        """One degree of latitude is ~111 km."""
        assert haversine_distance_m(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)

    def test_planar_matches_haversine_locally(self):
        """At workout scale the two metrics agree closely."""
        h = haversine_distance_m(40.0, -105.0, 40.001, -105.001)
        p = planar_distance_m(40.0, -105.0, 40.001, -105.001)
        assert p == pytest.approx(h, rel=1e-3)

    def test_longitude_shrinks_with_latitude(self):
        equator = planar_distance_m(0, 0, 0, 0.001)
        north = planar_distance_m(60, 0, 60, 0.001)
        assert north == pytest.approx(equator / 2, rel=1e-2)


class TestUnitPreferences:
    """Tests for display unit formatting."""

    def test_defaults_are_imperial(self):
        prefs = UnitPreferences()
        assert prefs.format_speed(1.0) == "2.2 mph"
        assert prefs.format_altitude(100.0) == "328 ft"

    def test_metric(self):
        prefs = UnitPreferences(altitude="meters", speed="mps")
        assert prefs.format_speed(3.0) == "3.0 m/s"
        assert prefs.format_altitude(1600.4) == "1600 m"

    def test_missing_values_show_na(self):
        prefs = UnitPreferences()
        assert prefs.format_altitude(None) == "N/A"
        assert prefs.format_speed(math.nan) == "N/A"

    def test_invalid_unit_raises(self):
        with pytest.raises(ValueError, match="altitude"):
            UnitPreferences(altitude="furlongs")
        with pytest.raises(ValueError, match="speed"):
            UnitPreferences(speed="knots")
