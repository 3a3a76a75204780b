"""Unit tests for geo and time utilities."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from streamsentry.engine.geo import (
    elapsed_seconds,
    haversine_distance,
    implied_speed_kmh,
    is_private_ip,
    is_private_location,
    session_distance_km,
)


NEW_YORK = (40.7128, -74.006)
TOKYO = (35.6762, 139.6503)
LONDON = (51.5074, -0.1278)
PARIS = (48.8566, 2.3522)


class TestHaversineDistance:
    """Great-circle distance."""

    def test_distance_to_self_is_zero(self):
        assert haversine_distance(*NEW_YORK, *NEW_YORK) == 0.0

    @pytest.mark.parametrize("a,b", [
        (NEW_YORK, TOKYO),
        (LONDON, PARIS),
        ((0.0, 179.9), (0.0, -179.9)),
        ((-33.8688, 151.2093), (64.1466, -21.9426)),
    ])
    def test_symmetric(self, a, b):
        assert haversine_distance(*a, *b) == pytest.approx(haversine_distance(*b, *a))

    def test_new_york_to_tokyo(self):
        assert haversine_distance(*NEW_YORK, *TOKYO) == pytest.approx(10850, rel=0.01)

    def test_london_to_paris(self):
        assert haversine_distance(*LONDON, *PARIS) == pytest.approx(344, rel=0.01)

    def test_crossing_antimeridian_is_short(self):
        """Points either side of 180 degrees are close, not half a world apart."""
        assert haversine_distance(0.0, 179.9, 0.0, -179.9) < 25


class TestImpliedSpeed:
    """Speed from distance and elapsed time."""

    def test_one_hour(self):
        assert implied_speed_kmh(500.0, 3600) == pytest.approx(500.0)

    def test_half_hour_doubles_speed(self):
        assert implied_speed_kmh(100.0, 1800) == pytest.approx(200.0)

    def test_zero_interval_with_movement_is_infinite(self):
        assert math.isinf(implied_speed_kmh(10.0, 0))

    def test_negative_interval_with_movement_is_infinite(self):
        assert math.isinf(implied_speed_kmh(10.0, -60))

    def test_zero_interval_without_movement_is_zero(self):
        assert implied_speed_kmh(0.0, 0) == 0.0


class TestElapsedSeconds:

    def test_aware_timestamps(self):
        start = datetime(2026, 1, 25, 12, 0, tzinfo=timezone.utc)
        assert elapsed_seconds(start, start + timedelta(hours=2)) == 7200

    def test_naive_timestamps_are_utc(self):
        naive = datetime(2026, 1, 25, 12, 0)
        aware = datetime(2026, 1, 25, 13, 0, tzinfo=timezone.utc)
        assert elapsed_seconds(naive, aware) == 3600


class TestPrivateChecks:
    """Private location sentinel and private address ranges."""

    def test_sentinel_marks_private(self, make_private_session):
        assert is_private_location(make_private_session())

    def test_sentinel_wins_over_coordinates(self, make_session):
        session = make_session(geoCountry="Local Network", ipAddress="192.168.1.5")
        assert is_private_location(session)
        assert session.coordinates is None

    def test_public_session_not_private(self, make_session):
        assert not is_private_location(make_session())

    @pytest.mark.parametrize("address", [
        "10.1.2.3",
        "172.16.0.1",
        "192.168.1.100",
        "127.0.0.1",
        "169.254.10.10",
        "100.64.0.1",
        "100.127.255.254",
        "::1",
        "fd12:3456:789a::1",
        "fe80::1",
        "::ffff:192.168.1.1",
    ])
    def test_private_addresses(self, address):
        assert is_private_ip(address)

    @pytest.mark.parametrize("address", [
        "203.0.113.50",
        "8.8.8.8",
        "100.128.0.1",
        "2001:4860:4860::8888",
        None,
        "",
        "not-an-ip",
    ])
    def test_public_or_invalid_addresses(self, address):
        assert not is_private_ip(address)


class TestSessionDistance:

    def test_between_public_sessions(self, make_session):
        a = make_session(lat_lon=NEW_YORK)
        b = make_session(lat_lon=TOKYO)
        assert session_distance_km(a, b) == pytest.approx(haversine_distance(*NEW_YORK, *TOKYO))

    def test_private_session_has_no_distance(self, make_session, make_private_session):
        assert session_distance_km(make_session(), make_private_session()) is None
