"""Shared fixtures for StreamSentry tests."""

import itertools
from datetime import datetime, timezone

import pytest

from streamsentry.engine.models import Rule, Session


BASE_TIME = datetime(2026, 1, 25, 12, 0, 0, tzinfo=timezone.utc)

NEW_YORK = (40.7128, -74.006)
LOS_ANGELES = (34.0522, -118.2437)
LONDON = (51.5074, -0.1278)
TOKYO = (35.6762, 139.6503)


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def make_session():
    """Factory for public sessions; overrides use boundary (camelCase) keys."""
    counter = itertools.count(1)

    def _make(lat_lon=NEW_YORK, **overrides) -> Session:
        data = {
            "id": f"session-{next(counter)}",
            "serverUserId": "user-123",
            "deviceId": None,
            "state": "playing",
            "startedAt": BASE_TIME,
            "stoppedAt": None,
            "ipAddress": "203.0.113.50",
            "geoCity": "Test City",
            "geoRegion": "Test Region",
            "geoCountry": "US",
            "geoLat": lat_lon[0] if lat_lon else None,
            "geoLon": lat_lon[1] if lat_lon else None,
        }
        data.update(overrides)
        return Session.model_validate(data)

    return _make


@pytest.fixture
def make_private_session(make_session):
    """Factory for sessions the geo lookup marked as local network."""

    def _make(**overrides) -> Session:
        data = {
            "ipAddress": "192.168.1.100",
            "geoCity": None,
            "geoRegion": None,
            "geoCountry": "Local Network",
        }
        data.update(overrides)
        return make_session(lat_lon=None, **data)

    return _make


@pytest.fixture
def make_rule():
    """Factory for rules of a given type."""
    counter = itertools.count(1)

    def _make(rule_type: str, params: dict | None = None, **overrides) -> Rule:
        data = {
            "id": f"rule-{next(counter)}",
            "name": f"{rule_type} rule",
            "type": rule_type,
            "params": params or {},
            "serverUserId": None,
            "isActive": True,
        }
        data.update(overrides)
        return Rule.model_validate(data)

    return _make
