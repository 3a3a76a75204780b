# =============================================================================
# StreamSentry - Geo & Time Utilities
# =============================================================================
"""
Pure helpers for distance, speed and private-network checks.

Nothing here holds state or performs I/O, so every function is safe to call
from any number of threads.
"""

from __future__ import annotations

import ipaddress
import math
from datetime import datetime, timezone

from streamsentry.engine.models import LocationKind, Session


EARTH_RADIUS_KM = 6371.0

# Address ranges that can never be geolocated. 100.64.0.0/10 (carrier-grade
# NAT) is listed explicitly because ipaddress does not report it as private.
_PRIVATE_NETWORKS = [
    ipaddress.ip_network(cidr)
    for cidr in (
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "100.64.0.0/10",
        "0.0.0.0/8",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
    )
]


def haversine_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Uses the Haversine formula to compute distance in kilometers.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def implied_speed_kmh(distance_km: float, delta_seconds: float) -> float:
    """
    Speed needed to cover ``distance_km`` in ``delta_seconds``.

    A zero or negative interval means the two points were reached at the same
    moment: any movement is then infinitely fast, no movement is 0 km/h.
    """
    if delta_seconds <= 0:
        return math.inf if distance_km > 0 else 0.0
    return distance_km / (delta_seconds / 3600)


def elapsed_seconds(earlier: datetime, later: datetime) -> float:
    """Seconds from ``earlier`` to ``later``; naive timestamps count as UTC."""
    if earlier.tzinfo is None:
        earlier = earlier.replace(tzinfo=timezone.utc)
    if later.tzinfo is None:
        later = later.replace(tzinfo=timezone.utc)
    return (later - earlier).total_seconds()


def is_private_location(session: Session) -> bool:
    """True when the session resolved to a private network, coordinates or not."""
    return session.location_kind == LocationKind.PRIVATE


def is_private_ip(address: str | None) -> bool:
    """
    Check whether an address is non-routable (RFC1918, loopback, link-local,
    CGNAT or IPv6 local ranges).

    Unparseable or missing addresses are reported as not private.
    """
    if not address:
        return False
    try:
        ip = ipaddress.ip_address(address.strip())
    except ValueError:
        return False

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    return any(ip.version == net.version and ip in net for net in _PRIVATE_NETWORKS)


def session_distance_km(a: Session, b: Session) -> float | None:
    """Distance between two sessions, or None if either has no usable fix."""
    first = a.coordinates
    second = b.coordinates
    if first is None or second is None:
        return None
    return haversine_distance(first[0], first[1], second[0], second[1])
