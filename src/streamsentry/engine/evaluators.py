# =============================================================================
# StreamSentry - Rule Evaluators
# =============================================================================
"""
One pure function per rule type.

Every evaluator takes the triggering session, its decoded parameters, the
context sessions supplied by the caller and the effective private-address
exclusion flag, and returns an ``Evaluation``: whether the rule is breached
plus the evidence payload shown to users.

Evidence keys are camelCase because dashboards and notification formatters
read them verbatim.

Missing context is never a violation: with nothing to compare against there
is no evidence of sharing.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Sequence

from streamsentry.engine.geo import (
    elapsed_seconds,
    implied_speed_kmh,
    is_private_location,
    session_distance_km,
)
from streamsentry.engine.models import (
    ConcurrentStreamsParams,
    DeviceVelocityParams,
    GeoRestrictionMode,
    GeoRestrictionParams,
    ImpossibleTravelParams,
    Session,
    SimultaneousLocationsParams,
)


@dataclass(frozen=True)
class Evaluation:
    """Decision and evidence produced by a single evaluator."""

    violated: bool
    data: dict[str, Any] = field(default_factory=dict)


def _others(session: Session, context: Sequence[Session]) -> list[Session]:
    """Context sessions other than the trigger, de-duplicated by id."""
    seen: set[str] = {session.id}
    others = []
    for candidate in context:
        if candidate.id in seen:
            continue
        seen.add(candidate.id)
        others.append(candidate)
    return others


def _same_device(a: Session, b: Session) -> bool:
    return a.device_id is not None and a.device_id == b.device_id


# =============================================================================
# Impossible Travel
# =============================================================================

def evaluate_impossible_travel(
    session: Session,
    params: ImpossibleTravelParams,
    context: Sequence[Session],
    exclude_private_ips: bool = False,
) -> Evaluation:
    """
    Flag movement between the previous session and this one that would need
    a speed above ``max_speed_kmh``.

    The previous session is the most recent earlier session from another
    device. When private addresses are excluded and either end of the trip is
    private the check is skipped.
    """
    if exclude_private_ips and is_private_location(session):
        return Evaluation(False, {"reason": "private_location"})

    prior = sorted(
        (
            s for s in _others(session, context)
            if not _same_device(s, session) and s.started_at <= session.started_at
        ),
        key=lambda s: s.started_at,
        reverse=True,
    )
    if not prior:
        return Evaluation(False, {"reason": "no_previous_session"})

    if exclude_private_ips and is_private_location(prior[0]):
        return Evaluation(False, {"reason": "private_location"})

    if session.coordinates is None:
        return Evaluation(False, {"reason": "no_location"})

    previous = next((s for s in prior if s.coordinates is not None), None)
    if previous is None:
        return Evaluation(False, {"reason": "no_previous_location"})

    distance_km = session_distance_km(previous, session)
    delta_seconds = elapsed_seconds(previous.started_at, session.started_at)
    speed_kmh = implied_speed_kmh(distance_km, delta_seconds)

    violated = speed_kmh > params.max_speed_kmh

    return Evaluation(violated, {
        "fromCity": previous.geo_city,
        "toCity": session.geo_city,
        "fromLocation": previous.location_label,
        "toLocation": session.location_label,
        "distanceKm": round(distance_km, 2),
        "timeDiffHours": round(max(delta_seconds, 0.0) / 3600, 4),
        "calculatedSpeedKmh": None if math.isinf(speed_kmh) else round(speed_kmh, 2),
        "maxSpeedKmh": params.max_speed_kmh,
        "previousSessionId": previous.id,
    })


# =============================================================================
# Simultaneous Locations
# =============================================================================

def evaluate_simultaneous_locations(
    session: Session,
    params: SimultaneousLocationsParams,
    context: Sequence[Session],
    exclude_private_ips: bool = False,
) -> Evaluation:
    """Flag another active session streaming more than ``min_distance_km`` away."""
    if exclude_private_ips and is_private_location(session):
        return Evaluation(False, {"reason": "private_location"})
    if session.coordinates is None:
        return Evaluation(False, {"reason": "no_location"})

    active = [
        s for s in _others(session, context)
        if s.is_active and not (exclude_private_ips and is_private_location(s))
    ]

    conflicts: list[tuple[Session, float]] = []
    for other in active:
        distance_km = session_distance_km(session, other)
        if distance_km is not None and distance_km > params.min_distance_km:
            conflicts.append((other, distance_km))

    if not conflicts:
        return Evaluation(False, {
            "locationCount": 1,
            "minDistanceKm": params.min_distance_km,
        })

    conflicts.sort(key=lambda pair: pair[1], reverse=True)
    # One entry per session, so labels may repeat
    locations = [session.location_label] + [other.location_label for other, _ in conflicts]

    return Evaluation(True, {
        "locations": locations,
        "locationCount": len(locations),
        "distanceKm": round(conflicts[0][1], 2),
        "minDistanceKm": params.min_distance_km,
        "conflictingSessionIds": [other.id for other, _ in conflicts],
    })


# =============================================================================
# Device Velocity
# =============================================================================

def evaluate_device_velocity(
    session: Session,
    params: DeviceVelocityParams,
    context: Sequence[Session],
    exclude_private_ips: bool = False,
) -> Evaluation:
    """Flag more than ``max_ips`` distinct addresses within the lookback window."""
    window_start = session.started_at - timedelta(hours=params.window_hours)

    in_window = [session] + [
        s for s in _others(session, context)
        if window_start <= s.started_at <= session.started_at
    ]

    ips: list[str] = []
    for s in in_window:
        if exclude_private_ips and is_private_location(s):
            continue
        if s.ip_address and s.ip_address not in ips:
            ips.append(s.ip_address)

    return Evaluation(len(ips) > params.max_ips, {
        "ipCount": len(ips),
        "maxIps": params.max_ips,
        "windowHours": params.window_hours,
        "ips": ips,
    })


# =============================================================================
# Concurrent Streams
# =============================================================================

def evaluate_concurrent_streams(
    session: Session,
    params: ConcurrentStreamsParams,
    context: Sequence[Session],
    exclude_private_ips: bool = False,
) -> Evaluation:
    """Flag more than ``max_streams`` active sessions, the trigger included."""
    streams = [session] + [s for s in _others(session, context) if s.is_active]
    if exclude_private_ips:
        streams = [s for s in streams if not is_private_location(s)]

    return Evaluation(len(streams) > params.max_streams, {
        "activeStreamCount": len(streams),
        "maxStreams": params.max_streams,
        "sessionIds": [s.id for s in streams],
    })


# =============================================================================
# Geo Restriction
# =============================================================================

def evaluate_geo_restriction(
    session: Session,
    params: GeoRestrictionParams,
    context: Sequence[Session],
    exclude_private_ips: bool = False,
) -> Evaluation:
    """
    Flag a country on the blocklist, or one missing from the allowlist.

    Private and unresolved locations never violate: there is no country to
    judge. ``context`` and ``exclude_private_ips`` are unused.
    """
    country = (session.geo_country or "").strip().upper()
    if is_private_location(session) or not country:
        return Evaluation(False, {
            "country": None,
            "mode": params.mode.value,
            "countries": params.countries,
        })

    data: dict[str, Any] = {
        "country": country,
        "mode": params.mode.value,
        "countries": params.countries,
    }

    if params.mode == GeoRestrictionMode.ALLOWLIST:
        return Evaluation(country not in params.countries, data)

    violated = country in params.countries
    if violated:
        data["blockedCountry"] = country
    return Evaluation(violated, data)
