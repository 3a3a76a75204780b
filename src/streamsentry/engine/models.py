# =============================================================================
# StreamSentry - Rule Engine Data Models
# =============================================================================
"""
Pydantic models for playback sessions, detection rules and evaluation results.

Boundary payloads use camelCase keys (``serverUserId``, ``geoLat`` ...) while
Python code uses snake_case attributes; both are accepted on input and models
serialize by alias.

Rule parameters are decoded into one concrete model per rule type when the
rule is built, so evaluation never has to inspect a loose parameter bag.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from loguru import logger
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


# Written into geoCountry by the geo lookup for RFC1918/loopback/CGNAT addresses
PRIVATE_LOCATION_SENTINEL = "Local Network"


# =============================================================================
# Enums
# =============================================================================

class SessionState(str, Enum):
    """Playback state reported by the media server."""

    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


class LocationKind(str, Enum):
    """How a session's location was resolved upstream."""

    PUBLIC = "public"
    PRIVATE = "private"
    UNRESOLVED = "unresolved"


class RuleType(str, Enum):
    """Detection rule kinds understood by the engine."""

    IMPOSSIBLE_TRAVEL = "impossible_travel"
    SIMULTANEOUS_LOCATIONS = "simultaneous_locations"
    DEVICE_VELOCITY = "device_velocity"
    CONCURRENT_STREAMS = "concurrent_streams"
    GEO_RESTRICTION = "geo_restriction"


class ViolationSeverity(str, Enum):
    """Severity attached to a violated rule."""

    LOW = "low"
    WARNING = "warning"
    HIGH = "high"


class GeoRestrictionMode(str, Enum):
    """Whether the configured countries are blocked or the only ones allowed."""

    BLOCKLIST = "blocklist"
    ALLOWLIST = "allowlist"


SEVERITY_BY_RULE_TYPE: dict[RuleType, ViolationSeverity] = {
    RuleType.IMPOSSIBLE_TRAVEL: ViolationSeverity.HIGH,
    RuleType.SIMULTANEOUS_LOCATIONS: ViolationSeverity.WARNING,
    RuleType.DEVICE_VELOCITY: ViolationSeverity.WARNING,
    RuleType.CONCURRENT_STREAMS: ViolationSeverity.LOW,
    RuleType.GEO_RESTRICTION: ViolationSeverity.HIGH,
}

TRUST_PENALTY_BY_SEVERITY: dict[ViolationSeverity, int] = {
    ViolationSeverity.HIGH: 20,
    ViolationSeverity.WARNING: 10,
    ViolationSeverity.LOW: 5,
}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC so sessions from any source compare cleanly."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _pick(data: dict, name: str) -> Any:
    """Read a field from raw input under either its snake_case or camelCase key."""
    if name in data:
        return data[name]
    return data.get(to_camel(name))


# =============================================================================
# Session
# =============================================================================

class Session(BaseModel):
    """
    Snapshot of one playback session.

    Sessions are owned by the caller and read-only to the engine. The
    ``location_kind`` field is derived on construction when the upstream
    geo resolution did not supply it; the private sentinel always wins over
    coordinates.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    # Identity
    id: str
    server_user_id: str
    device_id: Optional[str] = None

    # Temporal
    state: SessionState = SessionState.PLAYING
    started_at: datetime
    stopped_at: Optional[datetime] = None

    # Network / location
    ip_address: Optional[str] = None
    geo_city: Optional[str] = None
    geo_region: Optional[str] = None
    geo_country: Optional[str] = None
    geo_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    geo_lon: Optional[float] = Field(default=None, ge=-180, le=180)
    location_kind: LocationKind = LocationKind.UNRESOLVED

    @model_validator(mode="before")
    @classmethod
    def derive_location_kind(cls, data: Any) -> Any:
        """Classify the location once, at the boundary."""
        if not isinstance(data, dict):
            return data

        country = _pick(data, "geo_country")
        has_coordinates = (
            _pick(data, "geo_lat") is not None and _pick(data, "geo_lon") is not None
        )
        supplied = _pick(data, "location_kind")

        if country == PRIVATE_LOCATION_SENTINEL:
            if has_coordinates:
                logger.warning(
                    f"Session {_pick(data, 'id')} is marked '{PRIVATE_LOCATION_SENTINEL}' "
                    f"but carries coordinates; treating it as private"
                )
            kind = LocationKind.PRIVATE
        elif supplied is not None:
            return data
        elif has_coordinates:
            kind = LocationKind.PUBLIC
        else:
            kind = LocationKind.UNRESOLVED

        data = dict(data)
        data.pop("locationKind", None)
        data["location_kind"] = kind
        return data

    @field_validator("started_at", "stopped_at")
    @classmethod
    def normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @property
    def is_active(self) -> bool:
        """Still streaming: not stopped by state nor by a stop timestamp."""
        return self.state != SessionState.STOPPED and self.stopped_at is None

    @property
    def is_private(self) -> bool:
        return self.location_kind == LocationKind.PRIVATE

    @property
    def coordinates(self) -> tuple[float, float] | None:
        """(lat, lon) for public sessions with a full fix, otherwise None."""
        if self.location_kind != LocationKind.PUBLIC:
            return None
        if self.geo_lat is None or self.geo_lon is None:
            return None
        return self.geo_lat, self.geo_lon

    @property
    def location_label(self) -> str:
        """Human-readable location used in violation evidence."""
        if self.is_private:
            return PRIVATE_LOCATION_SENTINEL
        parts = [p for p in (self.geo_city, self.geo_region, self.geo_country) if p]
        return ", ".join(parts) if parts else "Unknown"


# =============================================================================
# Rule Parameters
# =============================================================================

class _RuleParams(BaseModel):
    """Common configuration for per-type parameter models."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class ImpossibleTravelParams(_RuleParams):
    max_speed_kmh: float = Field(default=500.0, gt=0)
    exclude_private_ips: bool = False
    # Accepted for compatibility with stored rules, not evaluated
    ignore_vpn_ranges: Optional[bool] = None


class SimultaneousLocationsParams(_RuleParams):
    min_distance_km: float = Field(default=100.0, gt=0)
    exclude_private_ips: bool = False


class DeviceVelocityParams(_RuleParams):
    max_ips: int = Field(default=5, gt=0)
    window_hours: int = Field(default=24, gt=0)
    exclude_private_ips: bool = False


class ConcurrentStreamsParams(_RuleParams):
    max_streams: int = Field(default=3, gt=0)
    exclude_private_ips: bool = False


class GeoRestrictionParams(_RuleParams):
    mode: GeoRestrictionMode = GeoRestrictionMode.BLOCKLIST
    countries: list[str] = Field(default_factory=list)

    @field_validator("countries")
    @classmethod
    def validate_countries(cls, v: list[str]) -> list[str]:
        """Normalize to upper-case ISO-3166 alpha-2 codes."""
        codes = []
        for code in v:
            code = code.strip().upper()
            if len(code) != 2 or not code.isalpha():
                raise ValueError(f"'{code}' is not an ISO-3166 alpha-2 country code")
            codes.append(code)
        return codes


RuleParams = (
    ImpossibleTravelParams
    | SimultaneousLocationsParams
    | DeviceVelocityParams
    | ConcurrentStreamsParams
    | GeoRestrictionParams
)

PARAMS_BY_RULE_TYPE: dict[RuleType, type[_RuleParams]] = {
    RuleType.IMPOSSIBLE_TRAVEL: ImpossibleTravelParams,
    RuleType.SIMULTANEOUS_LOCATIONS: SimultaneousLocationsParams,
    RuleType.DEVICE_VELOCITY: DeviceVelocityParams,
    RuleType.CONCURRENT_STREAMS: ConcurrentStreamsParams,
    RuleType.GEO_RESTRICTION: GeoRestrictionParams,
}


# =============================================================================
# Rule
# =============================================================================

class Rule(BaseModel):
    """
    A configured detection policy.

    ``type`` stays a plain string so rules for kinds this version does not
    know about can still be loaded; such rules have ``rule_type`` None and
    are skipped by the engine. ``config`` holds the decoded parameters, or
    None when the rule cannot be evaluated.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    id: str
    name: Optional[str] = None
    type: str
    params: dict[str, Any] = Field(default_factory=dict)
    server_user_id: Optional[str] = None
    is_active: bool = True
    exclude_private_ips: bool = False

    _config: Optional[RuleParams] = PrivateAttr(default=None)

    def model_post_init(self, __context: Any) -> None:
        rule_type = self.rule_type
        if rule_type is None:
            logger.debug(f"Rule {self.id} has unsupported type '{self.type}'")
            return

        try:
            self._config = PARAMS_BY_RULE_TYPE[rule_type].model_validate(self.params)
        except ValidationError as e:
            logger.warning(
                f"Rule {self.id} ({self.type}) has invalid params and will not "
                f"be evaluated: {e.error_count()} error(s): {e.errors()[0]['msg']}"
            )
            self._config = None

    @property
    def rule_type(self) -> RuleType | None:
        try:
            return RuleType(self.type)
        except ValueError:
            return None

    @property
    def config(self) -> RuleParams | None:
        """Decoded parameters, or None for unknown types and invalid params."""
        return self._config

    @property
    def excludes_private_ips(self) -> bool:
        """Effective private-address exclusion (rule flag or params flag)."""
        if self.rule_type == RuleType.GEO_RESTRICTION:
            return False
        return self.exclude_private_ips or bool(
            getattr(self._config, "exclude_private_ips", False)
        )

    def applies_to(self, server_user_id: str) -> bool:
        """Global rules apply to everyone, scoped rules to their own user."""
        return self.server_user_id is None or self.server_user_id == server_user_id


# =============================================================================
# Evaluation Result
# =============================================================================

class RuleEvaluationResult(BaseModel):
    """Outcome of evaluating one rule against one triggering session."""

    model_config = ConfigDict(frozen=True)

    rule: Rule
    violated: bool
    severity: ViolationSeverity
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def trust_penalty(self) -> int:
        """Trust-score deduction the caller may apply for a violation."""
        if not self.violated:
            return 0
        return TRUST_PENALTY_BY_SEVERITY[self.severity]
