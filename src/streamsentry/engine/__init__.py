"""
Rule violation detection engine.

This module contains:
- Session / Rule / RuleEvaluationResult models
- Geo and time utilities (haversine distance, implied speed, private checks)
- One evaluator per rule type
- RuleEngine: the orchestrator dispatching rules to evaluators
"""

from streamsentry.engine.engine import (
    EVALUATORS,
    RuleEngine,
    applicable_rules,
    evaluate_session,
    violations,
)
from streamsentry.engine.geo import (
    haversine_distance,
    implied_speed_kmh,
    is_private_ip,
    is_private_location,
)
from streamsentry.engine.models import (
    LocationKind,
    Rule,
    RuleEvaluationResult,
    RuleType,
    Session,
    SessionState,
    ViolationSeverity,
)

__all__ = [
    # Engine
    "EVALUATORS",
    "RuleEngine",
    "applicable_rules",
    "evaluate_session",
    "violations",
    # Geo
    "haversine_distance",
    "implied_speed_kmh",
    "is_private_ip",
    "is_private_location",
    # Models
    "LocationKind",
    "Rule",
    "RuleEvaluationResult",
    "RuleType",
    "Session",
    "SessionState",
    "ViolationSeverity",
]
