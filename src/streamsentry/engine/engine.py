# =============================================================================
# StreamSentry - Rule Engine (The Brain)
# =============================================================================
"""
Single entry point for rule violation detection.

Given one new or updated session, the rules that apply to its user and a
window of that user's other sessions, the engine dispatches every rule to
its evaluator and returns one result per evaluated rule:

1. **impossible_travel**: previous session too far away for the time elapsed
2. **simultaneous_locations**: active sessions in distant places at once
3. **device_velocity**: too many distinct IP addresses in a time window
4. **concurrent_streams**: too many active streams
5. **geo_restriction**: streaming from a blocked or non-allowed country

The engine is pure: no I/O, no hidden state, inputs are never mutated, and
it never raises. Misconfigured rules and evaluator failures produce a
not-violated result rather than an error.

Example:
    engine = RuleEngine()
    results = engine.evaluate_session(session, rules, context_sessions)
    for result in violations(results):
        sink.publish(result)
"""

from __future__ import annotations

from typing import Callable, Iterable, Sequence

from loguru import logger

from streamsentry.engine.evaluators import (
    Evaluation,
    evaluate_concurrent_streams,
    evaluate_device_velocity,
    evaluate_geo_restriction,
    evaluate_impossible_travel,
    evaluate_simultaneous_locations,
)
from streamsentry.engine.models import (
    SEVERITY_BY_RULE_TYPE,
    Rule,
    RuleEvaluationResult,
    RuleType,
    Session,
)


Evaluator = Callable[..., Evaluation]

EVALUATORS: dict[RuleType, Evaluator] = {
    RuleType.IMPOSSIBLE_TRAVEL: evaluate_impossible_travel,
    RuleType.SIMULTANEOUS_LOCATIONS: evaluate_simultaneous_locations,
    RuleType.DEVICE_VELOCITY: evaluate_device_velocity,
    RuleType.CONCURRENT_STREAMS: evaluate_concurrent_streams,
    RuleType.GEO_RESTRICTION: evaluate_geo_restriction,
}

_missing = set(RuleType) - set(EVALUATORS)
if _missing:
    raise RuntimeError(f"No evaluator registered for: {sorted(t.value for t in _missing)}")


def applicable_rules(rules: Iterable[Rule], server_user_id: str) -> list[Rule]:
    """Active rules that are global or scoped to ``server_user_id``, in order."""
    return [rule for rule in rules if rule.is_active and rule.applies_to(server_user_id)]


def violations(results: Iterable[RuleEvaluationResult]) -> list[RuleEvaluationResult]:
    """Keep only violated results."""
    return [result for result in results if result.violated]


class RuleEngine:
    """
    Dispatches rules to their evaluators.

    The dispatch table can be overridden for testing, but by default covers
    every ``RuleType``.
    """

    def __init__(self, evaluators: dict[RuleType, Evaluator] | None = None) -> None:
        self._evaluators = dict(evaluators if evaluators is not None else EVALUATORS)

    def evaluate_session(
        self,
        session: Session,
        rules: Sequence[Rule],
        context_sessions: Sequence[Session],
    ) -> list[RuleEvaluationResult]:
        """
        Evaluate every rule against a triggering session.

        Args:
            session: The new or updated session
            rules: Active rules applicable to the session's user
            context_sessions: The same user's other sessions (previous and
                currently active ones)

        Returns:
            One result per evaluated rule, in input order. Rules of unknown
            type are skipped.
        """
        context = tuple(context_sessions)
        results: list[RuleEvaluationResult] = []

        for rule in rules:
            result = self._evaluate_rule(session, rule, context)
            if result is not None:
                results.append(result)

        return results

    def _evaluate_rule(
        self,
        session: Session,
        rule: Rule,
        context: tuple[Session, ...],
    ) -> RuleEvaluationResult | None:
        rule_type = rule.rule_type
        evaluator = self._evaluators.get(rule_type) if rule_type is not None else None
        if evaluator is None:
            logger.debug(f"Skipping rule {rule.id}: no evaluator for type '{rule.type}'")
            return None

        severity = SEVERITY_BY_RULE_TYPE[rule_type]

        if rule.config is None:
            return RuleEvaluationResult(
                rule=rule,
                violated=False,
                severity=severity,
                data={"reason": "invalid_params"},
            )

        try:
            evaluation = evaluator(
                session,
                rule.config,
                context,
                rule.excludes_private_ips,
            )
        except Exception as e:
            logger.error(f"Rule {rule.id} ({rule.type}) failed on session {session.id}: {e}")
            return RuleEvaluationResult(
                rule=rule,
                violated=False,
                severity=severity,
                data={"reason": "evaluation_error"},
            )

        if evaluation.violated:
            logger.debug(f"Rule {rule.id} ({rule.type}) violated by session {session.id}")

        return RuleEvaluationResult(
            rule=rule,
            violated=evaluation.violated,
            severity=severity,
            data=evaluation.data,
        )


_default_engine = RuleEngine()


def evaluate_session(
    session: Session,
    rules: Sequence[Rule],
    context_sessions: Sequence[Session],
) -> list[RuleEvaluationResult]:
    """Evaluate with the shared default engine."""
    return _default_engine.evaluate_session(session, rules, context_sessions)
