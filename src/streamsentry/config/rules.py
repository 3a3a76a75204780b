# =============================================================================
# StreamSentry - Rule File Loader
# =============================================================================
"""
Load configured rules from a JSON file.

The file holds a list of rule objects using the boundary field names:

    [
        {"id": "r1", "type": "concurrent_streams", "params": {"maxStreams": 2}},
        {"id": "r2", "type": "geo_restriction",
         "params": {"mode": "allowlist", "countries": ["US", "CA"]}}
    ]

Entries that are not valid rules are logged and skipped so one bad entry
cannot disable the others.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable

from loguru import logger
from pydantic import ValidationError

from streamsentry.engine.models import DeviceVelocityParams, Rule


class RuleConfigurationError(ValueError):
    """Raised when the rules file itself cannot be used."""


def parse_rules(raw_rules: list) -> list[Rule]:
    """
    Build Rule models from decoded JSON entries.

    Args:
        raw_rules: List of rule dictionaries

    Returns:
        Valid rules, in file order
    """
    rules: list[Rule] = []
    for index, entry in enumerate(raw_rules):
        try:
            rules.append(Rule.model_validate(entry))
        except ValidationError as e:
            logger.error(f"Skipping rule #{index}: {e.error_count()} validation error(s)")
    return rules


def load_rules(path: str | Path) -> list[Rule]:
    """
    Read and validate the rules file.

    Args:
        path: Path to a JSON file containing a list of rules

    Returns:
        Valid rules, in file order

    Raises:
        RuleConfigurationError: If the file is missing, unreadable or not a list
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise RuleConfigurationError(f"Rules file not found: {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise RuleConfigurationError(f"Cannot read rules file {path}: {e}") from e

    if not isinstance(raw, list):
        raise RuleConfigurationError(f"Rules file {path} must contain a JSON list")

    rules = parse_rules(raw)
    logger.info(f"Loaded {len(rules)} rule(s) from {path}")
    return rules


def context_lookback_hours(rules: Iterable[Rule], minimum_hours: int) -> int:
    """
    Hours of session history needed to evaluate ``rules``.

    Args:
        rules: Loaded rules
        minimum_hours: Configured lookback, used when no rule needs more

    Returns:
        ``minimum_hours`` widened to the longest active device_velocity window
    """
    windows = [
        rule.config.window_hours
        for rule in rules
        if rule.is_active and isinstance(rule.config, DeviceVelocityParams)
    ]
    return max([minimum_hours, *windows])
