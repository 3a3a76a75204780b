"""Tests for loading rules from JSON files."""

import json

import pytest

from streamsentry.config.rules import (
    RuleConfigurationError,
    context_lookback_hours,
    load_rules,
    parse_rules,
)
from streamsentry.engine.models import RuleType


def _write(tmp_path, content):
    path = tmp_path / "rules.json"
    path.write_text(content if isinstance(content, str) else json.dumps(content))
    return path


class TestLoadRules:

    def test_valid_file(self, tmp_path):
        path = _write(tmp_path, [
            {"id": "r1", "name": "Two streams", "type": "concurrent_streams",
             "params": {"maxStreams": 2}},
            {"id": "r2", "type": "geo_restriction", "serverUserId": "user-1",
             "params": {"mode": "allowlist", "countries": ["US", "CA"]}},
        ])

        rules = load_rules(path)

        assert [r.id for r in rules] == ["r1", "r2"]
        assert rules[0].config.max_streams == 2
        assert rules[1].rule_type == RuleType.GEO_RESTRICTION
        assert rules[1].server_user_id == "user-1"

    def test_accepts_string_path(self, tmp_path):
        path = _write(tmp_path, [{"id": "r1", "type": "device_velocity"}])
        assert len(load_rules(str(path))) == 1

    def test_invalid_entry_is_skipped(self, tmp_path):
        path = _write(tmp_path, [
            {"id": "r1", "type": "concurrent_streams"},
            {"type": "concurrent_streams"},
            "not a rule",
            {"id": "r4", "type": "impossible_travel"},
        ])

        rules = load_rules(path)

        assert [r.id for r in rules] == ["r1", "r4"]

    def test_unknown_type_and_bad_params_are_kept(self, tmp_path):
        """Such rules load but are skipped or fail open at evaluation time."""
        path = _write(tmp_path, [
            {"id": "r1", "type": "future_rule"},
            {"id": "r2", "type": "concurrent_streams", "params": {"maxStreams": "many"}},
        ])

        rules = load_rules(path)

        assert len(rules) == 2
        assert all(r.config is None for r in rules)

    def test_missing_file(self, tmp_path):
        with pytest.raises(RuleConfigurationError, match="not found"):
            load_rules(tmp_path / "missing.json")

    def test_malformed_json(self, tmp_path):
        path = _write(tmp_path, "[{not json")
        with pytest.raises(RuleConfigurationError):
            load_rules(path)

    def test_not_a_list(self, tmp_path):
        path = _write(tmp_path, {"id": "r1", "type": "concurrent_streams"})
        with pytest.raises(RuleConfigurationError, match="JSON list"):
            load_rules(path)

    def test_configuration_error_is_value_error(self):
        assert issubclass(RuleConfigurationError, ValueError)


class TestParseRules:

    def test_empty_list(self):
        assert parse_rules([]) == []

    def test_preserves_order(self):
        rules = parse_rules([
            {"id": "b", "type": "device_velocity"},
            {"id": "a", "type": "concurrent_streams"},
        ])
        assert [r.id for r in rules] == ["b", "a"]


class TestContextLookbackHours:
    """History needed to cover every device_velocity window."""

    def test_configured_minimum_without_velocity_rules(self):
        rules = parse_rules([{"id": "r1", "type": "concurrent_streams"}])
        assert context_lookback_hours(rules, 24) == 24

    def test_widened_to_longest_window(self):
        rules = parse_rules([
            {"id": "r1", "type": "device_velocity", "params": {"windowHours": 72}},
            {"id": "r2", "type": "device_velocity", "params": {"windowHours": 48}},
        ])
        assert context_lookback_hours(rules, 24) == 72

    def test_shorter_windows_keep_minimum(self):
        rules = parse_rules([
            {"id": "r1", "type": "device_velocity", "params": {"windowHours": 6}},
        ])
        assert context_lookback_hours(rules, 24) == 24

    def test_inactive_and_invalid_rules_ignored(self):
        rules = parse_rules([
            {"id": "r1", "type": "device_velocity", "isActive": False,
             "params": {"windowHours": 96}},
            {"id": "r2", "type": "device_velocity", "params": {"windowHours": -1}},
        ])
        assert context_lookback_hours(rules, 24) == 24
