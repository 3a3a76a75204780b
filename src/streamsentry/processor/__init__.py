"""
Processing module wiring the rule engine to live session traffic.

This module contains:
- RedisSessionStore: Redis-backed session context provider
- SessionMonitorService: Kafka consumer evaluating rules per session event
"""

from streamsentry.processor.session_store import RedisSessionStore
from streamsentry.processor.monitor import MonitorStats, SessionMonitorService

__all__ = [
    "RedisSessionStore",
    "MonitorStats",
    "SessionMonitorService",
]
