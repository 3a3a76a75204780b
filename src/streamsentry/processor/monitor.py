# =============================================================================
# StreamSentry - Session Monitor Service
# =============================================================================
"""
Consumes session lifecycle events and reports rule violations in real time.

For every start/update event the monitor records the session, gathers the
user's context sessions from Redis, runs the rule engine once and publishes
each violated result:

    [Kafka: session_events] → [Monitor] → [Kafka: violations]
                                  ↓
                         [Redis session store]

Stop events only update the store; a stopped session cannot start sharing.

Message format (input):
    {"event": "start", "session": {"id": "...", "serverUserId": "...", ...}}

Usage:
    # Run the monitor
    python -m streamsentry.processor.monitor

    # Or with options
    streamsentry-monitor --rules-file rules.json --no-dashboard --verbose
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from confluent_kafka import Consumer, KafkaError, KafkaException, Producer
from loguru import logger
from pydantic import ValidationError
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from streamsentry.config import get_settings
from streamsentry.config.rules import (
    RuleConfigurationError,
    context_lookback_hours,
    load_rules,
)
from streamsentry.engine import (
    Rule,
    RuleEngine,
    RuleEvaluationResult,
    Session,
    applicable_rules,
    violations,
)
from streamsentry.processor.session_store import RedisSessionStore


EVALUATED_EVENTS = frozenset({"start", "update"})
KNOWN_EVENTS = EVALUATED_EVENTS | {"stop"}


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class MonitorStats:
    """Statistics for the monitor service."""

    events_processed: int = 0
    sessions_evaluated: int = 0
    violations_detected: int = 0
    violations_by_type: Counter = field(default_factory=Counter)
    errors: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.start_time).total_seconds()

    @property
    def violation_rate(self) -> float:
        if self.sessions_evaluated == 0:
            return 0.0
        return self.violations_detected / self.sessions_evaluated


def violation_message(result: RuleEvaluationResult, session: Session) -> dict:
    """Serialize a violated result for the violations topic."""
    return {
        "ruleId": result.rule.id,
        "ruleName": result.rule.name,
        "ruleType": result.rule.type,
        "sessionId": session.id,
        "serverUserId": session.server_user_id,
        "severity": result.severity.value,
        "trustPenalty": result.trust_penalty,
        "data": result.data,
        "detectedAt": datetime.now(timezone.utc).isoformat(),
    }


# =============================================================================
# Session Monitor Service
# =============================================================================

class SessionMonitorService:
    """
    The main monitoring service.

    Consumes session events from Kafka, evaluates the configured rules with
    context from Redis and publishes violations to a separate Kafka topic.

    Example:
        monitor = SessionMonitorService(rules=load_rules("rules.json"))
        monitor.start()  # Runs until interrupted
    """

    def __init__(
        self,
        rules: list[Rule],
        kafka_servers: str | None = None,
        kafka_topic_in: str | None = None,
        kafka_topic_out: str | None = None,
        consumer_group: str | None = None,
        store: RedisSessionStore | None = None,
        engine: RuleEngine | None = None,
    ) -> None:
        """
        Initialize the monitor service.

        Args:
            rules: Configured rules (filtered per user on every event)
            kafka_servers: Kafka bootstrap servers
            kafka_topic_in: Topic to consume session events from
            kafka_topic_out: Topic to publish violations to
            consumer_group: Kafka consumer group ID
            store: Session store; connected lazily on start when omitted
            engine: Rule engine; the default engine when omitted
        """
        self.settings = get_settings()

        self.rules = rules
        self.kafka_servers = kafka_servers or self.settings.kafka.bootstrap_servers
        self.topic_in = kafka_topic_in or self.settings.kafka.topic_session_events
        self.topic_out = kafka_topic_out or self.settings.kafka.topic_violations
        self.consumer_group = consumer_group or self.settings.kafka.consumer_group

        self.stats = MonitorStats()
        self.engine = engine or RuleEngine()

        self._running = False
        self._consumer: Consumer | None = None
        self._producer: Producer | None = None
        self._store: RedisSessionStore | None = store

        # Context must reach back as far as the longest device_velocity window
        self.lookback_hours = context_lookback_hours(
            rules, self.settings.rules.context_lookback_hours
        )
        if self._store is not None:
            self._store.ensure_lookback(self.lookback_hours)

        self.console = Console()

        logger.info(f"SessionMonitorService initialized with {len(rules)} rule(s)")

    # =========================================================================
    # Connection Management
    # =========================================================================

    def _init_kafka_consumer(self) -> None:
        """Initialize Kafka consumer."""
        config = {
            "bootstrap.servers": self.kafka_servers,
            "group.id": self.consumer_group,
            "auto.offset.reset": "latest",
            "enable.auto.commit": True,
            "auto.commit.interval.ms": 5000,
            "session.timeout.ms": 30000,
            "max.poll.interval.ms": 300000,
        }

        self._consumer = Consumer(config)
        self._consumer.subscribe([self.topic_in])
        logger.info(f"Kafka consumer subscribed to: {self.topic_in}")

    def _init_kafka_producer(self) -> None:
        """Initialize Kafka producer for violations."""
        config = {
            "bootstrap.servers": self.kafka_servers,
            "client.id": "streamsentry-monitor",
            "acks": "all",
            "retries": 3,
            "linger.ms": 5,
            "compression.type": "snappy",
        }

        self._producer = Producer(config)
        logger.info(f"Kafka producer ready for: {self.topic_out}")

    def _init_session_store(self) -> None:
        """Initialize the Redis session store."""
        if self._store is not None:
            return
        try:
            self._store = RedisSessionStore(lookback_hours=self.lookback_hours)
            logger.info("Redis session store connected")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            logger.warning("Context-based rules will see no other sessions!")
            self._store = None

    def _close_connections(self) -> None:
        """Close all connections gracefully."""
        if self._consumer:
            self._consumer.close()
            self._consumer = None

        if self._producer:
            self._producer.flush(timeout=10)
            self._producer = None

        if self._store:
            self._store.close()
            self._store = None

        logger.info("All connections closed")

    # =========================================================================
    # Event Processing
    # =========================================================================

    def process_event(self, message: dict[str, Any]) -> list[RuleEvaluationResult]:
        """
        Process one session lifecycle event.

        Args:
            message: Decoded event with ``event`` and ``session`` keys

        Returns:
            Violated results published for this event (empty for stop
            events and clean sessions)
        """
        self.stats.events_processed += 1

        event = message.get("event")
        if event not in KNOWN_EVENTS:
            logger.warning(f"Ignoring unknown event type: {event!r}")
            return []

        try:
            session = Session.model_validate(message.get("session") or {})
        except ValidationError as e:
            logger.error(f"Invalid session payload: {e.error_count()} error(s)")
            self.stats.errors += 1
            return []

        if self._store is not None:
            session = self._store.record_session(session)

        if event not in EVALUATED_EVENTS or not session.is_active:
            return []

        rules = applicable_rules(self.rules, session.server_user_id)
        if not rules:
            return []

        context = self._store.get_context(session) if self._store is not None else []

        self.stats.sessions_evaluated += 1
        detected = violations(self.engine.evaluate_session(session, rules, context))

        for result in detected:
            self.stats.violations_detected += 1
            self.stats.violations_by_type[result.rule.type] += 1
            self._publish_violation(result, session)
            self._print_violation(result, session)

        return detected

    # =========================================================================
    # Violation Publishing
    # =========================================================================

    def _publish_violation(self, result: RuleEvaluationResult, session: Session) -> None:
        """
        Publish a violation to Kafka.

        Args:
            result: Violated evaluation result
            session: Triggering session
        """
        if self._producer is None:
            logger.warning("Kafka producer not available")
            return

        try:
            value = json.dumps(violation_message(result, session)).encode("utf-8")
            key = session.id.encode("utf-8")

            self._producer.produce(
                topic=self.topic_out,
                key=key,
                value=value,
            )
            self._producer.poll(0)

            logger.debug(f"Violation published: {result.rule.type} for {session.id}")

        except KafkaException as e:
            logger.error(f"Failed to publish violation: {e}")
            self.stats.errors += 1

    def _print_violation(self, result: RuleEvaluationResult, session: Session) -> None:
        """Print a formatted violation panel to the console."""
        severity_colors = {
            "low": "yellow",
            "warning": "orange1",
            "high": "red bold",
        }
        color = severity_colors.get(result.severity.value, "red")
        evidence = ", ".join(f"{k}={v}" for k, v in result.data.items())

        content = f"""
[{color}][!] RULE VIOLATION[/{color}]

[bold]Rule:[/bold] {result.rule.name or result.rule.id}
[bold]Type:[/bold] {result.rule.type.upper().replace('_', ' ')}
[bold]Severity:[/bold] [{color}]{result.severity.value.upper()}[/{color}]

[bold]User:[/bold] {session.server_user_id}
[bold]Session:[/bold] {session.id}
[bold]Location:[/bold] {session.location_label} ({session.ip_address or 'no address'})

[bold]Evidence:[/bold]
{evidence}
"""

        self.console.print(Panel(
            content.strip(),
            title="[red bold][!] VIOLATION [!][/red bold]",
            border_style="red",
        ))

    # =========================================================================
    # Main Processing Loop
    # =========================================================================

    def _create_stats_table(self) -> Table:
        """Create a rich table with monitor statistics."""
        table = Table(title="[*] StreamSentry Session Monitor", expand=True)

        table.add_column("Metric", style="cyan", no_wrap=True)
        table.add_column("Value", style="green", justify="right")

        table.add_row("[>] Events Processed", f"{self.stats.events_processed:,}")
        table.add_row("[>] Sessions Evaluated", f"{self.stats.sessions_evaluated:,}")
        table.add_row("[!] Violations", f"[red]{self.stats.violations_detected:,}[/red]")
        for rule_type, count in sorted(self.stats.violations_by_type.items()):
            table.add_row(f"   +-- {rule_type.replace('_', ' ').title()}", f"{count:,}")
        table.add_row("[x] Errors", f"{self.stats.errors:,}")
        table.add_row("[T] Uptime", f"{self.stats.uptime_seconds:.0f}s")

        rate = self.stats.violation_rate * 100
        rate_color = "green" if rate < 5 else "yellow" if rate < 10 else "red"
        table.add_row("[~] Violation Rate", f"[{rate_color}]{rate:.2f}%[/{rate_color}]")

        return table

    def _handle_message(self, msg: Any) -> None:
        """Decode and process one Kafka message."""
        if msg.error():
            if msg.error().code() != KafkaError._PARTITION_EOF:
                logger.error(f"Kafka error: {msg.error()}")
                self.stats.errors += 1
            return

        try:
            self.process_event(json.loads(msg.value().decode("utf-8")))
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON: {e}")
            self.stats.errors += 1
        except Exception as e:
            logger.error(f"Processing error: {e}")
            self.stats.errors += 1

    def start(self, show_dashboard: bool = True) -> None:
        """
        Start the monitor service.

        Args:
            show_dashboard: Whether to show real-time stats dashboard
        """
        self._running = True

        def signal_handler(sig: int, frame: Any) -> None:
            logger.info("Shutdown signal received...")
            self._running = False

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        self.console.print(Panel.fit(
            "[bold blue]StreamSentry[/bold blue]\n"
            "[dim]Media Server Account Sharing Monitor[/dim]\n"
            "[yellow]Session Monitor Service[/yellow]",
            border_style="blue",
        ))

        logger.info("Initializing connections...")
        self._init_kafka_consumer()
        self._init_kafka_producer()
        self._init_session_store()

        logger.info("Session Monitor Service started!")
        logger.info(f"Consuming from: {self.topic_in}")
        logger.info(f"Publishing violations to: {self.topic_out}")

        try:
            if show_dashboard:
                self._run_with_dashboard()
            else:
                self._run_without_dashboard()
        except Exception as e:
            logger.exception(f"Fatal error in monitor: {e}")
        finally:
            self._close_connections()
            self.console.print("\n[green][+] Monitor service stopped gracefully[/green]")

    def _run_with_dashboard(self) -> None:
        """Run with real-time stats dashboard."""
        with Live(console=self.console, refresh_per_second=1) as live:
            while self._running:
                live.update(self._create_stats_table())

                msg = self._consumer.poll(timeout=0.1)
                if msg is None:
                    continue
                self._handle_message(msg)

    def _run_without_dashboard(self) -> None:
        """Run without dashboard (log-based output)."""
        last_log_time = time.time()

        while self._running:
            msg = self._consumer.poll(timeout=0.1)
            if msg is None:
                continue
            self._handle_message(msg)

            if time.time() - last_log_time > 10:
                logger.info(
                    f"Stats: {self.stats.events_processed} events, "
                    f"{self.stats.violations_detected} violations"
                )
                last_log_time = time.time()


# =============================================================================
# CLI Interface
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="StreamSentry Session Monitor Service",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--kafka-servers", "-k",
        type=str,
        default=None,
        help="Kafka bootstrap servers",
    )

    parser.add_argument(
        "--topic-in", "-i",
        type=str,
        default=None,
        help="Input topic for session events",
    )

    parser.add_argument(
        "--topic-out", "-o",
        type=str,
        default=None,
        help="Output topic for violations",
    )

    parser.add_argument(
        "--consumer-group", "-g",
        type=str,
        default=None,
        help="Kafka consumer group ID",
    )

    parser.add_argument(
        "--rules-file", "-r",
        type=str,
        default=None,
        help="JSON file with the configured rules",
    )

    parser.add_argument(
        "--no-dashboard",
        action="store_true",
        help="Disable real-time dashboard",
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    settings = get_settings()

    log_level = "DEBUG" if args.verbose else settings.log_level
    logger.remove()
    logger.add(
        sys.stderr,
        level=log_level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{message}</cyan>",
    )

    rules_file = args.rules_file or settings.rules.rules_file
    try:
        rules = load_rules(rules_file)
    except RuleConfigurationError as e:
        logger.error(str(e))
        sys.exit(1)

    monitor = SessionMonitorService(
        rules=rules,
        kafka_servers=args.kafka_servers,
        kafka_topic_in=args.topic_in,
        kafka_topic_out=args.topic_out,
        consumer_group=args.consumer_group,
    )

    monitor.start(show_dashboard=not args.no_dashboard)


if __name__ == "__main__":
    main()
