# =============================================================================
# StreamSentry - Redis Session Store
# =============================================================================
"""
Redis-backed session context provider.

The rule engine never queries storage itself: this store keeps a rolling
window of each user's sessions so the monitor can hand the engine the
previous sessions, the currently active ones and the recent IP history.

Layout:
    streamsentry:session:<id>           JSON snapshot (TTL = lookback window)
    streamsentry:user:<uid>:history     sorted set, id scored by startedAt
    streamsentry:user:<uid>:active      set of active session ids

Example:
    store = RedisSessionStore()
    store.record_session(session)
    context = store.get_context(session)
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta
from typing import Iterable

import redis
from loguru import logger
from pydantic import ValidationError

from streamsentry.config import get_settings
from streamsentry.engine.geo import is_private_ip
from streamsentry.engine.models import (
    PRIVATE_LOCATION_SENTINEL,
    LocationKind,
    Session,
)


class RedisSessionStore:
    """
    Redis store for per-user session history.

    Snapshots expire after the lookback window so old sessions drop out of
    the evaluation context on their own.
    """

    SESSION_PREFIX = "streamsentry:session:"
    USER_PREFIX = "streamsentry:user:"

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        db: int | None = None,
        password: str | None = None,
        lookback_hours: int | None = None,
        context_limit: int | None = None,
        client: redis.Redis | None = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            host: Redis host (default: from config)
            port: Redis port (default: from config)
            db: Redis database number (default: from config)
            password: Redis password (optional)
            lookback_hours: How long sessions are kept for context
            context_limit: Maximum context sessions returned per evaluation
            client: Pre-built Redis client; skips connecting when given
        """
        settings = get_settings()

        self._host = host or os.getenv("REDIS_HOST") or settings.redis.host
        self._port = port or int(os.getenv("REDIS_PORT", "0")) or settings.redis.port
        self._db = db if db is not None else settings.redis.db
        self._password = password or os.getenv("REDIS_PASSWORD") or settings.redis.password
        self._lookback = timedelta(
            hours=lookback_hours or settings.rules.context_lookback_hours
        )
        self._context_limit = context_limit or settings.rules.context_limit

        self._client: redis.Redis | None = client
        if self._client is None:
            self._connect()

        logger.info(f"RedisSessionStore initialized: {self._host}:{self._port}")

    def _connect(self) -> None:
        """Establish Redis connection."""
        try:
            self._client = redis.Redis(
                host=self._host,
                port=self._port,
                db=self._db,
                password=self._password,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
            self._client.ping()
            logger.debug("Redis connection verified")
        except redis.ConnectionError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self._client = None
            raise

    @property
    def is_connected(self) -> bool:
        """Check if Redis is available."""
        if self._client is None:
            return False
        try:
            self._client.ping()
            return True
        except redis.ConnectionError:
            return False

    def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            self._client.close()
            self._client = None
            logger.debug("Redis connection closed")

    @property
    def lookback_hours(self) -> float:
        """How far back sessions are kept and returned as context."""
        return self._lookback.total_seconds() / 3600

    def ensure_lookback(self, hours: int) -> None:
        """
        Widen the lookback window to at least ``hours``.

        Applies to snapshot TTLs, history trimming and context queries alike.
        The window never shrinks.
        """
        if hours > self.lookback_hours:
            self._lookback = timedelta(hours=hours)
            logger.info(f"Session lookback widened to {hours}h")

    # =========================================================================
    # Keys
    # =========================================================================

    def _session_key(self, session_id: str) -> str:
        return f"{self.SESSION_PREFIX}{session_id}"

    def _history_key(self, server_user_id: str) -> str:
        return f"{self.USER_PREFIX}{server_user_id}:history"

    def _active_key(self, server_user_id: str) -> str:
        return f"{self.USER_PREFIX}{server_user_id}:active"

    # =========================================================================
    # Writes
    # =========================================================================

    def record_session(self, session: Session) -> Session:
        """
        Store a session snapshot and update the user's indexes.

        Sessions whose geo lookup left them unresolved but whose address is
        private are stored as private.

        Args:
            session: Session from a start/update/stop event

        Returns:
            The session as stored
        """
        if session.location_kind == LocationKind.UNRESOLVED and is_private_ip(session.ip_address):
            session = session.model_copy(update={
                "geo_country": PRIVATE_LOCATION_SENTINEL,
                "location_kind": LocationKind.PRIVATE,
            })

        if self._client is None:
            logger.warning("Redis not connected, skipping session update")
            return session

        ttl_seconds = int(self._lookback.total_seconds())
        history_key = self._history_key(session.server_user_id)
        active_key = self._active_key(session.server_user_id)
        cutoff = (session.started_at - self._lookback).timestamp()

        try:
            pipe = self._client.pipeline()
            pipe.setex(
                self._session_key(session.id),
                ttl_seconds,
                session.model_dump_json(by_alias=True),
            )
            pipe.zadd(history_key, {session.id: session.started_at.timestamp()})
            pipe.zremrangebyscore(history_key, "-inf", f"({cutoff}")
            pipe.expire(history_key, ttl_seconds)
            if session.is_active:
                pipe.sadd(active_key, session.id)
                pipe.expire(active_key, ttl_seconds)
            else:
                pipe.srem(active_key, session.id)
            pipe.execute()

            logger.debug(f"Session recorded: {session.id} ({session.state.value})")

        except redis.RedisError as e:
            logger.error(f"Failed to record session {session.id}: {e}")

        return session

    # =========================================================================
    # Reads
    # =========================================================================

    def _load_sessions(self, session_ids: Iterable[str]) -> list[Session]:
        """Fetch snapshots for the given ids, skipping expired or corrupt ones."""
        ids = list(session_ids)
        if not ids:
            return []

        raw_values = self._client.mget([self._session_key(i) for i in ids])
        sessions = []
        for session_id, raw in zip(ids, raw_values):
            if raw is None:
                continue
            try:
                sessions.append(Session.model_validate_json(raw))
            except ValidationError as e:
                logger.warning(f"Dropping unreadable snapshot {session_id}: {e.error_count()} error(s)")
        return sessions

    def get_session(self, session_id: str) -> Session | None:
        """Get one session snapshot."""
        if self._client is None:
            logger.warning("Redis not connected")
            return None
        try:
            found = self._load_sessions([session_id])
        except redis.RedisError as e:
            logger.error(f"Failed to get session {session_id}: {e}")
            return None
        return found[0] if found else None

    def get_active_sessions(self, server_user_id: str) -> list[Session]:
        """Currently active sessions for a user."""
        if self._client is None:
            logger.warning("Redis not connected")
            return []
        try:
            active_ids = sorted(self._client.smembers(self._active_key(server_user_id)))
            sessions = self._load_sessions(active_ids)
        except redis.RedisError as e:
            logger.error(f"Failed to get active sessions: {e}")
            return []
        return [s for s in sessions if s.is_active]

    def get_recent_sessions(
        self,
        server_user_id: str,
        since: datetime,
        limit: int | None = None,
    ) -> list[Session]:
        """Sessions started at or after ``since``, most recent first."""
        if self._client is None:
            logger.warning("Redis not connected")
            return []
        try:
            recent_ids = self._client.zrevrangebyscore(
                self._history_key(server_user_id),
                "+inf",
                since.timestamp(),
                start=0,
                num=limit or self._context_limit,
            )
            return self._load_sessions(recent_ids)
        except redis.RedisError as e:
            logger.error(f"Failed to get recent sessions: {e}")
            return []

    def get_context(self, session: Session) -> list[Session]:
        """
        Build the evaluation context for a triggering session.

        Combines the user's active sessions with those started within the
        lookback window, without the trigger itself.

        Args:
            session: The triggering session

        Returns:
            At most ``context_limit`` sessions, active ones first
        """
        since = session.started_at - self._lookback
        context: list[Session] = []
        seen = {session.id}

        for candidate in (
            self.get_active_sessions(session.server_user_id)
            + self.get_recent_sessions(session.server_user_id, since)
        ):
            if candidate.id in seen:
                continue
            seen.add(candidate.id)
            context.append(candidate)

        return context[: self._context_limit]

    def clear_all(self) -> None:
        """Clear all session data. USE WITH CAUTION!"""
        if self._client:
            for prefix in (self.SESSION_PREFIX, self.USER_PREFIX):
                cursor = 0
                while True:
                    cursor, keys = self._client.scan(
                        cursor,
                        match=f"{prefix}*",
                        count=100,
                    )
                    if keys:
                        self._client.delete(*keys)
                    if cursor == 0:
                        break

            logger.warning("All session data cleared!")
