# =============================================================================
# StreamSentry Settings Configuration
# =============================================================================
"""
Centralized configuration management using Pydantic Settings.

This module provides type-safe configuration loaded from environment variables
and .env files, following the 12-factor app methodology.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class KafkaSettings(BaseSettings):
    """Kafka connection and topic configuration."""

    model_config = SettingsConfigDict(env_prefix="KAFKA_")

    bootstrap_servers: str = Field(
        default="localhost:9092",
        description="Kafka broker addresses"
    )
    topic_session_events: str = Field(
        default="session_events",
        description="Topic for incoming session lifecycle events"
    )
    topic_violations: str = Field(
        default="violations",
        description="Topic for rule violations"
    )
    consumer_group: str = Field(
        default="streamsentry-monitors",
        description="Consumer group ID"
    )


class RedisSettings(BaseSettings):
    """Redis session context store configuration."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")

    @property
    def url(self) -> str:
        """Construct Redis URL."""
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class RuleSettings(BaseSettings):
    """Rule loading and evaluation context parameters."""

    model_config = SettingsConfigDict(env_prefix="RULES_")

    rules_file: str = Field(
        default="rules.json",
        description="JSON file holding the configured rules"
    )
    context_lookback_hours: int = Field(
        default=24,
        ge=1,
        description="How far back session history is kept for evaluation"
    )
    context_limit: int = Field(
        default=100,
        ge=1,
        description="Maximum number of context sessions supplied per evaluation"
    )

    @field_validator("rules_file")
    @classmethod
    def validate_rules_file(cls, v: str) -> str:
        """Ensure a rules file path was given."""
        if not v.strip():
            raise ValueError("rules_file must not be empty")
        return v.strip()


class Settings(BaseSettings):
    """
    Master settings aggregating all configuration sections.

    Usage:
        settings = get_settings()
        print(settings.kafka.bootstrap_servers)
        print(settings.rules.context_lookback_hours)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Application metadata
    app_name: str = Field(default="StreamSentry")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Nested settings
    kafka: KafkaSettings = Field(default_factory=KafkaSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    rules: RuleSettings = Field(default_factory=RuleSettings)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings loaded from environment.

    Note:
        Settings are cached for performance. Call `get_settings.cache_clear()`
        to reload settings if environment changes.
    """
    return Settings()
