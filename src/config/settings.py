"""
Environment-driven configuration for the ingestion service.

Every subscriber instance reads the same variables, so scaling out is a
matter of starting another process with identical settings.
"""

from dataclasses import dataclass, field
import os
import re
from typing import List, Optional

from utils.error_handling import ConfigurationError

# NATS tokens: no whitespace, no empty tokens, ">" only as the last token.
_TOKEN_RE = re.compile(r"^[^\s.*>]+$")


def _env_bool(name: str, default: bool) -> bool:
    return os.environ.get(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.environ.get(name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def is_valid_subject_pattern(pattern: str) -> bool:
    """Check a subscription subject, allowing "*" and a trailing ">"."""
    if not pattern:
        return False
    tokens = pattern.split(".")
    for index, token in enumerate(tokens):
        if token == ">":
            if index != len(tokens) - 1:
                return False
        elif token != "*" and not _TOKEN_RE.match(token):
            return False
    return True


@dataclass
class Settings:
    """Application settings with local-development defaults."""

    environment: str = "dev"
    log_level: str = "INFO"

    # Derived store
    database_url: Optional[str] = None
    db_secret_arn: Optional[str] = None
    db_pool_size: int = 5
    db_max_overflow: int = 5

    # Message bus
    nats_servers: List[str] = field(default_factory=lambda: ["nats://localhost:4222"])
    nats_subjects: List[str] = field(default_factory=lambda: ["customer.events.>"])
    nats_queue_group: str = "contextiq-service"
    nats_client_name: str = "contextiq-customer-service"
    nats_jetstream: bool = False
    nats_stream: str = "CUSTOMER_EVENTS"
    nats_max_reconnect_attempts: int = -1  # -1 retries forever
    nats_reconnect_wait_seconds: float = 2.0
    nats_max_backoff_seconds: float = 30.0

    # Event processing
    auto_create_customer: bool = True
    summarize_threshold: int = 500
    summary_max_chars: int = 200
    derive_purchase_keys: bool = True

    # Knowledge search collaborator
    knowledge_base_id: Optional[str] = None
    aws_region: str = "eu-west-2"
    cache_ttl_seconds: int = 300
    cache_max_size: int = 100

    @classmethod
    def from_environment(cls) -> "Settings":
        """Load settings from environment variables."""
        defaults = cls()
        return cls(
            environment=os.environ.get("ENVIRONMENT", defaults.environment),
            log_level=os.environ.get("LOG_LEVEL", defaults.log_level),
            database_url=os.environ.get("DATABASE_URL") or None,
            db_secret_arn=os.environ.get("DB_SECRET_ARN") or None,
            db_pool_size=int(os.environ.get("DB_POOL_SIZE", defaults.db_pool_size)),
            db_max_overflow=int(os.environ.get("DB_MAX_OVERFLOW", defaults.db_max_overflow)),
            nats_servers=_env_list("NATS_SERVERS", defaults.nats_servers),
            nats_subjects=_env_list("NATS_SUBJECTS", defaults.nats_subjects),
            nats_queue_group=os.environ.get("NATS_QUEUE_GROUP", defaults.nats_queue_group),
            nats_client_name=os.environ.get("NATS_CLIENT_NAME", defaults.nats_client_name),
            nats_jetstream=_env_bool("NATS_JETSTREAM", defaults.nats_jetstream),
            nats_stream=os.environ.get("NATS_STREAM", defaults.nats_stream),
            nats_max_reconnect_attempts=int(
                os.environ.get("NATS_MAX_RECONNECT_ATTEMPTS", defaults.nats_max_reconnect_attempts)
            ),
            nats_reconnect_wait_seconds=float(
                os.environ.get("NATS_RECONNECT_WAIT_SECONDS", defaults.nats_reconnect_wait_seconds)
            ),
            nats_max_backoff_seconds=float(
                os.environ.get("NATS_MAX_BACKOFF_SECONDS", defaults.nats_max_backoff_seconds)
            ),
            auto_create_customer=_env_bool("AUTO_CREATE_CUSTOMER", defaults.auto_create_customer),
            summarize_threshold=int(
                os.environ.get("SUMMARIZE_THRESHOLD", defaults.summarize_threshold)
            ),
            summary_max_chars=int(os.environ.get("SUMMARY_MAX_CHARS", defaults.summary_max_chars)),
            derive_purchase_keys=_env_bool("DERIVE_PURCHASE_KEYS", defaults.derive_purchase_keys),
            knowledge_base_id=os.environ.get("KNOWLEDGE_BASE_ID") or None,
            aws_region=os.environ.get("AWS_REGION", defaults.aws_region),
            cache_ttl_seconds=int(os.environ.get("CACHE_TTL_SECONDS", defaults.cache_ttl_seconds)),
            cache_max_size=int(os.environ.get("CACHE_MAX_SIZE", defaults.cache_max_size)),
        )

    def validate(self) -> "Settings":
        """Raise ConfigurationError for settings no amount of retrying can fix."""
        if not self.nats_servers:
            raise ConfigurationError("At least one NATS server is required")
        if not self.nats_subjects:
            raise ConfigurationError("At least one subject pattern is required")
        for subject in self.nats_subjects:
            if not is_valid_subject_pattern(subject):
                raise ConfigurationError(f"Invalid subject pattern: {subject!r}")
        if not self.nats_queue_group or not _TOKEN_RE.match(self.nats_queue_group):
            raise ConfigurationError(f"Invalid queue group: {self.nats_queue_group!r}")
        if self.summarize_threshold <= 0 or self.summary_max_chars <= 3:
            raise ConfigurationError("Summarization limits must be positive")
        return self
