"""Derived store access using SQLAlchemy Core."""

from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Iterator, Optional

import boto3
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import QueuePool, StaticPool

from config.settings import Settings
from repositories.schema import metadata
from utils.error_handling import ConfigurationError
from utils.logging_config import get_logger

logger = get_logger(__name__)


class DerivedStore:
    """Owns one engine; every event's writes go through a single begin() block."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def create_schema(self) -> None:
        """Create missing tables and indexes."""
        metadata.create_all(self.engine)
        logger.info("Customer tables initialized", extra={"dialect": self.engine.dialect.name})

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """Open a transaction that commits on exit and rolls back on error."""
        with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """Open a connection for read-only work."""
        with self.engine.connect() as conn:
            yield conn

    def dispose(self) -> None:
        self.engine.dispose()


def create_store_engine(settings: Settings) -> Engine:
    """Build an engine from DATABASE_URL or the RDS secret named by DB_SECRET_ARN."""
    db_url = settings.database_url
    if not db_url and settings.db_secret_arn:
        db_url = _secret_to_db_url(settings.db_secret_arn, settings.aws_region)
    if not db_url:
        raise ConfigurationError("DATABASE_URL or DB_SECRET_ARN must be set")

    if db_url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across checkouts.
        return create_engine(
            db_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    return create_engine(
        db_url,
        poolclass=QueuePool,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def _secret_to_db_url(secret_arn: str, region: Optional[str] = None) -> Optional[str]:
    """Build a SQLAlchemy URL from an RDS secret."""
    try:
        sm = boto3.client("secretsmanager", region_name=region)
        secret = json.loads(sm.get_secret_value(SecretId=secret_arn)["SecretString"])
    except Exception as exc:
        logger.warning("Failed to load DB secret", extra={"error": str(exc)})
        return None

    host = secret.get("host")
    port = secret.get("port", 5432)
    username = secret.get("username")
    password = secret.get("password")
    dbname = secret.get("dbname", "postgres")
    if not (host and username and password):
        return None
    return f"postgresql+psycopg2://{username}:{password}@{host}:{port}/{dbname}"
