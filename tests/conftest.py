"""
Pytest configuration and shared fixtures.

Adds src/ to sys.path so tests import modules the way the deployed code
does (``from services.event_processor import ...``), and provides an
in-memory SQLite derived store.
"""

import os
import sys
import time
from pathlib import Path

import boto3
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool


def _ensure_paths_on_sys_path() -> None:
    """Add repository root AND src/ to sys.path if missing."""
    repo_root = Path(__file__).resolve().parents[1]
    src_root = repo_root / "src"

    root_str = str(repo_root)
    if root_str not in sys.path:
        sys.path.insert(0, root_str)

    src_str = str(src_root)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)


_ensure_paths_on_sys_path()

# Offline-friendly AWS defaults so boto3 clients can be built without credentials.
os.environ.setdefault("AWS_REGION", "eu-west-2")
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-2")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("AWS_SESSION_TOKEN", "test")
os.environ.setdefault("ENVIRONMENT", "dev")
os.environ.setdefault("DATABASE_URL", "sqlite://")

boto3.setup_default_session(region_name="eu-west-2")


@pytest.fixture
def settings():
    from config.settings import Settings

    return Settings(summarize_threshold=500, summary_max_chars=200)


@pytest.fixture
def store():
    from repositories.store import DerivedStore

    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    derived = DerivedStore(engine)
    derived.create_schema()
    yield derived
    derived.dispose()


@pytest.fixture
def processor(store, settings):
    from services.event_processor import EventProcessor

    return EventProcessor(store, settings)


@pytest.fixture
def make_event():
    """Build a raw envelope dict with sensible defaults."""

    def _make(event_type="contact", customer_id="cust_1", data=None, **overrides):
        envelope = {
            "customer_id": customer_id,
            "event_type": event_type,
            "timestamp": overrides.pop("timestamp", time.time()),
            "source_service": overrides.pop("source_service", "test-service"),
            "data": data if data is not None else {},
            "metadata": overrides.pop("metadata", {}),
        }
        envelope.update(overrides)
        return envelope

    return _make


@pytest.fixture
def count_rows(store):
    """Return row counts for every derived table."""
    from sqlalchemy import func, select

    from repositories.schema import metadata

    def _count():
        with store.connect() as conn:
            return {
                name: conn.execute(select(func.count()).select_from(table)).scalar()
                for name, table in metadata.tables.items()
            }

    return _count
