"""Pytest configuration for the autopilot test suite."""

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


def _ensure_test_env() -> None:
    """Seed required environment variables for tests."""
    os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
    os.environ.setdefault("AUTOPILOT_ENVIRONMENT", "test")
    os.environ.setdefault("LLM_ENABLED", "false")
    # Use litellm's bundled cost map; its background remote fetch races imports.
    os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")


_ensure_test_env()

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
TEST_DIR = ROOT / "test"
sys.path.insert(0, str(SRC))
sys.path.insert(0, str(TEST_DIR))

from models import Base  # noqa: E402


@pytest.fixture
def sqlite_session_factory():
    """Provide a session factory bound to a fresh in-memory schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    yield factory
    engine.dispose()
