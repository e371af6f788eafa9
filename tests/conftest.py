"""
Pytest configuration and fixtures for LLM Tracker tests.

Every test that touches the database gets its own SQLite file under
``tmp_path`` so WAL mode, foreign keys and cross-thread access behave as in
production.
"""

from typing import Generator

import pytest
from sqlalchemy.orm import Session

from llmtracker.config import Settings
from llmtracker.db.connection import Database
from llmtracker.server.writer import StoreWriter
from llmtracker.services.store import CaptureStore

BASE_TS = 1_700_000_000_000  # 2023-11-14T22:13:20Z in epoch ms


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings isolated from the environment, pointing at tmp_path."""
    return Settings(
        database_path=str(tmp_path / "llm-tracker.db"),
        log_dir=str(tmp_path / "logs"),
        log_console_enabled=False,
        server_host="127.0.0.1",
        server_port=0,
        server_poll_interval=0.05,
        writer_timeout=5.0,
        server_send_timeout=0.5,
        bridge_reconnect_interval=0.05,
        bridge_max_reconnect_attempts=3,
        bridge_connect_timeout=1.0,
        bridge_send_timeout=0.5,
        tracking_enabled=True,
        disabled_platforms=[],
        capture_system_prompts=True,
        capture_streaming_chunks=True,
        retention_days=365,
    )


@pytest.fixture
def database(test_settings: Settings) -> Generator[Database, None, None]:
    """Create a fresh file-backed database with the schema applied."""
    db = Database(test_settings.database_url, echo=False)
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def db_session(database: Database) -> Generator[Session, None, None]:
    """
    Session for repository tests.

    Repositories only flush; tests commit explicitly when they need to.
    """
    session = database.get_session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def store(database: Database, test_settings: Settings) -> CaptureStore:
    """Capture store over the test database."""
    return CaptureStore(database, config=test_settings)


@pytest.fixture
def writer() -> Generator[StoreWriter, None, None]:
    """Single-thread store writer, shut down after the test."""
    store_writer = StoreWriter(timeout=5.0)
    yield store_writer
    store_writer.shutdown(wait=True)


@pytest.fixture
def sample_conversation(store: CaptureStore):
    """A conversation on the 'claude' platform with no messages."""
    return store.upsert_conversation(
        {
            "id": "conv-1",
            "platform": "claude",
            "title": "Sample conversation",
            "started_at": BASE_TS,
            "last_activity": BASE_TS,
            "model": "claude-3-opus",
        }
    )
