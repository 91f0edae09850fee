"""Shared fixtures for LoopFlow tests.

Fixtures use function scope to avoid event loop issues.
Every store lives in its own temporary directory, so tests never share state.
"""

from collections.abc import AsyncGenerator, Callable
from datetime import datetime

import pytest

from loopflow.config import Config, ScoringConfig, StorageConfig
from loopflow.core.storage.sqlite_store import SQLiteRecordStore
from loopflow.models.insight import Insight
from loopflow.models.task import Task
from loopflow.services.engine import LoopFlowEngine

BASE_TIME = datetime(2024, 1, 15, 12, 0, 0)


# Record builders


@pytest.fixture
def base_time() -> datetime:
    """Reference creation time for seeded records."""
    return BASE_TIME


@pytest.fixture
def make_insight() -> Callable[..., Insight]:
    """
    Build insights with well-formed IDs.

    make_insight("a00001", "content", created=..., tags=[...]) -> INS-YYYYMMDD-a00001
    """

    def _make(suffix: str, content: str, created: datetime | None = None, **kwargs) -> Insight:
        created = created or BASE_TIME
        return Insight(
            id=f"INS-{created:%Y%m%d}-{suffix}",
            content=content,
            created_at=created,
            updated_at=created,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_task() -> Callable[..., Task]:
    """Build tasks with well-formed IDs (TASK-YYYYMMDD-<suffix>)."""

    def _make(suffix: str, title: str, created: datetime | None = None, **kwargs) -> Task:
        created = created or BASE_TIME
        return Task(
            id=f"TASK-{created:%Y%m%d}-{suffix}",
            title=title,
            created_at=created,
            updated_at=created,
            **kwargs,
        )

    return _make


# Fixtures


@pytest.fixture
def config(tmp_path) -> Config:
    """Configuration pointing at a temporary database, recency boost off for stable ranking."""
    return Config(
        storage=StorageConfig(db_path=str(tmp_path / ".loop-flow" / "loopflow.db")),
        scoring=ScoringConfig(recency_boost=False),
    )


@pytest.fixture
async def store(config) -> AsyncGenerator[SQLiteRecordStore, None]:
    """Initialized SQLite record store."""
    record_store = SQLiteRecordStore(db_path=config.storage.db_path)
    await record_store.initialize()
    try:
        yield record_store
    finally:
        await record_store.close()


@pytest.fixture
async def engine(store, config) -> AsyncGenerator[LoopFlowEngine, None]:
    """Engine over the temporary store."""
    loopflow_engine = LoopFlowEngine(store=store, config=config)
    await loopflow_engine.initialize()
    yield loopflow_engine
