"""
Base interface for record storage.

The retrieval, upgrade and sharing services only talk to storage through
this interface: point and batch lookups, filtered range queries, a ranked
full-text search primitive, insert/update, bulk insert-or-skip and
time-window queries for timelines.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel, Field

from loopflow.models.common import EntityKind
from loopflow.models.insight import Insight
from loopflow.models.retrieval import RecordFilters, SearchQuery
from loopflow.models.task import Task

Record = Insight | Task


class BulkInsertResult(BaseModel):
    """Outcome of a bulk insert-or-skip."""

    inserted: list[str] = Field(default_factory=list, description="IDs written")
    skipped: list[str] = Field(default_factory=list, description="IDs already present")

    @property
    def inserted_count(self) -> int:
        return len(self.inserted)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


class RecordStore(ABC):
    """Abstract base class for insight/task storage implementations."""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the store (create tables, indexes and full-text index)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection."""
        pass

    # ═══════════════════════════════════════════════════════════
    # LOOKUPS
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def get_insight(self, insight_id: str) -> Insight | None:
        """
        Retrieve an insight by ID.

        Args:
            insight_id: Insight identifier

        Returns:
            Insight or None if not found
        """
        pass

    @abstractmethod
    async def get_insights(self, insight_ids: list[str]) -> list[Insight]:
        """
        Retrieve several insights. Missing IDs are silently absent from the result.

        Args:
            insight_ids: Insight identifiers

        Returns:
            Found insights (order not guaranteed)
        """
        pass

    @abstractmethod
    async def get_task(self, task_id: str) -> Task | None:
        """Retrieve a task by ID, or None if not found."""
        pass

    @abstractmethod
    async def get_tasks(self, task_ids: list[str]) -> list[Task]:
        """Retrieve several tasks. Missing IDs are silently absent from the result."""
        pass

    @abstractmethod
    async def list_insight_ids(self) -> list[str]:
        """All stored insight IDs."""
        pass

    @abstractmethod
    async def list_task_ids(self) -> list[str]:
        """All stored task IDs."""
        pass

    # ═══════════════════════════════════════════════════════════
    # QUERIES
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def query_insights(
        self, filters: RecordFilters | None = None, limit: int | None = 100
    ) -> list[Insight]:
        """
        Query insights with structural filters, newest first.

        Args:
            filters: Type/status/tag/date filters
            limit: Maximum results (None for no limit)

        Returns:
            Matching insights
        """
        pass

    @abstractmethod
    async def query_tasks(
        self, filters: RecordFilters | None = None, limit: int | None = 100
    ) -> list[Task]:
        """Query tasks with structural filters, newest first."""
        pass

    @abstractmethod
    async def search_insights(
        self, query: SearchQuery, filters: RecordFilters | None = None, limit: int = 100
    ) -> list[Insight]:
        """
        Full-text search over insight content, summary and tags.

        Terms are prefix-matched, phrases matched exactly, all OR-combined.
        Results are ordered by the store's own relevance rank.

        Args:
            query: Parsed query (only terms and phrases are used)
            filters: Structural filters applied alongside the match
            limit: Maximum candidates

        Returns:
            Candidate insights
        """
        pass

    @abstractmethod
    async def search_tasks(
        self, query: SearchQuery, filters: RecordFilters | None = None, limit: int = 100
    ) -> list[Task]:
        """Full-text search over task title, description and summary."""
        pass

    @abstractmethod
    async def get_records_before(
        self, timestamp: datetime, limit: int, kinds: list[EntityKind] | None = None
    ) -> list[Record]:
        """
        Records created strictly before timestamp, nearest first.

        Args:
            timestamp: Exclusive upper bound
            limit: Maximum records across all kinds
            kinds: Entity kinds to include (default all)

        Returns:
            Records ordered by created_at descending
        """
        pass

    @abstractmethod
    async def get_records_at(
        self, timestamp: datetime, kinds: list[EntityKind] | None = None
    ) -> list[Record]:
        """Records created exactly at timestamp."""
        pass

    @abstractmethod
    async def get_records_after(
        self, timestamp: datetime, limit: int, kinds: list[EntityKind] | None = None
    ) -> list[Record]:
        """Records created strictly after timestamp, nearest first (ascending)."""
        pass

    # ═══════════════════════════════════════════════════════════
    # WRITES
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def insert_insight(self, insight: Insight) -> None:
        """
        Insert a new insight.

        Raises:
            StoreError: If the ID already exists
        """
        pass

    @abstractmethod
    async def update_insight(self, insight: Insight) -> None:
        """
        Update an existing insight in place.

        Raises:
            StoreError: If the insight does not exist
        """
        pass

    @abstractmethod
    async def insert_task(self, task: Task) -> None:
        """Insert a new task. Raises StoreError if the ID already exists."""
        pass

    @abstractmethod
    async def update_task(self, task: Task) -> None:
        """Update an existing task. Raises StoreError if it does not exist."""
        pass

    @abstractmethod
    async def bulk_insert_insights(self, insights: list[Insight]) -> BulkInsertResult:
        """
        Insert many insights in one transaction, skipping IDs that already exist.

        Safe to re-run: a second call with the same records inserts nothing.
        """
        pass

    @abstractmethod
    async def bulk_insert_tasks(self, tasks: list[Task]) -> BulkInsertResult:
        """Insert many tasks in one transaction, skipping IDs that already exist."""
        pass

    # ═══════════════════════════════════════════════════════════
    # UTILITY
    # ═══════════════════════════════════════════════════════════

    @abstractmethod
    async def count_insights(self) -> int:
        """Number of stored insights."""
        pass

    @abstractmethod
    async def count_tasks(self) -> int:
        """Number of stored tasks."""
        pass

    @abstractmethod
    async def has_full_text_index(self) -> bool:
        """Whether the full-text index tables exist."""
        pass

    @abstractmethod
    async def get_schema_version(self) -> int:
        """Applied schema version (0 when uninitialized)."""
        pass
