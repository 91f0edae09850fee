"""
SQLite record store with FTS5 full-text search.

Generation C storage: insights and tasks in relational tables, JSON columns
for list/object fields, FTS5 indexes kept in sync by triggers.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from loopflow.core.search.query_parser import build_fts_query
from loopflow.core.storage.base import BulkInsertResult, Record, RecordStore
from loopflow.models.common import EntityKind, format_timestamp, parse_timestamp
from loopflow.models.insight import Insight
from loopflow.models.retrieval import RecordFilters, SearchQuery
from loopflow.models.task import Task
from loopflow.utils.exceptions import StoreError
from loopflow.utils.logger import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

INSIGHT_COLUMNS = (
    "id",
    "content",
    "summary",
    "type",
    "status",
    "tags",
    "links",
    "source",
    "notes",
    "created_at",
    "updated_at",
)

TASK_COLUMNS = (
    "id",
    "title",
    "description",
    "summary",
    "status",
    "priority",
    "depends_on",
    "acceptance_criteria",
    "test_file",
    "notes",
    "created_at",
    "updated_at",
    "completed_at",
)

RECORD_TABLES = ("insights", "tasks")
FTS_TABLES = ("insights_fts", "tasks_fts")

SCHEMA = """
CREATE TABLE IF NOT EXISTS insights (
    id TEXT PRIMARY KEY,
    content TEXT NOT NULL,
    summary TEXT,
    type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'unprocessed',
    tags TEXT DEFAULT '[]',
    links TEXT DEFAULT '[]',
    source TEXT,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    summary TEXT,
    status TEXT NOT NULL DEFAULT 'TODO',
    priority TEXT DEFAULT 'medium',
    depends_on TEXT DEFAULT '[]',
    acceptance_criteria TEXT DEFAULT '[]',
    test_file TEXT,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL,
    description TEXT
);

CREATE VIRTUAL TABLE IF NOT EXISTS insights_fts USING fts5(
    id, content, summary, tags,
    content='insights', content_rowid='rowid'
);

CREATE VIRTUAL TABLE IF NOT EXISTS tasks_fts USING fts5(
    id, title, description, summary,
    content='tasks', content_rowid='rowid'
);

CREATE TRIGGER IF NOT EXISTS insights_ai AFTER INSERT ON insights BEGIN
    INSERT INTO insights_fts(rowid, id, content, summary, tags)
    VALUES (NEW.rowid, NEW.id, NEW.content, NEW.summary, NEW.tags);
END;

CREATE TRIGGER IF NOT EXISTS insights_ad AFTER DELETE ON insights BEGIN
    INSERT INTO insights_fts(insights_fts, rowid, id, content, summary, tags)
    VALUES ('delete', OLD.rowid, OLD.id, OLD.content, OLD.summary, OLD.tags);
END;

CREATE TRIGGER IF NOT EXISTS insights_au AFTER UPDATE ON insights BEGIN
    INSERT INTO insights_fts(insights_fts, rowid, id, content, summary, tags)
    VALUES ('delete', OLD.rowid, OLD.id, OLD.content, OLD.summary, OLD.tags);
    INSERT INTO insights_fts(rowid, id, content, summary, tags)
    VALUES (NEW.rowid, NEW.id, NEW.content, NEW.summary, NEW.tags);
END;

CREATE TRIGGER IF NOT EXISTS tasks_ai AFTER INSERT ON tasks BEGIN
    INSERT INTO tasks_fts(rowid, id, title, description, summary)
    VALUES (NEW.rowid, NEW.id, NEW.title, NEW.description, NEW.summary);
END;

CREATE TRIGGER IF NOT EXISTS tasks_ad AFTER DELETE ON tasks BEGIN
    INSERT INTO tasks_fts(tasks_fts, rowid, id, title, description, summary)
    VALUES ('delete', OLD.rowid, OLD.id, OLD.title, OLD.description, OLD.summary);
END;

CREATE TRIGGER IF NOT EXISTS tasks_au AFTER UPDATE ON tasks BEGIN
    INSERT INTO tasks_fts(tasks_fts, rowid, id, title, description, summary)
    VALUES ('delete', OLD.rowid, OLD.id, OLD.title, OLD.description, OLD.summary);
    INSERT INTO tasks_fts(rowid, id, title, description, summary)
    VALUES (NEW.rowid, NEW.id, NEW.title, NEW.description, NEW.summary);
END;

CREATE INDEX IF NOT EXISTS idx_insights_type ON insights(type);
CREATE INDEX IF NOT EXISTS idx_insights_status ON insights(status);
CREATE INDEX IF NOT EXISTS idx_insights_created ON insights(created_at);
CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_tasks_priority ON tasks(priority);
CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks(created_at);
"""


def _normalize_token(value: str) -> str:
    return value.strip().lower().replace("-", "_").replace(" ", "_")


def _placeholders(values: list[Any]) -> str:
    return ",".join("?" * len(values))


class SQLiteRecordStore(RecordStore):
    """
    SQLite-based record store for insights and tasks.

    Features:
    - Fast local storage, one file per repository
    - JSON columns for tags, links, dependencies and provenance
    - FTS5 prefix/phrase search with bm25 ranking
    - Insert-or-skip bulk loading for idempotent migration and import
    """

    def __init__(self, db_path: str = ".loop-flow/loopflow.db"):
        """
        Initialize SQLite record store.

        Args:
            db_path: Path to SQLite database file (":memory:" for in-memory)
        """
        self.db_path = str(db_path)
        self.connection: aiosqlite.Connection | None = None

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    async def connect(self) -> None:
        """Establish connection to SQLite."""
        if self.connection is None:
            self.connection = await aiosqlite.connect(self.db_path)
            await self.connection.execute("PRAGMA foreign_keys = ON")
            if self.db_path != ":memory:":
                await self.connection.execute("PRAGMA journal_mode = WAL")
            await self.connection.commit()

    async def initialize(self) -> None:
        """Initialize database schema and record the schema version."""
        await self.connect()

        try:
            await self.connection.executescript(SCHEMA)
            await self.connection.execute(
                """
                INSERT OR IGNORE INTO schema_migrations (version, applied_at, description)
                VALUES (?, ?, ?)
                """,
                (SCHEMA_VERSION, format_timestamp(datetime.now()), "Initial schema with FTS5"),
            )
            await self.connection.commit()
        except aiosqlite.Error as e:
            logger.error("Schema initialization failed: {}", e, extra={"db_path": self.db_path})
            raise StoreError(
                f"Schema initialization failed: {e}", context={"db_path": self.db_path}
            ) from e

        logger.debug("Record store initialized", extra={"db_path": self.db_path})

    async def close(self) -> None:
        """Close the connection."""
        if self.connection is not None:
            await self.connection.close()
            self.connection = None

    # ═══════════════════════════════════════════════════════════
    # LOOKUPS
    # ═══════════════════════════════════════════════════════════

    async def get_insight(self, insight_id: str) -> Insight | None:
        """Retrieve an insight by ID."""
        rows = await self._fetch(
            f"SELECT {', '.join(INSIGHT_COLUMNS)} FROM insights WHERE id = ?", [insight_id]
        )
        return self._row_to_insight(rows[0]) if rows else None

    async def get_insights(self, insight_ids: list[str]) -> list[Insight]:
        """Retrieve several insights by ID."""
        if not insight_ids:
            return []
        ids = list(dict.fromkeys(insight_ids))
        rows = await self._fetch(
            f"SELECT {', '.join(INSIGHT_COLUMNS)} FROM insights "
            f"WHERE id IN ({_placeholders(ids)})",
            ids,
        )
        return [self._row_to_insight(row) for row in rows]

    async def get_task(self, task_id: str) -> Task | None:
        """Retrieve a task by ID."""
        rows = await self._fetch(
            f"SELECT {', '.join(TASK_COLUMNS)} FROM tasks WHERE id = ?", [task_id]
        )
        return self._row_to_task(rows[0]) if rows else None

    async def get_tasks(self, task_ids: list[str]) -> list[Task]:
        """Retrieve several tasks by ID."""
        if not task_ids:
            return []
        ids = list(dict.fromkeys(task_ids))
        rows = await self._fetch(
            f"SELECT {', '.join(TASK_COLUMNS)} FROM tasks WHERE id IN ({_placeholders(ids)})",
            ids,
        )
        return [self._row_to_task(row) for row in rows]

    async def list_insight_ids(self) -> list[str]:
        rows = await self._fetch("SELECT id FROM insights ORDER BY id", [])
        return [row[0] for row in rows]

    async def list_task_ids(self) -> list[str]:
        rows = await self._fetch("SELECT id FROM tasks ORDER BY id", [])
        return [row[0] for row in rows]

    # ═══════════════════════════════════════════════════════════
    # QUERIES
    # ═══════════════════════════════════════════════════════════

    async def query_insights(
        self, filters: RecordFilters | None = None, limit: int | None = 100
    ) -> list[Insight]:
        """Query insights with structural filters, newest first."""
        clauses, params = self._filter_clauses(filters, EntityKind.INSIGHT)
        query = f"SELECT {', '.join(INSIGHT_COLUMNS)} FROM insights WHERE 1=1"
        query += "".join(f" AND {clause}" for clause in clauses)
        query += " ORDER BY created_at DESC, id ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        rows = await self._fetch(query, params)
        return [self._row_to_insight(row) for row in rows]

    async def query_tasks(
        self, filters: RecordFilters | None = None, limit: int | None = 100
    ) -> list[Task]:
        """Query tasks with structural filters, newest first."""
        clauses, params = self._filter_clauses(filters, EntityKind.TASK)
        query = f"SELECT {', '.join(TASK_COLUMNS)} FROM tasks WHERE 1=1"
        query += "".join(f" AND {clause}" for clause in clauses)
        query += " ORDER BY created_at DESC, id ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        rows = await self._fetch(query, params)
        return [self._row_to_task(row) for row in rows]

    async def search_insights(
        self, query: SearchQuery, filters: RecordFilters | None = None, limit: int = 100
    ) -> list[Insight]:
        """Full-text search over insights, ranked by bm25."""
        match = build_fts_query(query)
        if not match:
            return await self.query_insights(filters, limit)

        clauses, params = self._filter_clauses(filters, EntityKind.INSIGHT, alias="i")
        sql = (
            f"SELECT {', '.join('i.' + c for c in INSIGHT_COLUMNS)} "
            "FROM insights_fts JOIN insights i ON i.rowid = insights_fts.rowid "
            "WHERE insights_fts MATCH ?"
        )
        sql += "".join(f" AND {clause}" for clause in clauses)
        sql += " ORDER BY insights_fts.rank LIMIT ?"

        rows = await self._fetch(sql, [match, *params, limit])
        return [self._row_to_insight(row) for row in rows]

    async def search_tasks(
        self, query: SearchQuery, filters: RecordFilters | None = None, limit: int = 100
    ) -> list[Task]:
        """Full-text search over tasks, ranked by bm25."""
        match = build_fts_query(query)
        if not match:
            return await self.query_tasks(filters, limit)

        clauses, params = self._filter_clauses(filters, EntityKind.TASK, alias="t")
        sql = (
            f"SELECT {', '.join('t.' + c for c in TASK_COLUMNS)} "
            "FROM tasks_fts JOIN tasks t ON t.rowid = tasks_fts.rowid "
            "WHERE tasks_fts MATCH ?"
        )
        sql += "".join(f" AND {clause}" for clause in clauses)
        sql += " ORDER BY tasks_fts.rank LIMIT ?"

        rows = await self._fetch(sql, [match, *params, limit])
        return [self._row_to_task(row) for row in rows]

    # ═══════════════════════════════════════════════════════════
    # TIME WINDOWS
    # ═══════════════════════════════════════════════════════════

    async def get_records_before(
        self, timestamp: datetime, limit: int, kinds: list[EntityKind] | None = None
    ) -> list[Record]:
        """Records created strictly before timestamp, nearest first."""
        if limit <= 0:
            return []
        records = await self._window("created_at < ?", "DESC", timestamp, limit, kinds)
        records.sort(key=lambda r: r.id)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    async def get_records_at(
        self, timestamp: datetime, kinds: list[EntityKind] | None = None
    ) -> list[Record]:
        """Records created exactly at timestamp."""
        records = await self._window("created_at = ?", "ASC", timestamp, None, kinds)
        records.sort(key=lambda r: r.id)
        return records

    async def get_records_after(
        self, timestamp: datetime, limit: int, kinds: list[EntityKind] | None = None
    ) -> list[Record]:
        """Records created strictly after timestamp, nearest first."""
        if limit <= 0:
            return []
        records = await self._window("created_at > ?", "ASC", timestamp, limit, kinds)
        records.sort(key=lambda r: (r.created_at, r.id))
        return records[:limit]

    async def _window(
        self,
        condition: str,
        direction: str,
        timestamp: datetime,
        limit: int | None,
        kinds: list[EntityKind] | None,
    ) -> list[Record]:
        kinds = kinds or [EntityKind.INSIGHT, EntityKind.TASK]
        suffix = f" ORDER BY created_at {direction}, id ASC"
        if limit is not None:
            suffix += f" LIMIT {int(limit)}"
        ts = format_timestamp(timestamp)

        records: list[Record] = []
        if EntityKind.INSIGHT in kinds:
            rows = await self._fetch(
                f"SELECT {', '.join(INSIGHT_COLUMNS)} FROM insights WHERE {condition}{suffix}",
                [ts],
            )
            records.extend(self._row_to_insight(row) for row in rows)
        if EntityKind.TASK in kinds:
            rows = await self._fetch(
                f"SELECT {', '.join(TASK_COLUMNS)} FROM tasks WHERE {condition}{suffix}", [ts]
            )
            records.extend(self._row_to_task(row) for row in rows)
        return records

    # ═══════════════════════════════════════════════════════════
    # WRITES
    # ═══════════════════════════════════════════════════════════

    async def insert_insight(self, insight: Insight) -> None:
        """Insert a new insight."""
        await self.connect()
        try:
            await self.connection.execute(
                f"INSERT INTO insights ({', '.join(INSIGHT_COLUMNS)}) "
                f"VALUES ({_placeholders(INSIGHT_COLUMNS)})",
                self._insight_params(insight),
            )
            await self.connection.commit()
        except aiosqlite.IntegrityError as e:
            await self.connection.rollback()
            raise StoreError(
                f"Insight already exists: {insight.id}", context={"id": insight.id}
            ) from e

    async def update_insight(self, insight: Insight) -> None:
        """Update an existing insight in place."""
        await self.connect()
        assignments = ", ".join(f"{c} = ?" for c in INSIGHT_COLUMNS[1:])
        params = self._insight_params(insight)
        cursor = await self.connection.execute(
            f"UPDATE insights SET {assignments} WHERE id = ?", (*params[1:], insight.id)
        )
        await self.connection.commit()
        if cursor.rowcount == 0:
            raise StoreError(f"Insight not found: {insight.id}", context={"id": insight.id})

    async def insert_task(self, task: Task) -> None:
        """Insert a new task."""
        await self.connect()
        try:
            await self.connection.execute(
                f"INSERT INTO tasks ({', '.join(TASK_COLUMNS)}) "
                f"VALUES ({_placeholders(TASK_COLUMNS)})",
                self._task_params(task),
            )
            await self.connection.commit()
        except aiosqlite.IntegrityError as e:
            await self.connection.rollback()
            raise StoreError(f"Task already exists: {task.id}", context={"id": task.id}) from e

    async def update_task(self, task: Task) -> None:
        """Update an existing task in place."""
        await self.connect()
        assignments = ", ".join(f"{c} = ?" for c in TASK_COLUMNS[1:])
        params = self._task_params(task)
        cursor = await self.connection.execute(
            f"UPDATE tasks SET {assignments} WHERE id = ?", (*params[1:], task.id)
        )
        await self.connection.commit()
        if cursor.rowcount == 0:
            raise StoreError(f"Task not found: {task.id}", context={"id": task.id})

    async def bulk_insert_insights(self, insights: list[Insight]) -> BulkInsertResult:
        """Insert insights in one transaction, skipping existing IDs."""
        return await self._bulk_insert(
            "insights", INSIGHT_COLUMNS, [(i.id, self._insight_params(i)) for i in insights]
        )

    async def bulk_insert_tasks(self, tasks: list[Task]) -> BulkInsertResult:
        """Insert tasks in one transaction, skipping existing IDs."""
        return await self._bulk_insert(
            "tasks", TASK_COLUMNS, [(t.id, self._task_params(t)) for t in tasks]
        )

    async def _bulk_insert(
        self, table: str, columns: tuple[str, ...], rows: list[tuple[str, tuple]]
    ) -> BulkInsertResult:
        await self.connect()
        result = BulkInsertResult()
        sql = (
            f"INSERT OR IGNORE INTO {table} ({', '.join(columns)}) "
            f"VALUES ({_placeholders(columns)})"
        )

        try:
            for record_id, params in rows:
                cursor = await self.connection.execute(sql, params)
                if cursor.rowcount == 1:
                    result.inserted.append(record_id)
                else:
                    result.skipped.append(record_id)
            await self.connection.commit()
        except aiosqlite.Error as e:
            await self.connection.rollback()
            logger.error(
                "Bulk insert into {} failed: {}", table, e, extra={"rows": len(rows)}
            )
            raise StoreError(f"Bulk insert into {table} failed: {e}", context={"table": table}) from e

        logger.debug(
            "Bulk insert into {}",
            table,
            extra={"inserted": result.inserted_count, "skipped": result.skipped_count},
        )
        return result

    # ═══════════════════════════════════════════════════════════
    # UTILITY METHODS
    # ═══════════════════════════════════════════════════════════

    async def count_insights(self) -> int:
        rows = await self._fetch("SELECT COUNT(*) FROM insights", [])
        return rows[0][0] if rows else 0

    async def count_tasks(self) -> int:
        rows = await self._fetch("SELECT COUNT(*) FROM tasks", [])
        return rows[0][0] if rows else 0

    async def has_full_text_index(self) -> bool:
        """Check that both FTS5 tables exist."""
        rows = await self._fetch(
            f"SELECT name FROM sqlite_master WHERE name IN ({_placeholders(FTS_TABLES)})",
            list(FTS_TABLES),
        )
        return len(rows) == len(FTS_TABLES)

    async def get_schema_version(self) -> int:
        """Applied schema version, 0 when the migrations table is missing."""
        tables = await self._fetch(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'schema_migrations'",
            [],
        )
        if not tables:
            return 0
        rows = await self._fetch("SELECT MAX(version) FROM schema_migrations", [])
        return rows[0][0] or 0

    # ═══════════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════════

    async def _fetch(self, query: str, params: list[Any]) -> list[tuple]:
        await self.connect()
        try:
            cursor = await self.connection.execute(query, params)
            return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise StoreError(f"Query failed: {e}", context={"query": query}) from e

    def _filter_clauses(
        self, filters: RecordFilters | None, kind: EntityKind, alias: str = ""
    ) -> tuple[list[str], list[Any]]:
        """
        Translate structural filters into SQL.

        Type and tag filters only constrain insights, priority filters only
        constrain tasks. Status filters apply to both.
        """
        clauses: list[str] = []
        params: list[Any] = []
        if filters is None:
            return clauses, params

        p = f"{alias}." if alias else ""

        if kind == EntityKind.INSIGHT and filters.types:
            types = [_normalize_token(t) for t in filters.types]
            clauses.append(f"{p}type IN ({_placeholders(types)})")
            params.extend(types)

        if filters.statuses:
            statuses = [_normalize_token(s) for s in filters.statuses]
            clauses.append(f"LOWER({p}status) IN ({_placeholders(statuses)})")
            params.extend(statuses)

        if kind == EntityKind.INSIGHT and filters.tags:
            tags = [t.strip().lower() for t in filters.tags]
            clauses.append(
                f"EXISTS (SELECT 1 FROM json_each({p}tags) "
                f"WHERE LOWER(json_each.value) IN ({_placeholders(tags)}))"
            )
            params.extend(tags)

        if kind == EntityKind.TASK and filters.priorities:
            priorities = [value.strip().lower() for value in filters.priorities]
            clauses.append(f"LOWER({p}priority) IN ({_placeholders(priorities)})")
            params.extend(priorities)

        if filters.created_after:
            clauses.append(f"{p}created_at > ?")
            params.append(format_timestamp(filters.created_after))

        if filters.created_before:
            clauses.append(f"{p}created_at < ?")
            params.append(format_timestamp(filters.created_before))

        return clauses, params

    def _insight_params(self, insight: Insight) -> tuple:
        return (
            insight.id,
            insight.content,
            insight.summary,
            insight.type.value,
            insight.status.value,
            json.dumps(insight.tags),
            json.dumps(insight.links),
            insight.source.model_dump_json(exclude_none=True) if insight.source else None,
            insight.notes,
            format_timestamp(insight.created_at),
            format_timestamp(insight.updated_at),
        )

    def _task_params(self, task: Task) -> tuple:
        return (
            task.id,
            task.title,
            task.description,
            task.summary,
            task.status.value,
            task.priority.value,
            json.dumps(task.depends_on),
            json.dumps(task.acceptance_criteria),
            task.test_file,
            task.notes,
            format_timestamp(task.created_at),
            format_timestamp(task.updated_at),
            format_timestamp(task.completed_at) if task.completed_at else None,
        )

    def _row_to_insight(self, row: tuple) -> Insight:
        """Convert database row to Insight object."""
        data = dict(zip(INSIGHT_COLUMNS, row))
        return Insight(
            id=data["id"],
            content=data["content"],
            summary=data["summary"],
            type=data["type"],
            status=data["status"],
            tags=json.loads(data["tags"]) if data["tags"] else [],
            links=json.loads(data["links"]) if data["links"] else [],
            source=json.loads(data["source"]) if data["source"] else None,
            notes=data["notes"],
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
        )

    def _row_to_task(self, row: tuple) -> Task:
        """Convert database row to Task object."""
        data = dict(zip(TASK_COLUMNS, row))
        return Task(
            id=data["id"],
            title=data["title"],
            description=data["description"],
            summary=data["summary"],
            status=data["status"],
            priority=data["priority"],
            depends_on=json.loads(data["depends_on"]) if data["depends_on"] else [],
            acceptance_criteria=(
                json.loads(data["acceptance_criteria"]) if data["acceptance_criteria"] else []
            ),
            test_file=data["test_file"],
            notes=data["notes"],
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
            completed_at=parse_timestamp(data["completed_at"]),
        )
