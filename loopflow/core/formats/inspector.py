"""
Read-only artifact inspection.

Builds the FormatState consumed by detection and upgrade. Nothing here
writes: the database is opened read-only and flat files are only parsed.
"""

import json
from pathlib import Path

import aiosqlite

from loopflow.core.formats.transforms import split_backlog_file, split_insights_file
from loopflow.models.formats import FormatState
from loopflow.utils.exceptions import ValidationError
from loopflow.utils.id_generator import repo_hash
from loopflow.utils.logger import get_logger

logger = get_logger(__name__)

INSIGHTS_FILE = "insights.json"
BACKLOG_FILE = "backlog.json"
DATABASE_FILE = "loopflow.db"
PLAN_DIR = "plan"


def locate_flat_file(root: Path, name: str) -> Path | None:
    """Find a flat file at the root or under root/plan."""
    for candidate in (root / name, root / PLAN_DIR / name):
        if candidate.is_file():
            return candidate
    return None


def _load_json(path: Path):
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(
            f"Malformed JSON in {path.name}: {e}",
            errors=[{"field": "*", "message": str(e)}],
            context={"path": str(path)},
        ) from e


async def _read_database(db_path: Path) -> tuple[list[str], list[str], list[str]]:
    """Return (table names, insight IDs, task IDs) without modifying the file."""
    uri = f"{db_path.resolve().as_uri()}?mode=ro"
    async with aiosqlite.connect(uri, uri=True) as db:
        cursor = await db.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        tables = sorted(row[0] for row in await cursor.fetchall())

        insight_ids: list[str] = []
        task_ids: list[str] = []
        if "insights" in tables:
            cursor = await db.execute("SELECT id FROM insights")
            insight_ids = [row[0] for row in await cursor.fetchall()]
        if "tasks" in tables:
            cursor = await db.execute("SELECT id FROM tasks")
            task_ids = [row[0] for row in await cursor.fetchall()]

    return tables, insight_ids, task_ids


async def inspect_artifacts(
    root: str | Path,
    repo_path: str | Path | None = None,
    db_path: str | Path | None = None,
) -> FormatState:
    """
    Read a store's artifacts into a FormatState.

    Args:
        root: Artifact directory (usually <repo>/.loop-flow)
        repo_path: Repository path for the migration namespace (default: root's parent)
        db_path: Database path (default: root/loopflow.db)

    Returns:
        FormatState describing what was found

    Raises:
        ValidationError: If a flat file is not valid JSON or has the wrong shape
    """
    root = Path(root)
    state = FormatState(
        root=root,
        repo_hash=repo_hash(repo_path if repo_path is not None else root.resolve().parent),
        db_path=Path(db_path) if db_path is not None else root / DATABASE_FILE,
    )

    insights_path = locate_flat_file(root, INSIGHTS_FILE)
    if insights_path is not None:
        records, version, meta = split_insights_file(_load_json(insights_path))
        state.insights_path = insights_path
        state.insights = records
        state.insights_schema_version = version
        state.insights_meta = meta

    backlog_path = locate_flat_file(root, BACKLOG_FILE)
    if backlog_path is not None:
        records, meta = split_backlog_file(_load_json(backlog_path))
        state.backlog_path = backlog_path
        state.tasks = records
        state.backlog_meta = meta

    if state.db_path.is_file():
        tables, insight_ids, task_ids = await _read_database(state.db_path)
        state.database_exists = True
        state.database_tables = tables
        state.database_insight_ids = insight_ids
        state.database_task_ids = task_ids

    logger.debug(
        "Inspected artifacts",
        extra={
            "root": str(root),
            "insights": len(state.insights or []),
            "tasks": len(state.tasks or []),
            "database": state.database_exists,
        },
    )
    return state
