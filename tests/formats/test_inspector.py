"""
Tests for read-only artifact inspection.
"""

import json

import pytest

from loopflow.core.formats.detector import detect_format
from loopflow.core.formats.inspector import inspect_artifacts, locate_flat_file
from loopflow.core.storage.sqlite_store import SQLiteRecordStore
from loopflow.models.formats import FormatGeneration
from loopflow.utils.exceptions import ValidationError
from loopflow.utils.id_generator import repo_hash


@pytest.fixture
def root(tmp_path):
    """Empty artifact directory inside a fake repository."""
    artifact_root = tmp_path / "repo" / ".loop-flow"
    artifact_root.mkdir(parents=True)
    return artifact_root


@pytest.mark.integration
@pytest.mark.asyncio
class TestInspectArtifacts:
    """Tests for inspect_artifacts."""

    async def test_empty_root(self, root):
        """Test an empty directory yields an empty state."""
        state = await inspect_artifacts(root)

        assert state.insights is None
        assert state.tasks is None
        assert state.database_exists is False
        assert state.db_path == root / "loopflow.db"
        assert detect_format(state).generation == FormatGeneration.EMPTY

    async def test_reads_flat_files(self, root):
        """Test records, schema version and meta are read."""
        (root / "insights.json").write_text(
            json.dumps(
                {
                    "schema_version": "2.0",
                    "exported_at": "2024-01-15T00:00:00",
                    "insights": [{"id": "INS-001", "content": "x"}],
                }
            )
        )
        (root / "backlog.json").write_text(
            json.dumps({"project": "demo", "tasks": [{"id": "LF-001", "title": "y"}]})
        )

        state = await inspect_artifacts(root)

        assert state.insights == [{"id": "INS-001", "content": "x"}]
        assert state.insights_schema_version == "2.0"
        assert state.insights_meta == {"exported_at": "2024-01-15T00:00:00"}
        assert state.tasks == [{"id": "LF-001", "title": "y"}]
        assert state.backlog_meta == {"project": "demo"}
        assert detect_format(state).generation == FormatGeneration.LEGACY

    async def test_plan_directory(self, root):
        """Test flat files under plan/ are found."""
        plan = root / "plan"
        plan.mkdir()
        (plan / "backlog.json").write_text(json.dumps({"tasks": []}))

        state = await inspect_artifacts(root)

        assert state.backlog_path == plan / "backlog.json"
        assert locate_flat_file(root, "backlog.json") == plan / "backlog.json"
        assert locate_flat_file(root, "insights.json") is None

    async def test_malformed_json(self, root):
        """Test unparseable files raise ValidationError."""
        (root / "insights.json").write_text("{not json")

        with pytest.raises(ValidationError):
            await inspect_artifacts(root)

    async def test_reads_database(self, root, make_insight, make_task):
        """Test tables and IDs are read from an existing database."""
        store = SQLiteRecordStore(db_path=str(root / "loopflow.db"))
        await store.initialize()
        await store.insert_insight(make_insight("a00001", "Retries need jitter."))
        await store.insert_task(make_task("t00001", "Add jitter"))
        await store.close()

        state = await inspect_artifacts(root)

        assert state.database_exists is True
        assert {"insights", "tasks", "insights_fts", "tasks_fts"} <= set(state.database_tables)
        assert state.database_insight_ids == ["INS-20240115-a00001"]
        assert state.database_task_ids == ["TASK-20240115-t00001"]
        assert detect_format(state).generation == FormatGeneration.CURRENT

    async def test_repo_hash(self, root, tmp_path):
        """Test the namespace defaults to the repository directory."""
        default_state = await inspect_artifacts(root)
        explicit_state = await inspect_artifacts(root, repo_path=tmp_path / "elsewhere")

        assert default_state.repo_hash == repo_hash(root.parent)
        assert explicit_state.repo_hash == repo_hash(tmp_path / "elsewhere")
