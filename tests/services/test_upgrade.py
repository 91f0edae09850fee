"""
Tests for format upgrade, backup and rollback.
"""

import json
from datetime import datetime

import pytest

from loopflow.config import Config, UpgradeConfig
from loopflow.core.formats.inspector import inspect_artifacts
from loopflow.core.storage.sqlite_store import SQLiteRecordStore
from loopflow.models.formats import FormatGeneration, FormatState
from loopflow.services.upgrade import (
    INTERMEDIATE_TO_CURRENT,
    LEGACY_TO_INTERMEDIATE,
    QUARANTINE_KEY,
    UpgradeService,
    list_backups,
)
from loopflow.utils.id_generator import is_valid_id, migrate_legacy_id

LEGACY_INSIGHTS = {
    "description": "Project insights",
    "insights": [
        {
            "id": "INS-001",
            "content": "Retries need jitter so clients do not stampede a recovering service.",
            "type": "technical",
            "tags": ["network"],
            "links": ["INS-002"],
            "created": "2024-01-10",
        },
        {
            "id": "INS-002",
            "content": "Thundering herd after outages",
            "type": "domain",
            "created": "2024-01-11",
        },
    ],
}

LEGACY_BACKLOG = {
    "project": "demo",
    "last_updated": "2024-01-12",
    "tasks": [
        {"id": "LF-001", "title": "Add retry jitter", "status": "DONE", "created": "2024-01-09"},
        {"id": "LF-002", "title": "Load test the retry path", "depends_on": ["LF-001"]},
    ],
}


@pytest.fixture
def repo(tmp_path):
    return tmp_path / "repo"


@pytest.fixture
def root(repo):
    """Artifact root holding legacy flat files."""
    artifact_root = repo / ".loop-flow"
    artifact_root.mkdir(parents=True)
    (artifact_root / "insights.json").write_text(json.dumps(LEGACY_INSIGHTS, indent=2))
    (artifact_root / "backlog.json").write_text(json.dumps(LEGACY_BACKLOG, indent=2))
    return artifact_root


@pytest.fixture
async def legacy_state(root, repo) -> FormatState:
    return await inspect_artifacts(root, repo_path=repo)


@pytest.fixture
def service(config) -> UpgradeService:
    return UpgradeService(config=config)


async def _read_db(state: FormatState):
    store = SQLiteRecordStore(db_path=str(state.db_path))
    await store.initialize()
    try:
        return (
            await store.query_insights(limit=None),
            await store.query_tasks(limit=None),
        )
    finally:
        await store.close()


@pytest.mark.unit
class TestPlanUpgrade:
    """Tests for plan_upgrade."""

    async def test_legacy_plan(self, service, legacy_state):
        """Test legacy state plans both steps in order."""
        steps = service.plan_upgrade(legacy_state)

        assert [s.name for s in steps] == [LEGACY_TO_INTERMEDIATE, INTERMEDIATE_TO_CURRENT]
        assert steps[0].from_generation == FormatGeneration.LEGACY
        assert steps[-1].to_generation == FormatGeneration.CURRENT
        assert steps[0].estimated_items == 4

    async def test_partial_target(self, service, legacy_state):
        """Test stopping at the intermediate generation."""
        steps = service.plan_upgrade(legacy_state, FormatGeneration.INTERMEDIATE)

        assert [s.name for s in steps] == [LEGACY_TO_INTERMEDIATE]

    def test_empty_state(self, service):
        """Test nothing stored means nothing to plan."""
        assert service.plan_upgrade(FormatState()) == []


@pytest.mark.integration
@pytest.mark.asyncio
class TestExecuteUpgrade:
    """Tests for execute_upgrade."""

    async def test_full_upgrade(self, service, legacy_state):
        """Test legacy files end up in a complete, indexed database."""
        result = await service.execute_upgrade(legacy_state)

        assert result.success is True
        assert result.from_generation == FormatGeneration.LEGACY
        assert result.to_generation == FormatGeneration.CURRENT
        assert result.backup_path is not None and result.backup_path.is_dir()
        assert result.errors == []
        assert result.steps[0].counts["insight"].migrated == 2
        assert result.steps[0].counts["task"].migrated == 2
        assert result.steps[1].counts["insight"].migrated == 2
        assert result.steps[1].counts["task"].migrated == 2

        insights, tasks = await _read_db(legacy_state)
        assert len(insights) == 2
        assert len(tasks) == 2
        assert all(is_valid_id(record.id) for record in [*insights, *tasks])

    async def test_deterministic_ids_and_links(self, service, legacy_state):
        """Test IDs derive from legacy ID, creation date and repo namespace."""
        result = await service.execute_upgrade(legacy_state)

        mapping = result.steps[0].id_mapping
        ins_1 = migrate_legacy_id("INS-001", datetime(2024, 1, 10), legacy_state.repo_hash)
        ins_2 = migrate_legacy_id("INS-002", datetime(2024, 1, 11), legacy_state.repo_hash)
        lf_1 = migrate_legacy_id("LF-001", datetime(2024, 1, 9), legacy_state.repo_hash)
        # No creation date: falls back to the backlog's last_updated
        lf_2 = migrate_legacy_id("LF-002", datetime(2024, 1, 12), legacy_state.repo_hash)
        assert mapping == {"INS-001": ins_1, "INS-002": ins_2, "LF-001": lf_1, "LF-002": lf_2}
        assert lf_1.startswith("TASK-20240109-")

        insights, tasks = await _read_db(legacy_state)
        by_id = {record.id: record for record in [*insights, *tasks]}
        assert by_id[ins_1].links == [ins_2]
        assert by_id[ins_1].source.original_id == "INS-001"
        assert by_id[lf_2].depends_on == [lf_1]
        assert by_id[lf_2].created_at == datetime(2024, 1, 12)

    async def test_summaries_derived(self, service, legacy_state):
        """Test long content gains a summary and short content stays null."""
        await service.execute_upgrade(legacy_state)

        insights, _ = await _read_db(legacy_state)
        summaries = {i.source.original_id: i.summary for i in insights}
        assert summaries["INS-002"] is None
        assert summaries["INS-001"] is None or len(summaries["INS-001"]) <= 100

    async def test_flat_files_rewritten(self, service, legacy_state, root):
        """Test flat files become intermediate views with preserved metadata."""
        await service.execute_upgrade(legacy_state)

        insights_file = json.loads((root / "insights.json").read_text())
        backlog_file = json.loads((root / "backlog.json").read_text())
        assert insights_file["schema_version"] == "2.0"
        assert all("summary" in record for record in insights_file["insights"])
        assert backlog_file["project"] == "demo"
        assert all(is_valid_id(task["id"]) for task in backlog_file["tasks"])

    async def test_rerun_is_noop(self, service, legacy_state, root, repo):
        """Test a second run finds nothing to migrate."""
        await service.execute_upgrade(legacy_state)
        state = await inspect_artifacts(root, repo_path=repo)

        result = await service.execute_upgrade(state)

        assert result.success is True
        assert result.steps == []
        assert result.total_migrated == 0
        assert result.from_generation == FormatGeneration.CURRENT

    async def test_partially_applied_steps_skip(self, service, legacy_state, root, repo):
        """Test re-running after stopping at intermediate only runs the remaining step."""
        await service.execute_upgrade(legacy_state, FormatGeneration.INTERMEDIATE)
        state = await inspect_artifacts(root, repo_path=repo)

        result = await service.execute_upgrade(state)

        assert [s.step.name for s in result.steps] == [INTERMEDIATE_TO_CURRENT]
        assert result.to_generation == FormatGeneration.CURRENT

    async def test_intermediate_only(self, service, legacy_state):
        """Test a partial target leaves no database behind."""
        result = await service.execute_upgrade(legacy_state, FormatGeneration.INTERMEDIATE)

        assert result.success is True
        assert result.to_generation == FormatGeneration.INTERMEDIATE
        assert not legacy_state.db_path.exists()

    async def test_invalid_records_quarantined(self, service, root, repo):
        """Test invalid records are kept aside while valid ones migrate."""
        data = json.loads((root / "insights.json").read_text())
        data["insights"].append({"id": "INS-003", "type": "technical"})
        (root / "insights.json").write_text(json.dumps(data))
        state = await inspect_artifacts(root, repo_path=repo)

        result = await service.execute_upgrade(state)

        assert result.success is True
        assert result.steps[0].counts["insight"].errored == 1
        assert any(issue.field == "content" for issue in result.errors)
        rewritten = json.loads((root / "insights.json").read_text())
        assert rewritten[QUARANTINE_KEY] == [{"id": "INS-003", "type": "technical"}]
        insights, _ = await _read_db(state)
        assert len(insights) == 2

    async def test_malformed_timestamp_alias_quarantined(self, service, root, repo):
        """Test a bad created_at becomes an issue instead of aborting the upgrade."""
        data = json.loads((root / "insights.json").read_text())
        data["insights"].append(
            {"id": "INS-003", "content": "bad record", "created_at": "not-a-date"}
        )
        (root / "insights.json").write_text(json.dumps(data))
        state = await inspect_artifacts(root, repo_path=repo)

        result = await service.execute_upgrade(state)

        assert result.success is True
        assert result.to_generation == FormatGeneration.CURRENT
        assert [issue.field for issue in result.errors] == ["created_at"]
        assert result.steps[0].counts["insight"].errored == 1
        insights, _ = await _read_db(state)
        assert sorted(i.source.original_id for i in insights) == ["INS-001", "INS-002"]

    async def test_braces_in_invalid_id(self, service, root, repo):
        """Test record IDs containing format braces are reported like any other."""
        data = json.loads((root / "insights.json").read_text())
        data["insights"].append({"id": "note-{0}-{x}", "type": "technical"})
        (root / "insights.json").write_text(json.dumps(data))
        state = await inspect_artifacts(root, repo_path=repo)

        result = await service.execute_upgrade(state)

        assert result.success is True
        assert {issue.record_id for issue in result.errors} == {"note-{0}-{x}"}

    async def test_without_backup(self, service, legacy_state, root):
        """Test backups can be turned off per call."""
        result = await service.execute_upgrade(legacy_state, create_backup=False)

        assert result.success is True
        assert result.backup_path is None
        assert list_backups(root) == []

    async def test_backup_disabled_in_config(self, legacy_state, root):
        """Test the configured default applies when the call does not say."""
        service = UpgradeService(config=Config(upgrade=UpgradeConfig(create_backup=False)))

        result = await service.execute_upgrade(legacy_state)

        assert result.backup_path is None

    async def test_backup_failure_aborts(self, service, tmp_path):
        """Test a failed backup leaves everything untouched and reports failure."""
        state = FormatState(
            root=tmp_path / "missing",
            insights=[{"id": "INS-001", "content": "x"}],
        )

        result = await service.execute_upgrade(state)

        assert result.success is False
        assert result.error.startswith("Backup failed")
        assert result.steps == []
        assert not (tmp_path / "missing").exists()

    async def test_progress_callback(self, service, legacy_state):
        """Test progress is reported per record, then per batch."""
        calls = []

        await service.execute_upgrade(
            legacy_state, on_progress=lambda step, done, total: calls.append((step.name, done, total))
        )

        assert calls[:4] == [
            (LEGACY_TO_INTERMEDIATE, 1, 4),
            (LEGACY_TO_INTERMEDIATE, 2, 4),
            (LEGACY_TO_INTERMEDIATE, 3, 4),
            (LEGACY_TO_INTERMEDIATE, 4, 4),
        ]
        assert calls[-1] == (INTERMEDIATE_TO_CURRENT, 4, 4)

    async def test_nothing_to_upgrade(self, service, tmp_path):
        """Test an empty root succeeds without steps or backup."""
        empty_root = tmp_path / "empty"
        empty_root.mkdir()
        state = await inspect_artifacts(empty_root)

        result = await service.execute_upgrade(state)

        assert result.success is True
        assert result.from_generation == FormatGeneration.EMPTY
        assert result.backup_path is None


@pytest.mark.integration
@pytest.mark.asyncio
class TestBackupAndRollback:
    """Tests for create_backup, rollback and list_backups."""

    async def test_rollback_restores_files(self, service, legacy_state, root, repo):
        """Test rollback brings back the legacy files and removes the new database."""
        original_insights = (root / "insights.json").read_text()
        original_backlog = (root / "backlog.json").read_text()
        result = await service.execute_upgrade(legacy_state)

        restored = service.rollback(legacy_state, result.backup_path)

        assert restored is True
        assert (root / "insights.json").read_text() == original_insights
        assert (root / "backlog.json").read_text() == original_backlog
        assert not legacy_state.db_path.exists()
        state = await inspect_artifacts(root, repo_path=repo)
        assert state.database_exists is False
        assert state.insights == LEGACY_INSIGHTS["insights"]

    async def test_rollback_missing_backup(self, service, legacy_state, root):
        """Test a missing backup directory returns False."""
        assert service.rollback(legacy_state, root / "backups" / "nope") is False

    async def test_backup_copies_root(self, service, legacy_state, root):
        """Test the backup holds the artifact files and excludes earlier backups."""
        first = service.create_backup(legacy_state)
        second = service.create_backup(legacy_state)

        assert (first / "insights.json").read_text() == (root / "insights.json").read_text()
        assert not (second / "backups").exists()
        assert list_backups(root) == [second, first]

    def test_list_backups_without_directory(self, tmp_path):
        """Test a root without backups lists nothing."""
        assert list_backups(tmp_path) == []
