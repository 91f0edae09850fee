"""
Format upgrade: LEGACY → INTERMEDIATE → CURRENT.

Each step is idempotent. Before a step runs, its target indicators are
re-checked against freshly inspected artifacts and the step is skipped if
they already hold. A full backup of the artifact root is written before
the first mutating step; without it nothing is touched.
"""

import json
import os
import shutil
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from loopflow.config import Config
from loopflow.core.formats.detector import (
    database_is_current,
    detect_format,
    get_upgrade_path,
    has_legacy_evidence,
)
from loopflow.core.formats.inspector import (
    BACKLOG_FILE,
    DATABASE_FILE,
    INSIGHTS_FILE,
    PLAN_DIR,
    inspect_artifacts,
)
from loopflow.core.formats.transforms import (
    INSIGHTS_FILE_SCHEMA_VERSION,
    generate_backlog_file,
    generate_insights_file,
    json_insight_to_record,
    json_task_to_record,
)
from loopflow.core.storage.base import RecordStore
from loopflow.core.storage.sqlite_store import SQLiteRecordStore
from loopflow.core.summarizer.base import Summarizer
from loopflow.core.summarizer.heuristic import HeuristicSummarizer
from loopflow.models.common import parse_timestamp
from loopflow.models.formats import FormatGeneration, FormatState, ValidationIssue
from loopflow.models.insight import Insight
from loopflow.models.task import Task
from loopflow.models.upgrade import EntityCounts, StepResult, UpgradeResult, UpgradeStep
from loopflow.utils.exceptions import BackupError, StoreError, UpgradeError, ValidationError
from loopflow.utils.id_generator import is_legacy_id, migrate_legacy_id
from loopflow.utils.logger import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[UpgradeStep, int, int], None]
StoreFactory = Callable[[Path], RecordStore]

LEGACY_TO_INTERMEDIATE = "legacy_to_intermediate"
INTERMEDIATE_TO_CURRENT = "intermediate_to_current"

STEP_DEFINITIONS = {
    (FormatGeneration.LEGACY, FormatGeneration.INTERMEDIATE): (
        LEGACY_TO_INTERMEDIATE,
        "Migrate sequential IDs to global IDs and derive summaries",
    ),
    (FormatGeneration.INTERMEDIATE, FormatGeneration.CURRENT): (
        INTERMEDIATE_TO_CURRENT,
        "Load flat-file records into the SQLite store with full-text index",
    ),
}

# Creation date for legacy records that carry none and whose files carry no date either
EPOCH_FALLBACK = datetime(1970, 1, 1)

QUARANTINE_KEY = "quarantine"
_GENERATED_KEYS = {"description", "exported_at", "source", "project", "last_updated", "notes"}


def _default_store_factory(db_path: Path) -> RecordStore:
    return SQLiteRecordStore(db_path=str(db_path))


def list_backups(root: str | Path, backup_dir_name: str = "backups") -> list[Path]:
    """Backup directories under root, newest first."""
    backup_root = Path(root) / backup_dir_name
    if not backup_root.is_dir():
        return []
    return sorted((p for p in backup_root.iterdir() if p.is_dir()), reverse=True)


def _conversion_issue(raw: Any, kind: str, error: ValueError) -> ValidationIssue:
    record_id = raw.get("id") if isinstance(raw, dict) else None
    return ValidationIssue(
        record_id=record_id if isinstance(record_id, str) else None,
        kind=kind,
        field="*",
        message=str(error),
    )


def _write_json(path: Path, data: dict[str, Any]) -> None:
    """Write JSON via a temp file and rename, so readers never see half a file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    os.replace(tmp, path)


class UpgradeService:
    """
    Plans and executes format upgrades with backup and rollback.

    Usage:
        state = await inspect_artifacts(".loop-flow")
        service = UpgradeService(config)
        result = await service.execute_upgrade(state)
        if not result.success and result.backup_path:
            service.rollback(state, result.backup_path)
    """

    def __init__(
        self,
        config: Config,
        summarizer: Summarizer | None = None,
        store_factory: StoreFactory | None = None,
    ):
        """
        Initialize upgrade service.

        Args:
            config: Configuration object
            summarizer: Summary rule for records lacking one (heuristic by default)
            store_factory: Builds the target store for a database path
        """
        self.config = config
        self.summarizer = summarizer or HeuristicSummarizer(config.summary)
        self.store_factory = store_factory or _default_store_factory

        self._runners: dict[
            str,
            Callable[
                [UpgradeStep, FormatState, ProgressCallback | None],
                Awaitable[StepResult],
            ],
        ] = {
            LEGACY_TO_INTERMEDIATE: self._legacy_to_intermediate,
            INTERMEDIATE_TO_CURRENT: self._intermediate_to_current,
        }

    # ═══════════════════════════════════════════════════════════
    # PLANNING
    # ═══════════════════════════════════════════════════════════

    def plan_upgrade(
        self, state: FormatState, target: FormatGeneration | None = None
    ) -> list[UpgradeStep]:
        """
        Plan the steps from the detected generation to target.

        Args:
            state: Artifact summary
            target: Target generation (default: CURRENT)

        Returns:
            Ordered steps; empty if already at target or nothing is stored
        """
        target = target or FormatGeneration.CURRENT
        current = detect_format(state).generation
        path = get_upgrade_path(current, target)

        steps = []
        previous = current
        for generation in path:
            name, description = STEP_DEFINITIONS[(previous, generation)]
            steps.append(
                UpgradeStep(
                    name=name,
                    from_generation=previous,
                    to_generation=generation,
                    description=description,
                    estimated_items=state.flat_record_count,
                )
            )
            previous = generation
        return steps

    def _step_satisfied(self, step: UpgradeStep, state: FormatState) -> bool:
        if step.name == LEGACY_TO_INTERMEDIATE:
            return not has_legacy_evidence(state)
        if step.name == INTERMEDIATE_TO_CURRENT:
            return database_is_current(state)
        return False

    # ═══════════════════════════════════════════════════════════
    # EXECUTION
    # ═══════════════════════════════════════════════════════════

    async def execute_upgrade(
        self,
        state: FormatState,
        target: FormatGeneration | None = None,
        create_backup: bool | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> UpgradeResult:
        """
        Apply every planned step in order.

        Per-record problems are collected as ValidationIssues and the step
        continues. Only structural failures (backup not written, files or
        store unwritable) fail the run.

        Args:
            state: Artifact summary (from inspect_artifacts)
            target: Target generation (default: CURRENT)
            create_backup: Back up the artifact root first (default from config)
            on_progress: Called as on_progress(step, done, total)

        Returns:
            UpgradeResult
        """
        started_at = datetime.now()
        from_generation = detect_format(state).generation
        steps = self.plan_upgrade(state, target)

        if not steps:
            logger.info(
                "Nothing to upgrade",
                extra={"operation": "upgrade", "generation": from_generation.value},
            )
            return UpgradeResult(
                success=True,
                from_generation=from_generation,
                to_generation=from_generation,
                final_state=state,
                started_at=started_at,
                finished_at=datetime.now(),
            )

        if create_backup is None:
            create_backup = self.config.upgrade.create_backup

        backup_path = None
        if create_backup:
            try:
                backup_path = self.create_backup(state)
            except BackupError as e:
                logger.error(
                    "Backup failed, upgrade aborted: {}",
                    e.message,
                    extra={"operation": "upgrade", **e.context},
                )
                return UpgradeResult(
                    success=False,
                    from_generation=from_generation,
                    to_generation=from_generation,
                    final_state=state,
                    error=f"Backup failed: {e.message}",
                    started_at=started_at,
                    finished_at=datetime.now(),
                )

        logger.info(
            "Upgrading {} → {}",
            from_generation.value,
            steps[-1].to_generation.value,
            extra={
                "operation": "upgrade",
                "steps": [s.name for s in steps],
                "backup_path": str(backup_path) if backup_path else None,
            },
        )

        current = state
        results: list[StepResult] = []
        for step in steps:
            if self._step_satisfied(step, current):
                logger.info("Step {} already applied, skipping", step.name)
                results.append(StepResult(step=step, skipped=True))
                continue

            try:
                step_result = await self._runners[step.name](step, current, on_progress)
                current = await self._reinspect(current)
            except (UpgradeError, StoreError, ValidationError, OSError) as e:
                message = getattr(e, "message", str(e))
                logger.error(
                    "Step {} failed: {}",
                    step.name,
                    message,
                    extra={"operation": "upgrade", "step": step.name, "error": message},
                )
                results.append(StepResult(step=step, success=False, error=message))
                return UpgradeResult(
                    success=False,
                    from_generation=from_generation,
                    to_generation=detect_format(current).generation,
                    steps=results,
                    backup_path=backup_path,
                    final_state=current,
                    error=f"Step {step.name} failed: {message}",
                    started_at=started_at,
                    finished_at=datetime.now(),
                )

            results.append(step_result)
            logger.info(
                "Step {} complete",
                step.name,
                extra={
                    "step": step.name,
                    "counts": {k: v.model_dump() for k, v in step_result.counts.items()},
                    "issues": len(step_result.errors),
                },
            )

        result = UpgradeResult(
            success=True,
            from_generation=from_generation,
            to_generation=detect_format(current).generation,
            steps=results,
            backup_path=backup_path,
            final_state=current,
            started_at=started_at,
            finished_at=datetime.now(),
        )
        logger.info(
            "Upgrade complete",
            extra={
                "operation": "upgrade",
                "migrated": result.total_migrated,
                "issues": len(result.errors),
            },
        )
        return result

    async def _reinspect(self, state: FormatState) -> FormatState:
        if state.root is None:
            raise UpgradeError("Cannot re-read artifacts: state has no root directory")
        fresh = await inspect_artifacts(state.root, db_path=state.db_path)
        fresh.repo_hash = state.repo_hash
        return fresh

    # ═══════════════════════════════════════════════════════════
    # STEP: LEGACY → INTERMEDIATE
    # ═══════════════════════════════════════════════════════════

    async def _legacy_to_intermediate(
        self,
        step: UpgradeStep,
        state: FormatState,
        on_progress: ProgressCallback | None,
    ) -> StepResult:
        """
        Migrate legacy IDs and derive summaries, then rewrite the flat files.

        IDs are derived from (legacy ID, created date, repo hash), so a
        re-run produces the same IDs. Invalid records are moved to a
        quarantine list inside the same file rather than dropped.
        """
        if state.root is None:
            raise UpgradeError("Cannot rewrite flat files: state has no root directory")

        result = StepResult(step=step)
        fallback_created = self._fallback_created(state)
        total = state.flat_record_count
        done = 0

        insight_map: dict[str, str] = {}
        task_map: dict[str, str] = {}
        insights: list[Insight] = []
        tasks: list[Task] = []
        insight_quarantine: list[Any] = []
        task_quarantine: list[Any] = []
        insight_counts = EntityCounts()
        task_counts = EntityCounts()

        for raw in state.insights or []:
            record = self._migrate_record(
                raw, "insight", state.repo_hash, fallback_created, insight_map, insight_counts, result
            )
            if record is None:
                insight_quarantine.append(raw)
            else:
                insights.append(record)
            done += 1
            if on_progress:
                on_progress(step, done, total)

        for raw in state.tasks or []:
            record = self._migrate_record(
                raw, "task", state.repo_hash, fallback_created, task_map, task_counts, result
            )
            if record is None:
                task_quarantine.append(raw)
            else:
                tasks.append(record)
            done += 1
            if on_progress:
                on_progress(step, done, total)

        for insight in insights:
            insight.links = [insight_map.get(link, link) for link in insight.links]
        for task in tasks:
            task.depends_on = [task_map.get(dep, dep) for dep in task.depends_on]

        result.id_mapping = {**insight_map, **task_map}
        result.counts = {"insight": insight_counts, "task": task_counts}

        if state.insights is not None:
            path = state.insights_path or state.root / INSIGHTS_FILE
            extra = self._preserved_meta(state.insights_meta, insight_quarantine)
            _write_json(
                path,
                generate_insights_file(
                    insights, schema_version=INSIGHTS_FILE_SCHEMA_VERSION, extra=extra
                ),
            )

        if state.tasks is not None:
            path = state.backlog_path or state.root / BACKLOG_FILE
            extra = self._preserved_meta(state.backlog_meta, task_quarantine)
            _write_json(
                path,
                generate_backlog_file(
                    tasks,
                    project_name=str(state.backlog_meta.get("project", "")),
                    project_notes=str(state.backlog_meta.get("notes", "")),
                    extra=extra,
                ),
            )

        return result

    def _migrate_record(
        self,
        raw: Any,
        kind: str,
        repo: str,
        fallback_created: datetime,
        id_map: dict[str, str],
        counts: EntityCounts,
        result: StepResult,
    ) -> Insight | Task | None:
        """Migrate one flat record. Returns None (and records issues) when it cannot be."""
        convert = json_insight_to_record if kind == "insight" else json_task_to_record
        record = dict(raw) if isinstance(raw, dict) else raw
        changed = isinstance(record, dict) and "summary" not in record

        if isinstance(record, dict) and isinstance(record.get("id"), str):
            old_id = record["id"]
            if is_legacy_id(old_id):
                try:
                    created = parse_timestamp(record.get("created") or record.get("created_at"))
                except ValueError:
                    created = None
                new_id = migrate_legacy_id(old_id, created or fallback_created, repo)
                if old_id in id_map:
                    self._record_issue(result, counts, old_id, kind, "id", "duplicate legacy ID")
                    return None
                id_map[old_id] = new_id
                record["id"] = new_id
                changed = True
                if kind == "insight":
                    source = record.get("source")
                    source = dict(source) if isinstance(source, dict) else {}
                    source.setdefault("original_id", old_id)
                    record["source"] = source

        try:
            model = convert(record, summarizer=self.summarizer, default_created=fallback_created)
        except ValidationError as e:
            issues = [ValidationIssue(**err) for err in e.errors]
            result.errors.extend(issues)
            counts.errored += 1
            logger.warning(
                "Skipping invalid {} record: {}",
                kind,
                e.message,
                extra={"kind": kind, "issues": len(issues)},
            )
            return None
        except ValueError as e:
            issue = _conversion_issue(record, kind, e)
            self._record_issue(result, counts, issue.record_id, kind, issue.field, issue.message)
            return None

        if changed:
            counts.migrated += 1
        else:
            counts.skipped += 1
        return model

    def _record_issue(
        self,
        result: StepResult,
        counts: EntityCounts,
        record_id: str | None,
        kind: str,
        field: str,
        message: str,
    ) -> None:
        result.errors.append(
            ValidationIssue(record_id=record_id, kind=kind, field=field, message=message)
        )
        counts.errored += 1
        logger.warning("Skipping {} {}: {}", kind, record_id, message)

    def _fallback_created(self, state: FormatState) -> datetime:
        """Deterministic creation time for records without one: file dates, else the epoch."""
        candidates = (
            state.backlog_meta.get("last_updated"),
            state.insights_meta.get("last_updated"),
            state.insights_meta.get("exported_at"),
        )
        for value in candidates:
            try:
                parsed = parse_timestamp(value)
            except (TypeError, ValueError):
                continue
            if parsed is not None:
                return parsed
        return EPOCH_FALLBACK

    def _preserved_meta(self, meta: dict[str, Any], quarantine: list[Any]) -> dict[str, Any]:
        extra = {k: v for k, v in meta.items() if k not in _GENERATED_KEYS and k != QUARANTINE_KEY}
        previous = meta.get(QUARANTINE_KEY)
        quarantined = (list(previous) if isinstance(previous, list) else []) + quarantine
        if quarantined:
            extra[QUARANTINE_KEY] = quarantined
        return extra

    # ═══════════════════════════════════════════════════════════
    # STEP: INTERMEDIATE → CURRENT
    # ═══════════════════════════════════════════════════════════

    async def _intermediate_to_current(
        self,
        step: UpgradeStep,
        state: FormatState,
        on_progress: ProgressCallback | None,
    ) -> StepResult:
        """Initialize the relational store and bulk-load flat records, skipping existing IDs."""
        db_path = state.db_path or (state.root / DATABASE_FILE if state.root else None)
        if db_path is None:
            raise UpgradeError("No database path for the current-format store")

        result = StepResult(step=step)
        fallback_created = self._fallback_created(state)

        insights: list[Insight] = []
        tasks: list[Task] = []
        insight_errors = 0
        task_errors = 0
        for raw in state.insights or []:
            try:
                insights.append(
                    json_insight_to_record(
                        raw, summarizer=self.summarizer, default_created=fallback_created
                    )
                )
            except ValidationError as e:
                result.errors.extend(ValidationIssue(**err) for err in e.errors)
                insight_errors += 1
            except ValueError as e:
                result.errors.append(_conversion_issue(raw, "insight", e))
                insight_errors += 1
        for raw in state.tasks or []:
            try:
                tasks.append(
                    json_task_to_record(
                        raw, summarizer=self.summarizer, default_created=fallback_created
                    )
                )
            except ValidationError as e:
                result.errors.extend(ValidationIssue(**err) for err in e.errors)
                task_errors += 1
            except ValueError as e:
                result.errors.append(_conversion_issue(raw, "task", e))
                task_errors += 1

        total = len(insights) + len(tasks)
        store = self.store_factory(Path(db_path))
        try:
            await store.initialize()
            inserted_insights = await store.bulk_insert_insights(insights)
            if on_progress:
                on_progress(step, len(insights), total)
            inserted_tasks = await store.bulk_insert_tasks(tasks)
            if on_progress:
                on_progress(step, total, total)
        finally:
            await store.close()

        result.counts = {
            "insight": EntityCounts(
                migrated=inserted_insights.inserted_count,
                skipped=inserted_insights.skipped_count,
                errored=insight_errors,
            ),
            "task": EntityCounts(
                migrated=inserted_tasks.inserted_count,
                skipped=inserted_tasks.skipped_count,
                errored=task_errors,
            ),
        }
        if insight_errors or task_errors:
            logger.warning(
                "Some flat-file records could not be loaded",
                extra={"insights": insight_errors, "tasks": task_errors},
            )
        return result

    # ═══════════════════════════════════════════════════════════
    # BACKUP & ROLLBACK
    # ═══════════════════════════════════════════════════════════

    def _managed_artifacts(self, state: FormatState) -> list[tuple[Path, Path]]:
        """(live path, path relative to a backup directory) for every artifact an upgrade may touch."""
        root = state.root
        artifacts = []
        for name in (INSIGHTS_FILE, BACKLOG_FILE):
            artifacts.append((root / name, Path(name)))
            artifacts.append((root / PLAN_DIR / name, Path(PLAN_DIR) / name))

        db_path = state.db_path or root / DATABASE_FILE
        for suffix in ("", "-wal", "-shm"):
            live = Path(f"{db_path}{suffix}")
            try:
                relative = live.resolve().relative_to(root.resolve())
            except ValueError:
                relative = Path("database") / live.name
            artifacts.append((live, relative))
        return artifacts

    def create_backup(self, state: FormatState) -> Path:
        """
        Copy the whole artifact root to a timestamped backup directory.

        The database is copied too when it lives outside the root.

        Returns:
            Backup directory path

        Raises:
            BackupError: If the backup cannot be written
        """
        if state.root is None or not Path(state.root).is_dir():
            raise BackupError(
                "Artifact root does not exist",
                context={"root": str(state.root) if state.root else None},
            )

        root = Path(state.root)
        backup_dir_name = self.config.upgrade.backup_dir_name
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        backup_path = root / backup_dir_name / f"upgrade-{stamp}"

        try:
            shutil.copytree(root, backup_path, ignore=shutil.ignore_patterns(backup_dir_name))
            for live, relative in self._managed_artifacts(state):
                target = backup_path / relative
                if live.is_file() and not target.exists():
                    target.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(live, target)
        except OSError as e:
            raise BackupError(
                f"Could not write backup: {e}",
                context={"root": str(root), "backup_path": str(backup_path)},
            ) from e

        logger.info("Backup created", extra={"backup_path": str(backup_path)})
        return backup_path

    def rollback(self, state: FormatState, backup_path: str | Path) -> bool:
        """
        Restore the managed artifacts from a backup directory.

        Works at any time after an upgrade. Artifacts absent from the backup
        are removed, since they did not exist before the upgrade.

        Args:
            state: Artifact summary identifying the root and database path
            backup_path: Directory returned by create_backup / UpgradeResult.backup_path

        Returns:
            True if restored, False if the backup is missing or restore failed
        """
        backup = Path(backup_path)
        if state.root is None or not backup.is_dir():
            logger.warning(
                "Rollback skipped: backup not found",
                extra={"backup_path": str(backup), "root": str(state.root)},
            )
            return False

        try:
            for live, relative in self._managed_artifacts(state):
                saved = backup / relative
                if saved.is_file():
                    live.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(saved, live)
                elif live.exists():
                    live.unlink()
        except OSError as e:
            logger.error(
                "Rollback failed: {}",
                e,
                extra={"backup_path": str(backup), "root": str(state.root)},
            )
            return False

        logger.info("Rolled back from backup", extra={"backup_path": str(backup)})
        return True
