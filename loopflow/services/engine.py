"""
LoopFlow Engine - caller-facing facade.

Brings together:
- Record store (SQLite + FTS5)
- Retrieval (scan / expand / timeline / connect)
- Format detection and upgrade with backup/rollback
- Export / import between repositories
"""

from datetime import datetime
from pathlib import Path
from typing import Any

from loopflow.config import Config
from loopflow.core.formats.detector import detect_format
from loopflow.core.formats.inspector import inspect_artifacts
from loopflow.core.storage.base import RecordStore
from loopflow.core.storage.factory import RecordStoreFactory
from loopflow.core.summarizer.base import Summarizer
from loopflow.core.summarizer.heuristic import HeuristicSummarizer
from loopflow.models.common import ScanScope
from loopflow.models.formats import FormatDetection, FormatGeneration, FormatState
from loopflow.models.insight import Insight, InsightSource, InsightType
from loopflow.models.retrieval import (
    ConnectResult,
    ExpandResult,
    RecordFilters,
    ScanResult,
    TimelineResult,
)
from loopflow.models.sharing import (
    ExportBundle,
    ExportOptions,
    ExportResult,
    ImportOptions,
    ImportPlan,
    ImportPreview,
    ImportResult,
)
from loopflow.models.task import Task, TaskPriority
from loopflow.models.upgrade import UpgradeResult, UpgradeStep
from loopflow.services.retrieval import RetrievalService
from loopflow.services.sharing import IdGenerator, SharingService, parse_bundle
from loopflow.services.upgrade import ProgressCallback, UpgradeService
from loopflow.utils.exceptions import ValidationError
from loopflow.utils.id_generator import generate_unique_id
from loopflow.utils.logger import get_logger, operation_context, setup_logging

logger = get_logger(__name__)


class LoopFlowEngine:
    """
    Unified LoopFlow engine.

    Features:
    - Zero-friction capture of insights and tasks
    - Token-efficient progressive disclosure (scan → expand → timeline)
    - Format detection, planned upgrades, backups and rollback
    - Export bundles and deduplicating import
    """

    def __init__(
        self,
        store: RecordStore,
        config: Config,
        summarizer: Summarizer | None = None,
    ):
        """
        Initialize LoopFlow Engine.

        Args:
            store: Record store
            config: Configuration object
            summarizer: Summary rule (heuristic by default)
        """
        self.store = store
        self.config = config
        self.summarizer = summarizer or HeuristicSummarizer(config.summary)

        self.retrieval = RetrievalService(store=store, config=config)
        self.upgrade = UpgradeService(config=config, summarizer=self.summarizer)
        self.sharing = SharingService(config=config)

    @classmethod
    def from_config(
        cls,
        config: Config,
        summarizer: Summarizer | None = None,
        configure_logging: bool = True,
    ) -> "LoopFlowEngine":
        """
        Build an engine with the store described by config.

        Args:
            config: Configuration object
            summarizer: Summary rule (heuristic by default)
            configure_logging: Install log sinks from config.logging
        """
        if configure_logging:
            setup_logging(
                level=config.logging.level,
                log_to_file=config.logging.log_to_file,
                log_dir=config.logging.log_dir,
                file_rotation=config.logging.file_rotation,
                file_retention=config.logging.file_retention,
                compression=config.logging.compression,
                serialize=config.logging.serialize,
            )
        return cls(RecordStoreFactory.create(config), config, summarizer)

    async def initialize(self) -> None:
        """Initialize the record store."""
        logger.info("Initializing LoopFlow Engine")
        await self.store.initialize()
        logger.info("LoopFlow Engine ready")

    async def close(self) -> None:
        """Close the record store."""
        await self.store.close()
        logger.info("LoopFlow Engine closed")

    # ═══════════════════════════════════════════════════════════
    # CAPTURE
    # ═══════════════════════════════════════════════════════════

    async def capture_insight(
        self,
        content: str,
        insight_type: InsightType | str = InsightType.TECHNICAL,
        tags: list[str] | None = None,
        links: list[str] | None = None,
        source: InsightSource | None = None,
        now: datetime | None = None,
    ) -> Insight:
        """
        Capture a new insight with a fresh ID and derived summary.

        Raises:
            ValidationError: If content is empty
        """
        if not content or not content.strip():
            raise ValidationError(
                "Insight content cannot be empty",
                errors=[{"field": "content", "message": "must not be empty"}],
            )

        now = now or datetime.now()
        existing = set(await self.store.list_insight_ids())
        insight = Insight(
            id=generate_unique_id("insight", existing, timestamp=now),
            content=content,
            summary=self.summarizer.maybe_summarize(content, kind="insight"),
            type=insight_type,
            tags=tags or [],
            links=links or [],
            source=source,
            created_at=now,
            updated_at=now,
        )
        await self.store.insert_insight(insight)

        logger.info(
            "Insight captured: {}",
            insight.id,
            extra={"operation": "capture_insight", "type": insight.type.value},
        )
        return insight

    async def add_task(
        self,
        title: str,
        description: str | None = None,
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        depends_on: list[str] | None = None,
        acceptance_criteria: list[str] | None = None,
        now: datetime | None = None,
    ) -> Task:
        """
        Add a backlog task with a fresh ID and derived summary.

        Raises:
            ValidationError: If title is empty
        """
        if not title or not title.strip():
            raise ValidationError(
                "Task title cannot be empty",
                errors=[{"field": "title", "message": "must not be empty"}],
            )

        now = now or datetime.now()
        existing = set(await self.store.list_task_ids())
        task = Task(
            id=generate_unique_id("task", existing, timestamp=now),
            title=title,
            description=description,
            summary=self.summarizer.maybe_summarize(title, kind="task"),
            priority=priority,
            depends_on=depends_on or [],
            acceptance_criteria=acceptance_criteria or [],
            created_at=now,
            updated_at=now,
        )
        await self.store.insert_task(task)

        logger.info("Task added: {}", task.id, extra={"operation": "add_task"})
        return task

    # ═══════════════════════════════════════════════════════════
    # RETRIEVAL
    # ═══════════════════════════════════════════════════════════

    async def scan(
        self,
        query: str | None = None,
        scope: ScanScope | str = ScanScope.ALL,
        filters: RecordFilters | None = None,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> ScanResult:
        """Layer 1: ranked summaries."""
        with operation_context("scan"):
            return await self.retrieval.scan(query, scope, filters, limit, now)

    async def expand(
        self, ids: list[str], include_links: bool = False, include_timeline: bool = False
    ) -> ExpandResult:
        """Layer 2: full records."""
        with operation_context("expand"):
            return await self.retrieval.expand(ids, include_links, include_timeline)

    async def timeline(
        self,
        anchor: datetime | str,
        depth_before: int | None = None,
        depth_after: int | None = None,
        scope: ScanScope | str = ScanScope.ALL,
    ) -> TimelineResult:
        """Layer 3: chronological window."""
        with operation_context("timeline"):
            return await self.retrieval.timeline(anchor, depth_before, depth_after, scope)

    async def connect(self, query: str, include_tasks: bool = True) -> ConnectResult:
        """Associative lookup with one-hop links."""
        with operation_context("connect"):
            return await self.retrieval.connect(query, include_tasks)

    # ═══════════════════════════════════════════════════════════
    # FORMAT & UPGRADE
    # ═══════════════════════════════════════════════════════════

    async def inspect(
        self, root: str | Path | None = None, repo_path: str | Path | None = None
    ) -> FormatState:
        """Read artifacts (default root: the database's directory)."""
        db_path = Path(self.config.storage.db_path)
        root = Path(root) if root is not None else db_path.parent
        return await inspect_artifacts(root, repo_path=repo_path, db_path=db_path)

    def detect_format(self, state: FormatState) -> FormatDetection:
        return detect_format(state)

    def plan_upgrade(
        self, state: FormatState, target: FormatGeneration | None = None
    ) -> list[UpgradeStep]:
        return self.upgrade.plan_upgrade(state, target)

    async def execute_upgrade(
        self,
        state: FormatState,
        target: FormatGeneration | None = None,
        create_backup: bool | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> UpgradeResult:
        with operation_context("upgrade"):
            return await self.upgrade.execute_upgrade(state, target, create_backup, on_progress)

    async def rollback(self, state: FormatState, backup_path: str | Path) -> bool:
        """
        Restore a backup.

        The store connection is closed while files are replaced and reopened
        only if the restored artifacts include the database.
        """
        await self.store.close()
        with operation_context("rollback"):
            restored = self.upgrade.rollback(state, backup_path)
        if Path(self.config.storage.db_path).exists():
            await self.store.initialize()
        return restored

    # ═══════════════════════════════════════════════════════════
    # SHARING
    # ═══════════════════════════════════════════════════════════

    async def _all_insights(self) -> list[Insight]:
        return await self.store.query_insights(None, limit=None)

    async def create_export_bundle(
        self,
        repo_name: str,
        repo_hash: str,
        options: ExportOptions | None = None,
    ) -> ExportResult:
        """Export insights from the store."""
        with operation_context("export", repo=repo_hash):
            insights = await self._all_insights()
            return self.sharing.create_export_bundle(insights, repo_name, repo_hash, options)

    async def preview_import(
        self, bundle: ExportBundle | str | dict[str, Any], target_repo_hash: str
    ) -> ImportPreview:
        """Classify a bundle against the store."""
        if not isinstance(bundle, ExportBundle):
            bundle = parse_bundle(bundle)
        existing = await self._all_insights()
        return self.sharing.preview_import(bundle, existing, target_repo_hash)

    def create_import_plan(
        self,
        preview: ImportPreview,
        target_repo_hash: str,
        id_generator: IdGenerator | None = None,
        options: ImportOptions | None = None,
    ) -> ImportPlan:
        return self.sharing.create_import_plan(preview, target_repo_hash, id_generator, options)

    async def import_bundle(
        self,
        bundle: ExportBundle | str | dict[str, Any],
        target_repo_hash: str,
        options: ImportOptions | None = None,
    ) -> ImportResult:
        """Parse, preview, plan and apply in one call."""
        with operation_context("import", repo=target_repo_hash):
            preview = await self.preview_import(bundle, target_repo_hash)
            plan = self.create_import_plan(preview, target_repo_hash, options=options)
            return await self.sharing.apply_import_plan(self.store, plan)
