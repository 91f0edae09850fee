"""
Cross-repository sharing: export bundles, import preview and planning.

Duplicates (same content hash), conflicts (same ID, different content) and
unmappable links are expected outcomes and always come back as structured
results. Only malformed or unknown-version bundles raise.
"""

import json
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from loopflow.config import Config
from loopflow.core.storage.base import RecordStore
from loopflow.models.common import format_timestamp, parse_timestamp
from loopflow.models.insight import (
    Insight,
    InsightSource,
    InsightStatus,
    InsightType,
    compute_content_hash,
)
from loopflow.models.sharing import (
    SUPPORTED_BUNDLE_VERSIONS,
    BundleInsight,
    BundleMetadata,
    ExportBundle,
    ExportOptions,
    ExportResult,
    ImportMatch,
    ImportOptions,
    ImportPlan,
    ImportPreview,
    ImportResult,
    SourceRepo,
    UnmappableLink,
)
from loopflow.utils.exceptions import BundleVersionError, ConfigurationError, ValidationError
from loopflow.utils.id_generator import generate_unique_id
from loopflow.utils.logger import get_logger

logger = get_logger(__name__)

# Returns a fresh insight ID not in the given set of taken IDs
IdGenerator = Callable[[set[str]], str]

_INSIGHT_TYPES = {t.value for t in InsightType}
_INSIGHT_STATUSES = {s.value for s in InsightStatus}


def _normalize_type(value: str) -> str:
    return value.strip().lower().replace("-", "_")


def parse_bundle(data: str | bytes | dict[str, Any]) -> ExportBundle:
    """
    Parse and validate an export bundle.

    Identical records repeated under one original_id are collapsed; the
    same original_id with different content is rejected.

    Args:
        data: Bundle JSON text or already-decoded dict

    Returns:
        ExportBundle

    Raises:
        BundleVersionError: If version is missing or unrecognized
        ValidationError: If the bundle shape is invalid (field-level errors attached)
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValidationError(
                f"Bundle is not valid JSON: {e}",
                errors=[{"field": "*", "message": str(e)}],
            ) from e

    if not isinstance(data, dict):
        raise ValidationError(
            "Bundle must be a JSON object",
            errors=[{"field": "*", "message": "expected an object"}],
        )

    version = data.get("version")
    if version not in SUPPORTED_BUNDLE_VERSIONS:
        raise BundleVersionError(
            f"Unsupported bundle version: {version!r}",
            errors=[{"field": "version", "message": f"unsupported version {version!r}"}],
            context={"version": version, "supported": sorted(SUPPORTED_BUNDLE_VERSIONS)},
        )

    try:
        bundle = ExportBundle.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(
            f"Invalid bundle: {len(errors)} field error(s)", errors=errors
        ) from e

    errors = []
    for index, insight in enumerate(bundle.insights):
        if _normalize_type(insight.type) not in _INSIGHT_TYPES:
            errors.append(
                {
                    "field": f"insights.{index}.type",
                    "message": f"unknown insight type {insight.type!r}",
                    "record_id": insight.original_id,
                }
            )
        if insight.status.strip().lower() not in _INSIGHT_STATUSES:
            errors.append(
                {
                    "field": f"insights.{index}.status",
                    "message": f"unknown status {insight.status!r}",
                    "record_id": insight.original_id,
                }
            )
        if not insight.content.strip():
            errors.append(
                {
                    "field": f"insights.{index}.content",
                    "message": "content must not be blank",
                    "record_id": insight.original_id,
                }
            )
        try:
            parse_timestamp(insight.created)
        except ValueError:
            errors.append(
                {
                    "field": f"insights.{index}.created",
                    "message": f"invalid timestamp {insight.created!r}",
                    "record_id": insight.original_id,
                }
            )
    if errors:
        raise ValidationError(f"Invalid bundle: {len(errors)} field error(s)", errors=errors)

    bundle.insights = _collapse_duplicates(bundle.insights)
    return bundle


def _collapse_duplicates(insights: list[BundleInsight]) -> list[BundleInsight]:
    """Drop identical repeats of an original_id; reject differing ones."""
    seen: dict[str, str] = {}
    kept = []
    conflicting = []
    for insight in insights:
        content_hash = compute_content_hash(insight.content)
        previous = seen.get(insight.original_id)
        if previous is None:
            seen[insight.original_id] = content_hash
            kept.append(insight)
        elif previous == content_hash:
            logger.info(
                "Collapsed repeated bundle record {}",
                insight.original_id,
                extra={"original_id": insight.original_id},
            )
        else:
            conflicting.append(insight.original_id)

    if conflicting:
        raise ValidationError(
            "Bundle contains the same original_id with different content",
            errors=[
                {"field": "original_id", "message": "duplicate with different content", "record_id": i}
                for i in dict.fromkeys(conflicting)
            ],
        )
    return kept


class SharingService:
    """
    Export / import of insights between independent stores.

    Usage:
        service = SharingService(config)
        export = service.create_export_bundle(insights, "my-repo", repo_hash(path))
        preview = service.preview_import(export.bundle, existing, target_hash)
        plan = service.create_import_plan(preview, target_hash)
        await service.apply_import_plan(store, plan)
    """

    def __init__(self, config: Config):
        """
        Initialize sharing service.

        Args:
            config: Configuration object
        """
        self.config = config

    # ═══════════════════════════════════════════════════════════
    # EXPORT
    # ═══════════════════════════════════════════════════════════

    def create_export_bundle(
        self,
        insights: list[Insight],
        repo_name: str,
        repo_hash: str,
        options: ExportOptions | None = None,
    ) -> ExportResult:
        """
        Build an export bundle from the given insights.

        Tag (any-match) and type filters select records; with include_links,
        every insight referenced by a selected one is added too (one hop,
        only when present in insights).

        Args:
            insights: Candidate insights (typically the whole store)
            repo_name: Exporting repository name
            repo_hash: Exporting repository hash
            options: Selection options

        Returns:
            ExportResult with bundle and included/excluded/link-added IDs

        Raises:
            ConfigurationError: If the configured bundle version is unsupported
        """
        version = self.config.sharing.bundle_version
        if version not in SUPPORTED_BUNDLE_VERSIONS:
            raise ConfigurationError(
                f"Unsupported bundle version configured: {version}",
                context={"version": version},
            )
        options = options or ExportOptions(include_links=self.config.sharing.include_links)

        by_id: dict[str, Insight] = {}
        for insight in insights:
            by_id.setdefault(insight.id, insight)

        selected = [i for i in by_id.values() if self._matches(i, options)]
        included = {i.id for i in selected}

        linked: list[Insight] = []
        if options.include_links:
            for insight in selected:
                for link in insight.links:
                    if link in included:
                        continue
                    target = by_id.get(link)
                    if target is None:
                        continue
                    included.add(link)
                    linked.append(target)

        bundled = selected + linked
        bundle = ExportBundle(
            version=version,
            exported_at=format_timestamp(options.exported_at or datetime.now()),
            source_repo=SourceRepo(name=repo_name, hash=repo_hash),
            insights=[self._to_bundle_insight(i, repo_hash) for i in bundled],
            metadata=BundleMetadata(total_count=len(bundled), export_reason=options.reason),
        )

        result = ExportResult(
            bundle=bundle,
            included_ids=[i.id for i in bundled],
            excluded_ids=[i for i in by_id if i not in included],
            linked_ids_added=[i.id for i in linked],
        )
        logger.info(
            "Exported {} insights",
            len(bundled),
            extra={
                "operation": "export",
                "selected": len(selected),
                "linked_added": len(linked),
                "excluded": len(result.excluded_ids),
            },
        )
        return result

    def _matches(self, insight: Insight, options: ExportOptions) -> bool:
        if options.tags:
            wanted = {t.strip().lower() for t in options.tags}
            if not any(tag.lower() in wanted for tag in insight.tags):
                return False
        if options.types:
            if insight.type.value not in {_normalize_type(t) for t in options.types}:
                return False
        return True

    def _to_bundle_insight(self, insight: Insight, repo_hash: str) -> BundleInsight:
        return BundleInsight(
            original_id=insight.id,
            content=insight.content,
            summary=insight.summary,
            type=insight.type.value,
            status=insight.status.value,
            tags=list(insight.tags),
            links=list(insight.links),
            source=insight.source.model_dump(exclude_none=True) if insight.source else None,
            notes=insight.notes,
            created=format_timestamp(insight.created_at),
            exported_from_repo=repo_hash,
            content_hash=insight.content_hash,
        )

    # ═══════════════════════════════════════════════════════════
    # IMPORT
    # ═══════════════════════════════════════════════════════════

    def preview_import(
        self,
        bundle: ExportBundle,
        existing_insights: list[Insight],
        target_repo_hash: str,
    ) -> ImportPreview:
        """
        Classify every bundled insight against the target store.

        Same content hash → duplicate (whatever the ID); else same ID with a
        different hash → conflict; else new. Links pointing outside both the
        bundle and the store are reported as unmappable.

        Args:
            bundle: Parsed bundle
            existing_insights: Insights already in the target store
            target_repo_hash: Target repository hash

        Returns:
            ImportPreview
        """
        by_hash: dict[str, str] = {}
        by_id: dict[str, Insight] = {}
        for insight in existing_insights:
            by_hash.setdefault(insight.content_hash, insight.id)
            by_id.setdefault(insight.id, insight)

        preview = ImportPreview(
            source_repo=bundle.source_repo,
            target_repo_hash=target_repo_hash,
            same_repository=bundle.source_repo.hash == target_repo_hash,
            existing_ids=list(by_id),
        )

        for record in bundle.insights:
            content_hash = compute_content_hash(record.content)
            if content_hash in by_hash:
                preview.duplicates.append(
                    ImportMatch(
                        insight=record, existing_id=by_hash[content_hash], existing_hash=content_hash
                    )
                )
            elif record.original_id in by_id:
                preview.conflicts.append(
                    ImportMatch(
                        insight=record,
                        existing_id=record.original_id,
                        existing_hash=by_id[record.original_id].content_hash,
                    )
                )
            else:
                preview.new_insights.append(record)

        bundle_ids = {record.original_id for record in bundle.insights}
        for record in bundle.insights:
            for link in dict.fromkeys(record.links):
                if link not in bundle_ids and link not in by_id:
                    preview.unmappable_links.append(
                        UnmappableLink(source_id=record.original_id, target_id=link)
                    )

        logger.info(
            "Import preview",
            extra={
                "operation": "preview_import",
                "new": len(preview.new_insights),
                "duplicates": len(preview.duplicates),
                "conflicts": len(preview.conflicts),
                "unmappable_links": len(preview.unmappable_links),
            },
        )
        return preview

    def create_import_plan(
        self,
        preview: ImportPreview,
        target_repo_hash: str,
        id_generator: IdGenerator | None = None,
        options: ImportOptions | None = None,
    ) -> ImportPlan:
        """
        Assign target IDs and rewrite links.

        New records get fresh IDs (re-rolled on collision with the store and
        with IDs assigned in this plan). Skipped duplicates map to the
        existing record; skipped conflicts map to the existing record with
        the same ID. Every created record's links go through the remapping;
        links that resolve nowhere are dropped and recorded.

        Args:
            preview: Result of preview_import
            target_repo_hash: Target repository hash
            id_generator: Fresh-ID source (default: dated random IDs)
            options: Skip flags (defaults from config)

        Returns:
            ImportPlan
        """
        options = options or ImportOptions(
            skip_duplicates=self.config.sharing.skip_duplicates,
            skip_conflicts=self.config.sharing.skip_conflicts,
        )
        now = options.now or datetime.now()
        generate = id_generator or (
            lambda taken: generate_unique_id("insight", taken, timestamp=now)
        )

        plan = ImportPlan()
        taken = set(preview.existing_ids)
        existing = set(preview.existing_ids)
        to_create: list[tuple[str, BundleInsight]] = []

        def assign(record: BundleInsight) -> None:
            new_id = generate(taken)
            taken.add(new_id)
            plan.link_remapping[record.original_id] = new_id
            to_create.append((new_id, record))

        for match in preview.duplicates:
            if options.skip_duplicates:
                plan.link_remapping[match.insight.original_id] = match.existing_id
                plan.skipped_duplicates.append(match)
            else:
                assign(match.insight)

        for match in preview.conflicts:
            if options.skip_conflicts:
                plan.link_remapping[match.insight.original_id] = match.existing_id
                plan.skipped_conflicts.append(match)
            else:
                assign(match.insight)

        for record in preview.new_insights:
            assign(record)

        for new_id, record in to_create:
            links = []
            for link in dict.fromkeys(record.links):
                if link in plan.link_remapping:
                    links.append(plan.link_remapping[link])
                elif link in existing:
                    links.append(link)
                else:
                    plan.dropped_links.append(
                        UnmappableLink(source_id=record.original_id, target_id=link)
                    )
            plan.insights_to_create.append(
                self._to_insight(record, new_id, links, preview.source_repo.hash, now)
            )

        logger.info(
            "Import plan: {} to create",
            len(plan.insights_to_create),
            extra={
                "operation": "import_plan",
                "target_repo": target_repo_hash,
                "skipped_duplicates": len(plan.skipped_duplicates),
                "skipped_conflicts": len(plan.skipped_conflicts),
                "dropped_links": len(plan.dropped_links),
            },
        )
        return plan

    def _to_insight(
        self,
        record: BundleInsight,
        new_id: str,
        links: list[str],
        source_repo_hash: str,
        now: datetime,
    ) -> Insight:
        source = record.source or {}
        created = parse_timestamp(record.created) or now
        return Insight(
            id=new_id,
            content=record.content,
            summary=record.summary if record.summary and record.summary.strip() else None,
            type=record.type,
            status=record.status,
            tags=list(record.tags),
            links=links,
            source=InsightSource(
                task=source.get("task"),
                session=source.get("session"),
                original_id=record.original_id,
                repo=source_repo_hash,
            ),
            notes=record.notes,
            created_at=created,
            updated_at=now,
        )

    async def apply_import_plan(self, store: RecordStore, plan: ImportPlan) -> ImportResult:
        """
        Write planned records with insert-or-skip, so re-applying a plan is a no-op.

        Args:
            store: Target record store
            plan: Result of create_import_plan

        Returns:
            ImportResult with created and skipped IDs
        """
        inserted = await store.bulk_insert_insights(plan.insights_to_create)
        logger.info(
            "Imported {} insights",
            inserted.inserted_count,
            extra={"operation": "import", "skipped": inserted.skipped_count},
        )
        return ImportResult(created=inserted.inserted, skipped=inserted.skipped, plan=plan)
