"""
Sharing models: export bundles and import planning.

The bundle is the wire format for moving insights between independent
stores. Field names are fixed; see ExportBundle.to_dict().
"""

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from loopflow.models.insight import Insight

BUNDLE_VERSION = "1.0"
SUPPORTED_BUNDLE_VERSIONS = frozenset({BUNDLE_VERSION})


class SourceRepo(BaseModel):
    """Identity of the exporting repository."""

    name: str
    hash: str


class BundleInsight(BaseModel):
    """An insight as carried inside a bundle."""

    original_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    summary: str | None = None
    type: str
    status: str
    tags: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)
    source: dict[str, Any] | None = None
    notes: str | None = None
    created: str
    exported_from_repo: str
    content_hash: str


class BundleMetadata(BaseModel):
    """Bundle metadata."""

    total_count: int = Field(..., ge=0)
    export_reason: str | None = None


class ExportBundle(BaseModel):
    """Versioned, self-describing snapshot of selected insights."""

    version: str = BUNDLE_VERSION
    exported_at: str
    source_repo: SourceRepo
    insights: list[BundleInsight] = Field(default_factory=list)
    metadata: BundleMetadata

    def to_dict(self) -> dict[str, Any]:
        """Wire representation. export_reason is omitted when unset."""
        data = self.model_dump(mode="json")
        if data["metadata"].get("export_reason") is None:
            data["metadata"].pop("export_reason", None)
        return data

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)


class ExportOptions(BaseModel):
    """Export selection options."""

    tags: list[str] = Field(default_factory=list, description="Include insights with any of these tags")
    types: list[str] = Field(default_factory=list, description="Include insights of these types")
    include_links: bool = Field(default=True, description="Add one-hop linked insights")
    reason: str | None = None
    exported_at: datetime | None = None


class ExportResult(BaseModel):
    """Export outcome."""

    bundle: ExportBundle
    included_ids: list[str] = Field(default_factory=list)
    excluded_ids: list[str] = Field(default_factory=list)
    linked_ids_added: list[str] = Field(default_factory=list)


class ImportMatch(BaseModel):
    """A bundled insight that matches an existing record."""

    insight: BundleInsight
    existing_id: str
    existing_hash: str


class UnmappableLink(BaseModel):
    """A bundle link whose target is neither in the bundle nor in the target store."""

    source_id: str
    target_id: str


class ImportPreview(BaseModel):
    """Classification of every bundled insight against the target store."""

    source_repo: SourceRepo
    target_repo_hash: str
    same_repository: bool = False
    new_insights: list[BundleInsight] = Field(default_factory=list)
    duplicates: list[ImportMatch] = Field(default_factory=list)
    conflicts: list[ImportMatch] = Field(default_factory=list)
    unmappable_links: list[UnmappableLink] = Field(default_factory=list)
    existing_ids: list[str] = Field(
        default_factory=list, description="Insight IDs already in the target store"
    )


class ImportOptions(BaseModel):
    """Import planning options."""

    skip_duplicates: bool = True
    skip_conflicts: bool = True
    now: datetime | None = None


class ImportPlan(BaseModel):
    """Records to create plus the ID remapping applied to their links."""

    insights_to_create: list[Insight] = Field(default_factory=list)
    link_remapping: dict[str, str] = Field(default_factory=dict, description="original -> target ID")
    skipped_duplicates: list[ImportMatch] = Field(default_factory=list)
    skipped_conflicts: list[ImportMatch] = Field(default_factory=list)
    dropped_links: list[UnmappableLink] = Field(default_factory=list)


class ImportResult(BaseModel):
    """Outcome of applying an import plan."""

    created: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list, description="IDs already present in the store")
    plan: ImportPlan
