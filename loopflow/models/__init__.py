"""
Data models for LoopFlow.

Content models:
- Insight: structured learning with tags, links and provenance
- Task: backlog item with dependencies and acceptance criteria

Retrieval models (progressive disclosure):
- ScanResult / ScanMatch, ExpandResult, TimelineResult, ConnectResult
- SearchQuery, ScoringOptions, ScoredCandidate, RecordFilters

Lifecycle models:
- FormatGeneration, FormatState, FormatDetection, ValidationIssue
- UpgradeStep, StepResult, UpgradeResult, EntityCounts

Sharing models:
- ExportBundle, BundleInsight, ExportResult, ImportPreview, ImportPlan
"""

from loopflow.models.common import (
    EntityKind,
    ScanScope,
    format_timestamp,
    normalize_timestamp,
    parse_timestamp,
)
from loopflow.models.formats import (
    GENERATION_ORDER,
    FormatDetection,
    FormatGeneration,
    FormatState,
    ValidationIssue,
)
from loopflow.models.insight import (
    Insight,
    InsightSource,
    InsightStatus,
    InsightType,
    compute_content_hash,
)
from loopflow.models.retrieval import (
    ConnectResult,
    ExpandResult,
    LinkedSummary,
    RecordFilters,
    ScanMatch,
    ScanResult,
    ScoredCandidate,
    ScoringOptions,
    SearchQuery,
    TimelineContext,
    TimelineResult,
)
from loopflow.models.sharing import (
    BUNDLE_VERSION,
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
from loopflow.models.task import Task, TaskPriority, TaskStatus
from loopflow.models.upgrade import EntityCounts, StepResult, UpgradeResult, UpgradeStep

__all__ = [
    # Common
    "EntityKind",
    "ScanScope",
    "format_timestamp",
    "normalize_timestamp",
    "parse_timestamp",
    # Content models
    "Insight",
    "InsightSource",
    "InsightStatus",
    "InsightType",
    "compute_content_hash",
    "Task",
    "TaskPriority",
    "TaskStatus",
    # Retrieval models
    "SearchQuery",
    "ScoringOptions",
    "ScoredCandidate",
    "RecordFilters",
    "ScanMatch",
    "ScanResult",
    "LinkedSummary",
    "TimelineContext",
    "ExpandResult",
    "TimelineResult",
    "ConnectResult",
    # Format / upgrade models
    "GENERATION_ORDER",
    "FormatGeneration",
    "FormatState",
    "FormatDetection",
    "ValidationIssue",
    "UpgradeStep",
    "StepResult",
    "UpgradeResult",
    "EntityCounts",
    # Sharing models
    "BUNDLE_VERSION",
    "SUPPORTED_BUNDLE_VERSIONS",
    "SourceRepo",
    "BundleInsight",
    "BundleMetadata",
    "ExportBundle",
    "ExportOptions",
    "ExportResult",
    "ImportMatch",
    "ImportOptions",
    "ImportPlan",
    "ImportPreview",
    "ImportResult",
    "UnmappableLink",
]
