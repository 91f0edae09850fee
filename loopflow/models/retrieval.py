"""
Retrieval models for progressive disclosure.

Layer 1 (scan): ranked compact index of summaries
Layer 2 (expand): full records for chosen IDs, optionally with neighbors
Layer 3 (timeline): chronological window around an anchor
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from loopflow.models.common import EntityKind
from loopflow.models.insight import Insight
from loopflow.models.task import Task


class SearchQuery(BaseModel):
    """Parsed search query."""

    terms: list[str] = Field(default_factory=list, description="Bare terms (OR-combined)")
    phrases: list[str] = Field(default_factory=list, description="Quoted exact phrases")
    excluded: list[str] = Field(default_factory=list, description="Terms/phrases prefixed with -")
    field_filters: dict[str, list[str]] = Field(
        default_factory=dict, description="field:value equality filters"
    )

    @property
    def has_free_text(self) -> bool:
        """Whether the query carries anything to score against."""
        return bool(self.terms or self.phrases)

    @property
    def is_empty(self) -> bool:
        return not (self.terms or self.phrases or self.excluded or self.field_filters)


class ScoringOptions(BaseModel):
    """Options for relevance scoring."""

    field_weights: dict[str, float] = Field(default_factory=dict, description="Per-field weight")
    phrase_weight: float = Field(default=2.0, gt=0.0)
    recency_boost: bool = Field(default=False, description="Boost recent items")
    max_recency_boost: float = Field(default=0.2, ge=0.0, le=1.0)
    recency_window_days: int = Field(default=30, ge=1)
    now: datetime | None = Field(default=None, description="Reference time for recency")
    timestamp_field: str = "created_at"


class ScoredCandidate(BaseModel):
    """A record scored against a query. Ephemeral, never persisted."""

    item: Any
    score: float = Field(..., ge=0.0, le=1.0)
    matched_fields: list[str] = Field(default_factory=list)


class RecordFilters(BaseModel):
    """Structural filters applied by storage before scoring."""

    types: list[str] = Field(default_factory=list, description="Insight types")
    statuses: list[str] = Field(default_factory=list, description="Insight or task statuses")
    tags: list[str] = Field(default_factory=list, description="Insight tags (any match)")
    priorities: list[str] = Field(default_factory=list, description="Task priorities")
    created_after: datetime | None = None
    created_before: datetime | None = None


class ScanMatch(BaseModel):
    """Compact index entry. Carries a summary, never full content."""

    id: str
    kind: EntityKind
    summary: str
    relevance: float = Field(default=0.0, ge=0.0, le=1.0)
    date: datetime
    type: str | None = None
    status: str | None = None


class ScanResult(BaseModel):
    """Result of a scan."""

    matches: list[ScanMatch] = Field(default_factory=list)
    total_count: int = 0
    truncated: bool = False
    hint: str = "Use expand(ids) to get full content for specific items"


class LinkedSummary(BaseModel):
    """One-hop linked insight, summarized."""

    id: str
    summary: str
    type: str
    linked_from: list[str] = Field(default_factory=list)
    via: str = "link"


class TimelineContext(BaseModel):
    """Nearest records before and after an expanded item."""

    before: ScanMatch | None = None
    after: ScanMatch | None = None


class ExpandResult(BaseModel):
    """Result of an expand. Missing IDs are data, not errors."""

    insights: list[Insight] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
    linked: list[LinkedSummary] = Field(default_factory=list)
    unresolved_links: list[str] = Field(default_factory=list)
    timeline: dict[str, TimelineContext] = Field(default_factory=dict)
    not_found: list[str] = Field(default_factory=list)


class TimelineResult(BaseModel):
    """Chronological window around an anchor, ascending."""

    anchor_time: datetime
    anchor_id: str | None = None
    items: list[ScanMatch] = Field(default_factory=list)


class ConnectResult(BaseModel):
    """Associative lookup: matches plus their one-hop neighbors."""

    query: str
    insights: list[ScanMatch] = Field(default_factory=list)
    linked: list[LinkedSummary] = Field(default_factory=list)
    tasks: list[ScanMatch] = Field(default_factory=list)
    suggestion: str = ""
