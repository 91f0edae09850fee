"""
Format generation models.

Generations, oldest first:
- LEGACY: flat files, sequential IDs (INS-001), no summary field
- INTERMEDIATE: flat files, global IDs, summary field present
- CURRENT: relational store with a full-text index; flat files are views
"""

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class FormatGeneration(str, Enum):
    """Known on-disk format generations."""

    EMPTY = "empty"  # Nothing stored yet
    LEGACY = "legacy"
    INTERMEDIATE = "intermediate"
    CURRENT = "current"

    @property
    def rank(self) -> int:
        """Position in the upgrade order (-1 for EMPTY)."""
        try:
            return GENERATION_ORDER.index(self)
        except ValueError:
            return -1


GENERATION_ORDER: list[FormatGeneration] = [
    FormatGeneration.LEGACY,
    FormatGeneration.INTERMEDIATE,
    FormatGeneration.CURRENT,
]


class ValidationIssue(BaseModel):
    """Field-level problem with a single record. Never aborts sibling records."""

    record_id: str | None = None
    kind: str = "insight"
    field: str
    message: str


class FormatState(BaseModel):
    """
    Already-read summary of a store's artifacts.

    Passed explicitly into detection and upgrade calls; nothing in the core
    keeps a global notion of "the current format".
    """

    model_config = {"arbitrary_types_allowed": True}

    root: Path | None = Field(default=None, description="Artifact directory (.loop-flow)")
    repo_hash: str = Field(default="local", description="Namespace for legacy ID migration")

    insights_path: Path | None = None
    backlog_path: Path | None = None
    db_path: Path | None = None

    insights: list[Any] | None = Field(
        default=None, description="Raw flat-file insight records (None: file absent)"
    )
    tasks: list[Any] | None = Field(
        default=None, description="Raw flat-file task records (None: file absent)"
    )
    insights_schema_version: str | None = None
    insights_meta: dict[str, Any] = Field(default_factory=dict)
    backlog_meta: dict[str, Any] = Field(default_factory=dict)

    database_exists: bool = False
    database_tables: list[str] = Field(default_factory=list)
    database_insight_ids: list[str] = Field(default_factory=list)
    database_task_ids: list[str] = Field(default_factory=list)

    @property
    def has_flat_files(self) -> bool:
        return self.insights is not None or self.tasks is not None

    @property
    def flat_record_count(self) -> int:
        return len(self.insights or []) + len(self.tasks or [])


class FormatDetection(BaseModel):
    """Result of format detection."""

    generation: FormatGeneration
    indicators: list[str] = Field(default_factory=list)
    can_upgrade: bool = False
    upgrade_path: list[FormatGeneration] = Field(default_factory=list)
