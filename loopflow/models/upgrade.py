"""
Upgrade models: plan steps and execution results.
"""

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from loopflow.models.formats import FormatGeneration, FormatState, ValidationIssue


class UpgradeStep(BaseModel):
    """A named transition between two adjacent generations."""

    name: str
    from_generation: FormatGeneration
    to_generation: FormatGeneration
    description: str
    estimated_items: int | None = None


class EntityCounts(BaseModel):
    """Per-kind migration counters."""

    migrated: int = 0
    skipped: int = 0
    errored: int = 0


class StepResult(BaseModel):
    """Outcome of one upgrade step."""

    step: UpgradeStep
    success: bool = True
    skipped: bool = Field(default=False, description="Target indicators already held")
    counts: dict[str, EntityCounts] = Field(default_factory=dict)
    id_mapping: dict[str, str] = Field(default_factory=dict, description="legacy -> global")
    errors: list[ValidationIssue] = Field(default_factory=list)
    error: str | None = None

    @property
    def migrated(self) -> int:
        return sum(c.migrated for c in self.counts.values())


class UpgradeResult(BaseModel):
    """Outcome of a whole upgrade run."""

    model_config = {"arbitrary_types_allowed": True}

    success: bool
    from_generation: FormatGeneration
    to_generation: FormatGeneration
    steps: list[StepResult] = Field(default_factory=list)
    backup_path: Path | None = None
    final_state: FormatState | None = None
    error: str | None = None
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: datetime | None = None

    @property
    def total_migrated(self) -> int:
        return sum(step.migrated for step in self.steps)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for step in self.steps for issue in step.errors]
