"""
Task model: a backlog item.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from loopflow.models.common import normalize_timestamp


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    BLOCKED = "BLOCKED"
    CANCELLED = "CANCELLED"
    NEEDS_QA = "NEEDS_QA"
    QA_PASSED = "QA_PASSED"


class TaskPriority(str, Enum):
    """Task priority."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Task(BaseModel):
    """
    A backlog task.

    The title may carry a bracketed type prefix such as "[IMPL]"; the derived
    summary keeps that prefix.
    """

    id: str = Field(..., min_length=1, description="Task ID")
    title: str = Field(..., min_length=1, description="Task title")
    description: str | None = Field(default=None, description="Task description")
    summary: str | None = Field(default=None, description="Derived from title")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="Lifecycle status")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Priority")
    depends_on: list[str] = Field(default_factory=list, description="Task IDs this depends on")
    acceptance_criteria: list[str] = Field(default_factory=list, description="Done criteria")
    test_file: str | None = Field(default=None, description="Associated test file")
    notes: str | None = Field(default=None, description="Free-form notes")

    created_at: datetime = Field(default_factory=datetime.now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=datetime.now, description="Last update timestamp")
    completed_at: datetime | None = Field(default=None, description="Completion timestamp")

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper().replace("-", "_").replace(" ", "_")
        return value

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value: Any) -> Any:
        if value is None:
            return TaskPriority.MEDIUM
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("created_at", "updated_at", "completed_at")
    @classmethod
    def _naive_timestamps(cls, value: datetime | None) -> datetime | None:
        return normalize_timestamp(value) if value is not None else None
