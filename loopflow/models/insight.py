"""
Insight model: a short structured learning captured during development.
"""

import hashlib
import re
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from loopflow.models.common import normalize_timestamp

_WHITESPACE = re.compile(r"\s+")


class InsightType(str, Enum):
    """Closed set of insight categories."""

    PROCESS = "process"
    DOMAIN = "domain"
    ARCHITECTURE = "architecture"
    EDGE_CASE = "edge_case"
    TECHNICAL = "technical"


class InsightStatus(str, Enum):
    """Insight review status."""

    UNPROCESSED = "unprocessed"
    DISCUSSED = "discussed"


class InsightSource(BaseModel):
    """Provenance of an insight."""

    model_config = {"extra": "ignore"}

    task: str | None = Field(default=None, description="Originating task ID")
    session: str | None = Field(default=None, description="Originating session")
    original_id: str | None = Field(default=None, description="ID before migration/import")
    repo: str | None = Field(default=None, description="Repository hash the record came from")


class Insight(BaseModel):
    """
    A captured insight.

    Features:
    - Global ID (INS-YYYYMMDD-xxxxxx), immutable once assigned
    - Optional derived summary for progressive disclosure
    - Tags with set semantics, ordered links to other insights
    - Links may form cycles; traversals must stay bounded
    """

    id: str = Field(..., min_length=1, description="Insight ID")
    content: str = Field(..., min_length=1, description="Full insight text")
    summary: str | None = Field(default=None, description="Derived summary (long content only)")
    type: InsightType = Field(default=InsightType.TECHNICAL, description="Insight category")
    status: InsightStatus = Field(default=InsightStatus.UNPROCESSED, description="Review status")
    tags: list[str] = Field(default_factory=list, description="Unordered tag set")
    links: list[str] = Field(default_factory=list, description="Linked insight IDs")
    source: InsightSource | None = Field(default=None, description="Provenance")
    notes: str | None = Field(default=None, description="Free-form notes")

    created_at: datetime = Field(default_factory=datetime.now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=datetime.now, description="Last update timestamp")

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value

    @field_validator("summary")
    @classmethod
    def _summary_not_blank(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("summary must not be blank when present")
        return value

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        # Accept "edge-case" / "Edge_Case" spellings
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_")
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: list[str]) -> list[str]:
        seen: set[str] = set()
        tags = []
        for tag in value:
            tag = tag.strip()
            if tag and tag not in seen:
                seen.add(tag)
                tags.append(tag)
        return tags

    @field_validator("created_at", "updated_at")
    @classmethod
    def _naive_timestamps(cls, value: datetime) -> datetime:
        return normalize_timestamp(value)

    @property
    def content_hash(self) -> str:
        """Normalization-insensitive fingerprint of content."""
        return compute_content_hash(self.content)


def compute_content_hash(content: str) -> str:
    """
    Compute SHA256 hash of content for deduplication.

    The hash is prefixed with "sha256:" for easy identification of the algorithm used.
    Whitespace runs are collapsed and the ends stripped, so reflowed text hashes equal.

    Args:
        content: Text content to hash

    Returns:
        Hash string in format "sha256:hexdigest"
    """
    normalized = _WHITESPACE.sub(" ", content).strip()
    hash_bytes = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
    return f"sha256:{hash_bytes}"
