"""
Flat-file transforms (pure functions, no I/O).

Convert between the JSON records of insights.json / backlog.json and the
Insight / Task models, validate raw JSON records field by field, and
build the flat-file views regenerated from the relational store.
"""

from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from loopflow.core.summarizer.base import Summarizer
from loopflow.models.common import format_timestamp, parse_timestamp
from loopflow.models.formats import ValidationIssue
from loopflow.models.insight import Insight, InsightStatus, InsightType
from loopflow.models.task import Task, TaskPriority, TaskStatus
from loopflow.utils.exceptions import ValidationError

INSIGHTS_FILE_SCHEMA_VERSION = "2.0"
INSIGHTS_FILE_DESCRIPTION = "Structured learnings (zettelkasten). Links form a knowledge graph."
FLAT_FILE_SOURCE = "loopflow-sqlite"

_INSIGHT_TYPES = {t.value for t in InsightType}
_INSIGHT_STATUSES = {s.value for s in InsightStatus}
_TASK_STATUSES = {s.value for s in TaskStatus}
_TASK_PRIORITIES = {p.value for p in TaskPriority}


# ═══════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════


def _record_id(data: Any) -> str | None:
    if isinstance(data, dict) and isinstance(data.get("id"), str):
        return data["id"]
    return None


def _check_string_list(
    data: dict, field: str, record_id: str | None, kind: str
) -> list[ValidationIssue]:
    value = data.get(field)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        return [
            ValidationIssue(
                record_id=record_id, kind=kind, field=field, message="must be a list of strings"
            )
        ]
    return []


def _check_timestamp(
    data: dict, field: str, record_id: str | None, kind: str
) -> list[ValidationIssue]:
    value = data.get(field)
    if value is None:
        return []
    try:
        parse_timestamp(value)
    except (TypeError, ValueError):
        return [
            ValidationIssue(
                record_id=record_id, kind=kind, field=field, message=f"invalid timestamp: {value!r}"
            )
        ]
    return []


def validate_insight_json(data: Any) -> list[ValidationIssue]:
    """
    Validate a raw flat-file insight record.

    Only id and content are required; type and status fall back to
    defaults when absent but must be known values when present.

    Returns:
        Field-level issues (empty when valid)
    """
    kind = "insight"
    if not isinstance(data, dict):
        return [ValidationIssue(kind=kind, field="*", message="record must be an object")]

    record_id = _record_id(data)
    issues: list[ValidationIssue] = []

    if not record_id or not record_id.strip():
        issues.append(ValidationIssue(kind=kind, field="id", message="missing or not a string"))

    content = data.get("content")
    if not isinstance(content, str) or not content.strip():
        issues.append(
            ValidationIssue(
                record_id=record_id, kind=kind, field="content", message="missing or empty"
            )
        )

    summary = data.get("summary")
    if summary is not None and (not isinstance(summary, str) or not summary.strip()):
        issues.append(
            ValidationIssue(
                record_id=record_id, kind=kind, field="summary", message="must be non-empty text"
            )
        )

    insight_type = data.get("type")
    if insight_type is not None and (
        not isinstance(insight_type, str)
        or insight_type.strip().lower().replace("-", "_") not in _INSIGHT_TYPES
    ):
        issues.append(
            ValidationIssue(
                record_id=record_id,
                kind=kind,
                field="type",
                message=f"unknown insight type: {insight_type!r}",
            )
        )

    status = data.get("status")
    if status is not None and (
        not isinstance(status, str) or status.strip().lower() not in _INSIGHT_STATUSES
    ):
        issues.append(
            ValidationIssue(
                record_id=record_id, kind=kind, field="status", message=f"unknown status: {status!r}"
            )
        )

    source = data.get("source")
    if source is not None and not isinstance(source, dict):
        issues.append(
            ValidationIssue(
                record_id=record_id, kind=kind, field="source", message="must be an object"
            )
        )

    issues.extend(_check_string_list(data, "tags", record_id, kind))
    issues.extend(_check_string_list(data, "links", record_id, kind))
    for field in ("created", "created_at", "updated", "updated_at"):
        issues.extend(_check_timestamp(data, field, record_id, kind))
    return issues


def validate_task_json(data: Any) -> list[ValidationIssue]:
    """Validate a raw flat-file task record. Returns field-level issues."""
    kind = "task"
    if not isinstance(data, dict):
        return [ValidationIssue(kind=kind, field="*", message="record must be an object")]

    record_id = _record_id(data)
    issues: list[ValidationIssue] = []

    if not record_id or not record_id.strip():
        issues.append(ValidationIssue(kind=kind, field="id", message="missing or not a string"))

    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        issues.append(
            ValidationIssue(record_id=record_id, kind=kind, field="title", message="missing or empty")
        )

    status = data.get("status")
    if status is not None and (
        not isinstance(status, str)
        or status.strip().upper().replace("-", "_").replace(" ", "_") not in _TASK_STATUSES
    ):
        issues.append(
            ValidationIssue(
                record_id=record_id, kind=kind, field="status", message=f"unknown status: {status!r}"
            )
        )

    priority = data.get("priority")
    if priority is not None and (
        not isinstance(priority, str) or priority.strip().lower() not in _TASK_PRIORITIES
    ):
        issues.append(
            ValidationIssue(
                record_id=record_id,
                kind=kind,
                field="priority",
                message=f"unknown priority: {priority!r}",
            )
        )

    issues.extend(_check_string_list(data, "depends_on", record_id, kind))
    issues.extend(_check_string_list(data, "acceptance_criteria", record_id, kind))
    for field in ("created", "created_at", "updated", "updated_at"):
        issues.extend(_check_timestamp(data, field, record_id, kind))
    issues.extend(_check_timestamp(data, "completed", record_id, kind))
    issues.extend(_check_timestamp(data, "completed_at", record_id, kind))
    return issues


def _raise_issues(issues: list[ValidationIssue], kind: str, record_id: str | None) -> None:
    raise ValidationError(
        f"Invalid {kind} record: {record_id or '<no id>'}",
        errors=[issue.model_dump() for issue in issues],
        context={"record_id": record_id, "kind": kind},
    )


# ═══════════════════════════════════════════════════════════
# JSON -> MODEL
# ═══════════════════════════════════════════════════════════


def json_insight_to_record(
    data: dict[str, Any],
    summarizer: Summarizer | None = None,
    default_created: datetime | None = None,
) -> Insight:
    """
    Convert a flat-file insight into an Insight.

    An existing summary is kept; a missing one is derived with the
    summarizer when given (short content gets none).

    Args:
        data: Raw JSON record
        summarizer: Optional summarizer for records lacking a summary
        default_created: Creation time for records without "created"

    Returns:
        Insight model

    Raises:
        ValidationError: If the record fails validation
    """
    issues = validate_insight_json(data)
    if issues:
        _raise_issues(issues, "insight", _record_id(data))

    summary = data.get("summary")
    if summary is None and summarizer is not None:
        summary = summarizer.maybe_summarize(data["content"], kind="insight")

    created = parse_timestamp(data.get("created") or data.get("created_at"))
    created = created or default_created or datetime.now()
    updated = parse_timestamp(data.get("updated") or data.get("updated_at")) or created

    try:
        return Insight(
            id=data["id"],
            content=data["content"],
            summary=summary,
            type=data.get("type") or InsightType.TECHNICAL,
            status=data.get("status") or InsightStatus.UNPROCESSED,
            tags=data.get("tags") or [],
            links=data.get("links") or [],
            source=data.get("source"),
            notes=data.get("notes"),
            created_at=created,
            updated_at=updated,
        )
    except PydanticValidationError as e:
        _raise_issues(_issues_from_pydantic(e, "insight", data["id"]), "insight", data["id"])


def json_task_to_record(
    data: dict[str, Any],
    summarizer: Summarizer | None = None,
    default_created: datetime | None = None,
) -> Task:
    """
    Convert a flat-file task into a Task.

    Raises:
        ValidationError: If the record fails validation
    """
    issues = validate_task_json(data)
    if issues:
        _raise_issues(issues, "task", _record_id(data))

    summary = data.get("summary")
    if summary is None and summarizer is not None:
        summary = summarizer.maybe_summarize(data["title"], kind="task")

    created = parse_timestamp(data.get("created") or data.get("created_at"))
    created = created or default_created or datetime.now()
    updated = parse_timestamp(data.get("updated") or data.get("updated_at")) or created

    try:
        return Task(
            id=data["id"],
            title=data["title"],
            description=data.get("description"),
            summary=summary,
            status=data.get("status") or TaskStatus.TODO,
            priority=data.get("priority"),
            depends_on=data.get("depends_on") or [],
            acceptance_criteria=data.get("acceptance_criteria") or [],
            test_file=data.get("test_file"),
            notes=data.get("notes"),
            created_at=created,
            updated_at=updated,
            completed_at=parse_timestamp(data.get("completed") or data.get("completed_at")),
        )
    except PydanticValidationError as e:
        _raise_issues(_issues_from_pydantic(e, "task", data["id"]), "task", data["id"])


def _issues_from_pydantic(
    error: PydanticValidationError, kind: str, record_id: str | None
) -> list[ValidationIssue]:
    return [
        ValidationIssue(
            record_id=record_id,
            kind=kind,
            field=".".join(str(part) for part in err["loc"]) or "*",
            message=err["msg"],
        )
        for err in error.errors()
    ]


# ═══════════════════════════════════════════════════════════
# MODEL -> JSON
# ═══════════════════════════════════════════════════════════


def record_to_json_insight(insight: Insight) -> dict[str, Any]:
    """
    Convert an Insight into its flat-file form.

    The "summary" key is always written (null for short content); its
    presence marks the file as post-legacy.
    """
    data: dict[str, Any] = {
        "id": insight.id,
        "content": insight.content,
        "summary": insight.summary,
        "type": insight.type.value,
        "status": insight.status.value,
        "tags": list(insight.tags),
        "links": list(insight.links),
    }
    if insight.source is not None:
        data["source"] = insight.source.model_dump(exclude_none=True)
    if insight.notes is not None:
        data["notes"] = insight.notes
    data["created"] = format_timestamp(insight.created_at)
    data["updated"] = format_timestamp(insight.updated_at)
    return data


def record_to_json_task(task: Task) -> dict[str, Any]:
    """Convert a Task into its flat-file form."""
    data: dict[str, Any] = {
        "id": task.id,
        "title": task.title,
        "summary": task.summary,
        "status": task.status.value,
        "priority": task.priority.value,
        "depends_on": list(task.depends_on),
        "acceptance_criteria": list(task.acceptance_criteria),
    }
    if task.description is not None:
        data["description"] = task.description
    if task.test_file is not None:
        data["test_file"] = task.test_file
    if task.notes is not None:
        data["notes"] = task.notes
    data["created"] = format_timestamp(task.created_at)
    data["updated"] = format_timestamp(task.updated_at)
    if task.completed_at is not None:
        data["completed"] = format_timestamp(task.completed_at)
    return data


# ═══════════════════════════════════════════════════════════
# FLAT-FILE VIEWS
# ═══════════════════════════════════════════════════════════


def generate_insights_file(
    insights: list[Insight],
    schema_version: str = INSIGHTS_FILE_SCHEMA_VERSION,
    exported_at: datetime | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build insights.json content.

    Args:
        insights: Records to write
        schema_version: File schema version
        exported_at: Generation time (default now)
        extra: Additional top-level keys (e.g. quarantined records)

    Returns:
        JSON-serializable dict
    """
    data = {
        "schema_version": schema_version,
        "description": INSIGHTS_FILE_DESCRIPTION,
        "exported_at": format_timestamp(exported_at or datetime.now()),
        "source": FLAT_FILE_SOURCE,
        "insights": [record_to_json_insight(i) for i in insights],
    }
    if extra:
        data.update(extra)
    return data


def generate_backlog_file(
    tasks: list[Task],
    project_name: str = "",
    project_notes: str = "",
    exported_at: datetime | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build backlog.json content."""
    exported_at = exported_at or datetime.now()
    data = {
        "project": project_name,
        "last_updated": exported_at.date().isoformat(),
        "notes": project_notes,
        "exported_at": format_timestamp(exported_at),
        "source": FLAT_FILE_SOURCE,
        "tasks": [record_to_json_task(t) for t in tasks],
    }
    if extra:
        data.update(extra)
    return data


def split_insights_file(data: Any) -> tuple[list[Any], str | None, dict[str, Any]]:
    """
    Split parsed insights.json into (records, schema_version, other keys).

    Accepts the wrapped {"insights": [...]} form and a bare list.
    """
    if isinstance(data, list):
        return data, None, {}
    if not isinstance(data, dict):
        raise ValidationError(
            "insights file must be an object or a list",
            errors=[{"field": "*", "message": "unexpected top-level type"}],
        )
    records = data.get("insights") or []
    if not isinstance(records, list):
        raise ValidationError(
            "insights file 'insights' must be a list",
            errors=[{"field": "insights", "message": "must be a list"}],
        )
    meta = {k: v for k, v in data.items() if k not in ("insights", "schema_version")}
    version = data.get("schema_version")
    return records, str(version) if version is not None else None, meta


def split_backlog_file(data: Any) -> tuple[list[Any], dict[str, Any]]:
    """Split parsed backlog.json into (records, other keys)."""
    if isinstance(data, list):
        return data, {}
    if not isinstance(data, dict):
        raise ValidationError(
            "backlog file must be an object or a list",
            errors=[{"field": "*", "message": "unexpected top-level type"}],
        )
    records = data.get("tasks") or []
    if not isinstance(records, list):
        raise ValidationError(
            "backlog file 'tasks' must be a list",
            errors=[{"field": "tasks", "message": "must be a list"}],
        )
    return records, {k: v for k, v in data.items() if k != "tasks"}
