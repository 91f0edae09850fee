"""
On-disk format handling: generation detection, artifact inspection and
flat-file transforms.
"""

from loopflow.core.formats.detector import (
    can_direct_upgrade,
    database_is_current,
    detect_format,
    get_upgrade_path,
    has_legacy_evidence,
)
from loopflow.core.formats.inspector import inspect_artifacts, locate_flat_file
from loopflow.core.formats.transforms import (
    generate_backlog_file,
    generate_insights_file,
    json_insight_to_record,
    json_task_to_record,
    record_to_json_insight,
    record_to_json_task,
    validate_insight_json,
    validate_task_json,
)

__all__ = [
    "detect_format",
    "get_upgrade_path",
    "can_direct_upgrade",
    "has_legacy_evidence",
    "database_is_current",
    "inspect_artifacts",
    "locate_flat_file",
    "json_insight_to_record",
    "record_to_json_insight",
    "json_task_to_record",
    "record_to_json_task",
    "validate_insight_json",
    "validate_task_json",
    "generate_insights_file",
    "generate_backlog_file",
]
