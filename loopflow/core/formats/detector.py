"""
Format generation detection (pure, no I/O).

Callers read artifacts once (see inspector.inspect_artifacts) and pass the
resulting FormatState in. Detection is evidence based: every rule that
fires leaves an indicator string in the result.
"""

from loopflow.models.formats import (
    GENERATION_ORDER,
    FormatDetection,
    FormatGeneration,
    FormatState,
)
from loopflow.utils.id_generator import is_legacy_id, is_valid_id

RECORD_TABLES = ("insights", "tasks")
FTS_TABLES = ("insights_fts", "tasks_fts")

# Indicator names
LEGACY_IDS = "legacy_ids"
MISSING_SUMMARY_FIELD = "missing_summary_field"
MISSING_SCHEMA_VERSION = "missing_schema_version"
GLOBAL_IDS = "global_ids"
SUMMARIES_PRESENT = "summaries_present"
FLAT_FILES = "flat_files"
DATABASE_PRESENT = "database_present"
FULL_TEXT_INDEX = "full_text_index"
DATABASE_COMPLETE = "database_complete"
DATABASE_INCOMPLETE = "database_incomplete"


def _flat_records(state: FormatState) -> list[dict]:
    records = []
    for record in (state.insights or []) + (state.tasks or []):
        if isinstance(record, dict):
            records.append(record)
    return records


def has_legacy_evidence(state: FormatState) -> bool:
    """Whether any flat-file record still has a legacy ID or lacks the summary field."""
    for record in _flat_records(state):
        record_id = record.get("id")
        if isinstance(record_id, str) and is_legacy_id(record_id):
            return True
        if "summary" not in record:
            return True
    return False


def database_is_current(state: FormatState) -> bool:
    """
    Whether the relational store is a complete Generation C store.

    Requires both record tables, both full-text tables, and every flat-file
    ID present in the database.
    """
    if not state.database_exists:
        return False
    tables = set(state.database_tables)
    if not all(t in tables for t in RECORD_TABLES + FTS_TABLES):
        return False
    return not _missing_from_database(state)


def _missing_from_database(state: FormatState) -> list[str]:
    db_ids = set(state.database_insight_ids) | set(state.database_task_ids)
    missing = []
    for record in _flat_records(state):
        record_id = record.get("id")
        if isinstance(record_id, str) and record_id not in db_ids:
            missing.append(record_id)
    return missing


def detect_format(state: FormatState) -> FormatDetection:
    """
    Detect the format generation of a store.

    Rules, first match wins:
    - LEGACY: any flat record has a legacy ID or no "summary" key
    - CURRENT: database has record and FTS tables and every flat-file ID
    - INTERMEDIATE: flat files or a database exist
    - EMPTY: nothing found

    Args:
        state: Already-read artifact summary

    Returns:
        FormatDetection with generation, indicators and upgrade path
    """
    indicators: list[str] = []
    records = _flat_records(state)

    if state.has_flat_files:
        indicators.append(FLAT_FILES)
        if state.insights is not None and state.insights_schema_version is None:
            indicators.append(MISSING_SCHEMA_VERSION)

    ids = [r.get("id") for r in records if isinstance(r.get("id"), str)]
    if any(is_legacy_id(i) for i in ids):
        indicators.append(LEGACY_IDS)
    if ids and all(is_valid_id(i) for i in ids):
        indicators.append(GLOBAL_IDS)

    if any("summary" not in r for r in records):
        indicators.append(MISSING_SUMMARY_FIELD)
    elif records:
        indicators.append(SUMMARIES_PRESENT)

    if state.database_exists:
        indicators.append(DATABASE_PRESENT)
        tables = set(state.database_tables)
        if all(t in tables for t in FTS_TABLES):
            indicators.append(FULL_TEXT_INDEX)
        if all(t in tables for t in RECORD_TABLES):
            if _missing_from_database(state):
                indicators.append(DATABASE_INCOMPLETE)
            else:
                indicators.append(DATABASE_COMPLETE)

    if has_legacy_evidence(state):
        generation = FormatGeneration.LEGACY
    elif database_is_current(state):
        generation = FormatGeneration.CURRENT
    elif state.has_flat_files or state.database_exists:
        generation = FormatGeneration.INTERMEDIATE
    else:
        generation = FormatGeneration.EMPTY

    path = get_upgrade_path(generation, FormatGeneration.CURRENT)
    return FormatDetection(
        generation=generation,
        indicators=indicators,
        can_upgrade=bool(path),
        upgrade_path=path,
    )


def get_upgrade_path(
    from_generation: FormatGeneration, to_generation: FormatGeneration
) -> list[FormatGeneration]:
    """
    Ordered generations to traverse, excluding the start and including the target.

    Empty when already at or past the target, or when either end is EMPTY.
    """
    if from_generation == FormatGeneration.EMPTY or to_generation == FormatGeneration.EMPTY:
        return []
    start = from_generation.rank
    end = to_generation.rank
    if start >= end:
        return []
    return GENERATION_ORDER[start + 1 : end + 1]


def can_direct_upgrade(from_generation: FormatGeneration, to_generation: FormatGeneration) -> bool:
    """True only for adjacent generations (A→B, B→C)."""
    return len(get_upgrade_path(from_generation, to_generation)) == 1
