"""
ID generation utilities for LoopFlow.

Global IDs are chronologically sortable and human-legible:
- Insights: INS-YYYYMMDD-xxxxxx
- Tasks: TASK-YYYYMMDD-xxxxxx

where xxxxxx is six characters from [0-9a-z] (36^6 combinations per day).

Older stores used fixed-width sequential IDs (INS-001, LF-042). Those are
migrated deterministically so that re-running an upgrade never mints a
second ID for a record that was already migrated.
"""

import hashlib
import os
import random
import re
import string
from collections.abc import Collection
from datetime import date, datetime
from typing import NamedTuple

SUFFIX_ALPHABET = string.digits + string.ascii_lowercase
SUFFIX_LENGTH = 6

ENTITY_PREFIXES: dict[str, str] = {
    "insight": "INS",
    "task": "TASK",
}

# Legacy sequential prefixes and the global prefix each one migrates to
LEGACY_PREFIXES: dict[str, str] = {
    "INS": "INS",
    "LF": "TASK",
}

_GLOBAL_ID_PATTERN = re.compile(r"^(?P<prefix>[A-Z]+)-(?P<date>\d{8})-(?P<suffix>[0-9a-z]{6})$")
_LEGACY_ID_PATTERN = re.compile(r"^(?P<prefix>[A-Z]+)-(?P<number>\d{3,})$")

_system_random = random.SystemRandom()


class ParsedId(NamedTuple):
    """Components of a global ID."""

    prefix: str
    date: date
    suffix: str


def _prefix_for(entity_type: str) -> str:
    try:
        return ENTITY_PREFIXES[str(entity_type).lower()]
    except KeyError:
        raise ValueError(f"Unknown entity type: {entity_type}") from None


def _to_date(value: datetime | date | str) -> date:
    """Coerce a datetime, date or ISO-8601 string to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        raise ValueError("Empty date value")
    return datetime.fromisoformat(text.replace("Z", "+00:00")).date()


def _suffix_from_digest(digest: bytes) -> str:
    number = int.from_bytes(digest, "big")
    chars = []
    for _ in range(SUFFIX_LENGTH):
        number, index = divmod(number, len(SUFFIX_ALPHABET))
        chars.append(SUFFIX_ALPHABET[index])
    return "".join(chars)


def generate_id(
    entity_type: str,
    timestamp: datetime | None = None,
    rng: random.Random | None = None,
) -> str:
    """
    Generate a global ID.

    Pure when both timestamp and a seeded rng are supplied.

    Args:
        entity_type: "insight" or "task"
        timestamp: Creation time (default: now)
        rng: Random source (default: system random)

    Returns:
        ID in format "{PREFIX}-{YYYYMMDD}-{xxxxxx}"

    Raises:
        ValueError: If entity_type is unknown
    """
    prefix = _prefix_for(entity_type)
    timestamp = timestamp or datetime.now()
    rng = rng or _system_random
    suffix = "".join(rng.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{prefix}-{timestamp:%Y%m%d}-{suffix}"


def generate_unique_id(
    entity_type: str,
    existing_ids: Collection[str],
    timestamp: datetime | None = None,
    rng: random.Random | None = None,
    max_attempts: int = 100,
) -> str:
    """
    Generate a global ID that does not collide with existing_ids.

    Args:
        entity_type: "insight" or "task"
        existing_ids: IDs already taken (storage plus IDs assigned in this batch)
        timestamp: Creation time (default: now)
        rng: Random source (default: system random)
        max_attempts: Re-roll budget before giving up

    Returns:
        A fresh global ID

    Raises:
        RuntimeError: If no free ID was found within max_attempts
    """
    for _ in range(max_attempts):
        candidate = generate_id(entity_type, timestamp, rng)
        if candidate not in existing_ids:
            return candidate
    raise RuntimeError(f"Could not generate a unique {entity_type} ID in {max_attempts} attempts")


def parse_id(value: str) -> ParsedId | None:
    """
    Parse a global ID into its components.

    Returns:
        ParsedId, or None for malformed input (including impossible dates)
    """
    if not isinstance(value, str):
        return None
    match = _GLOBAL_ID_PATTERN.match(value)
    if not match:
        return None
    try:
        day = datetime.strptime(match.group("date"), "%Y%m%d").date()
    except ValueError:
        return None
    return ParsedId(prefix=match.group("prefix"), date=day, suffix=match.group("suffix"))


def is_valid_id(value: str) -> bool:
    """Check whether value is a well-formed global ID."""
    return parse_id(value) is not None


def is_legacy_id(value: str) -> bool:
    """Check whether value is an old fixed-width sequential ID (PREFIX-NNN)."""
    return isinstance(value, str) and _LEGACY_ID_PATTERN.match(value) is not None


def migrate_legacy_id(
    legacy_id: str,
    created_date: datetime | date | str,
    repo_hash: str,
) -> str:
    """
    Deterministically map a legacy sequential ID to a global ID.

    The suffix is derived from a SHA-256 of (legacy_id, created date, repo_hash),
    so identical inputs always yield the identical ID.

    Args:
        legacy_id: Sequential ID such as "INS-007" or "LF-042"
        created_date: Record creation date (datetime, date or ISO string)
        repo_hash: Repository namespace from repo_hash()

    Returns:
        Global ID with the record's creation date

    Raises:
        ValueError: If legacy_id is not a legacy ID or the date is unparseable
    """
    match = _LEGACY_ID_PATTERN.match(legacy_id) if isinstance(legacy_id, str) else None
    if not match:
        raise ValueError(f"Not a legacy ID: {legacy_id!r}")

    legacy_prefix = match.group("prefix")
    prefix = LEGACY_PREFIXES.get(legacy_prefix, legacy_prefix)
    day = _to_date(created_date)

    seed = f"{legacy_id}|{day:%Y%m%d}|{repo_hash}".encode("utf-8")
    suffix = _suffix_from_digest(hashlib.sha256(seed).digest())
    return f"{prefix}-{day:%Y%m%d}-{suffix}"


def repo_hash(path: str | os.PathLike) -> str:
    """
    Short stable hash identifying a repository path.

    Not for security: namespaces legacy-ID migration and bundle provenance.

    Returns:
        8 hex characters
    """
    normalized = os.path.normcase(os.path.normpath(os.path.abspath(os.fspath(path))))
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:8]


def entity_kind_for_id(value: str) -> str | None:
    """
    Infer the entity kind ("insight" / "task") from an ID prefix.

    Works for global and legacy IDs. Returns None for unknown prefixes.
    """
    parsed = parse_id(value)
    if parsed is not None:
        prefix = parsed.prefix
    else:
        match = _LEGACY_ID_PATTERN.match(value) if isinstance(value, str) else None
        if not match:
            return None
        prefix = LEGACY_PREFIXES.get(match.group("prefix"), match.group("prefix"))

    for kind, kind_prefix in ENTITY_PREFIXES.items():
        if kind_prefix == prefix:
            return kind
    return None
