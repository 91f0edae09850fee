"""
Relevance scoring over in-memory candidates.

Storage does the coarse fetch (FTS prefix match + structural filters); this
module decides the final ranking. It never touches storage.
"""

from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from typing import Any

from loopflow.models.common import normalize_timestamp, parse_timestamp
from loopflow.models.retrieval import ScoredCandidate, ScoringOptions, SearchQuery
from loopflow.core.search.query_parser import parse_search_query

# Singular filter names accepted for list fields
FIELD_ALIASES = {"tag": "tags", "link": "links", "dependency": "depends_on"}


def get_field(item: Any, field: str) -> Any:
    """Read a field from a pydantic model, plain object or dict."""
    if isinstance(item, dict):
        return item.get(field)
    return getattr(item, field, None)


def field_text(item: Any, field: str) -> str:
    """Flatten a field value to searchable text."""
    value = get_field(item, field)
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (list, tuple, set)):
        return " ".join(_scalar_text(v) for v in value)
    return _scalar_text(value)


def _scalar_text(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def matches_field_filters(item: Any, field_filters: dict[str, list[str]]) -> bool:
    """
    Check field:value filters against an item.

    Different fields are AND-combined. Repeated values for a list field must
    all be present; repeated values for a scalar field are alternatives.
    """
    for field, values in field_filters.items():
        value = get_field(item, FIELD_ALIASES.get(field, field))
        if value is None:
            return False

        wanted = {_filter_key(v) for v in values}
        if isinstance(value, (list, tuple, set)):
            present = {_filter_key(_scalar_text(v)) for v in value}
            if not wanted <= present:
                return False
        elif _filter_key(_scalar_text(value)) not in wanted:
            return False

    return True


def _filter_key(value: str) -> str:
    # "edge-case", "Edge Case" and "edge_case" compare equal
    return value.strip().lower().replace("-", "_").replace(" ", "_")


def recency_factor(created: datetime | None, now: datetime, window_days: int) -> float:
    """Linear decay from 1.0 (now) to 0.0 (window_days ago). Future dates count as now."""
    if created is None:
        return 0.0
    age_days = (normalize_timestamp(now) - normalize_timestamp(created)).total_seconds() / 86400
    if age_days <= 0:
        return 1.0
    return max(0.0, 1.0 - age_days / window_days)


def score_items(
    items: Iterable[Any],
    query: SearchQuery | str | None,
    searchable_fields: list[str],
    options: ScoringOptions | None = None,
) -> list[ScoredCandidate]:
    """
    Score candidates against a query.

    Field filters are applied first and exclusions drop items outright. Each
    term (weight 1) or phrase (weight phrase_weight) contributes tf/(tf+1)
    per field, scaled by the field weight. The sum is normalized by the
    maximum attainable, then optionally boosted for recency and clamped
    to [0, 1].

    Args:
        items: Candidate records (models or dicts)
        query: Parsed query or raw query string
        searchable_fields: Fields matched against free text and exclusions
        options: Scoring options (defaults if omitted)

    Returns:
        ScoredCandidate for every surviving item, in input order.
        With no free text every surviving item scores 0.
    """
    if not isinstance(query, SearchQuery):
        query = parse_search_query(query)
    options = options or ScoringOptions()

    weights = {f: options.field_weights.get(f, 1.0) for f in searchable_fields}
    units = [(term, 1.0) for term in query.terms]
    units.extend((phrase, options.phrase_weight) for phrase in query.phrases)
    max_raw = sum(w for _, w in units) * sum(weights.values())
    now = options.now or datetime.now()

    results: list[ScoredCandidate] = []
    for item in items:
        if query.field_filters and not matches_field_filters(item, query.field_filters):
            continue

        texts = {f: field_text(item, f).lower() for f in searchable_fields}
        if any(ex in text for ex in query.excluded for text in texts.values()):
            continue

        raw = 0.0
        matched: list[str] = []
        for field, text in texts.items():
            if not text:
                continue
            field_raw = 0.0
            for unit, unit_weight in units:
                tf = text.count(unit)
                if tf:
                    field_raw += unit_weight * tf / (tf + 1)
            if field_raw > 0:
                matched.append(field)
                raw += weights[field] * field_raw

        score = raw / max_raw if max_raw > 0 else 0.0
        if score > 0 and options.recency_boost:
            created = parse_timestamp(get_field(item, options.timestamp_field))
            boost = options.max_recency_boost * recency_factor(
                created, now, options.recency_window_days
            )
            score *= 1 + boost

        results.append(
            ScoredCandidate(item=item, score=min(1.0, max(0.0, score)), matched_fields=matched)
        )

    return results
