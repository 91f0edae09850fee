"""
Query parsing and relevance scoring.
"""

from loopflow.core.search.query_parser import build_fts_query, parse_search_query
from loopflow.core.search.scorer import (
    field_text,
    get_field,
    matches_field_filters,
    recency_factor,
    score_items,
)

__all__ = [
    "parse_search_query",
    "build_fts_query",
    "score_items",
    "matches_field_filters",
    "recency_factor",
    "field_text",
    "get_field",
]
