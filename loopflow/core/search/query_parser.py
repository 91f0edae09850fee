"""
Search query parsing.

Syntax:
    retries timeout          bare terms, OR-combined
    "flaky network"          exact phrase, scored above bare terms
    -mock  -"unit test"      exclusions; any item containing them is dropped
    type:domain tag:"a b"    field filters, applied as equality before scoring
"""

import re

from loopflow.models.retrieval import SearchQuery

_TOKEN = re.compile(
    r'(?P<neg>-)?'
    r'(?:(?P<field>[A-Za-z_][A-Za-z0-9_]*):(?=[^\s/]))?'
    r'(?:"(?P<quoted>[^"]*)"|(?P<bare>\S+))'
)
_HAS_WORD_CHAR = re.compile(r"\w")


def parse_search_query(query: str | None) -> SearchQuery:
    """
    Parse a raw query string.

    Everything is lower-cased; matching is case-insensitive. Unterminated
    quotes are treated as bare text. Tokens without any word character
    (a lone "-", stray punctuation) are ignored.

    Args:
        query: Raw query text (None or blank yields an empty query)

    Returns:
        SearchQuery with terms, phrases, exclusions and field filters
    """
    parsed = SearchQuery()
    if not query or not query.strip():
        return parsed

    for match in _TOKEN.finditer(query):
        negated = match.group("neg") is not None
        field = match.group("field")
        quoted = match.group("quoted")
        value = quoted if quoted is not None else match.group("bare").strip('"')
        value = " ".join(value.split()).lower()

        if not value or not _HAS_WORD_CHAR.search(value):
            continue

        if field and not negated:
            parsed.field_filters.setdefault(field.lower(), []).append(value)
            continue

        if field:
            # -field:value excludes on the literal text
            value = f"{field.lower()}:{value}"

        if negated:
            if value not in parsed.excluded:
                parsed.excluded.append(value)
        elif quoted is not None:
            if value not in parsed.phrases:
                parsed.phrases.append(value)
        elif value not in parsed.terms:
            parsed.terms.append(value)

    return parsed


def build_fts_query(query: SearchQuery) -> str:
    """
    Build an FTS5 MATCH expression from the free-text part of a query.

    Terms become prefix matches, phrases exact phrase matches, all
    OR-combined. Exclusions and field filters are applied later by the scorer.

    Returns:
        MATCH expression, or "" when there is no free text
    """
    parts = [f'"{_escape(term)}"*' for term in query.terms]
    parts.extend(f'"{_escape(phrase)}"' for phrase in query.phrases)
    return " OR ".join(parts)


def _escape(text: str) -> str:
    return text.replace('"', '""')
