"""
Progressive-disclosure retrieval.

Layer 1 scan: ranked compact index (summaries only)
Layer 2 expand: full records for chosen IDs, optional one-hop links and neighbors
Layer 3 timeline: chronological window around an anchor

Storage does the coarse fetch, the scorer decides the ranking.
"""

from datetime import datetime

from loopflow.config import Config
from loopflow.core.search.query_parser import parse_search_query
from loopflow.core.search.scorer import score_items
from loopflow.core.storage.base import Record, RecordStore
from loopflow.core.summarizer.heuristic import truncate_at_word
from loopflow.models.common import EntityKind, ScanScope, parse_timestamp
from loopflow.models.insight import Insight
from loopflow.models.retrieval import (
    ConnectResult,
    ExpandResult,
    LinkedSummary,
    RecordFilters,
    ScanMatch,
    ScanResult,
    ScoredCandidate,
    ScoringOptions,
    SearchQuery,
    TimelineContext,
    TimelineResult,
)
from loopflow.models.task import Task
from loopflow.utils.exceptions import ValidationError
from loopflow.utils.logger import get_logger

logger = get_logger(__name__)

CONNECT_INSIGHT_LIMIT = 10
CONNECT_TASK_LIMIT = 5

# field:value filters that storage can also apply
_PUSHDOWN_FIELDS = {
    "type": "types",
    "status": "statuses",
    "tag": "tags",
    "tags": "tags",
    "priority": "priorities",
}


def rank_candidates(candidates: list[ScoredCandidate]) -> list[ScoredCandidate]:
    """Order by score desc, then newest first, then ID for determinism."""
    ordered = sorted(candidates, key=lambda c: c.item.id)
    ordered.sort(key=lambda c: c.item.created_at, reverse=True)
    ordered.sort(key=lambda c: c.score, reverse=True)
    return ordered


class RetrievalService:
    """
    Scan / expand / timeline over a record store.

    Every call is self-contained: no caching between calls, read-only.
    """

    def __init__(self, store: RecordStore, config: Config):
        """
        Initialize retrieval service.

        Args:
            store: Record store to read from
            config: Configuration object
        """
        self.store = store
        self.config = config

    # ═══════════════════════════════════════════════════════════
    # SCAN
    # ═══════════════════════════════════════════════════════════

    async def scan(
        self,
        query: str | None = None,
        scope: ScanScope | str = ScanScope.ALL,
        filters: RecordFilters | None = None,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> ScanResult:
        """
        Search and return a ranked index of summaries.

        Free-text queries keep only items scoring above zero. Queries with no
        free text list the filtered items newest first with relevance 0.

        Args:
            query: Search query (terms, "phrases", -exclusions, field:value)
            scope: Which entity kinds to search
            filters: Structural filters
            limit: Maximum matches (default and cap from config)
            now: Reference time for the recency boost

        Returns:
            ScanResult with matches, total_count and truncated flag

        Raises:
            ValidationError: If limit is below 1
        """
        limit = self._resolve_limit(limit)
        scope = ScanScope(scope)
        parsed = parse_search_query(query)
        store_filters = self._pushdown_filters(parsed, filters)
        now = now or datetime.now()

        candidates: list[ScoredCandidate] = []
        for kind in scope.kinds():
            items = await self._fetch_candidates(kind, parsed, store_filters)
            options = self._scoring_options(kind, now)
            scored = score_items(items, parsed, list(options.field_weights), options)
            if parsed.has_free_text:
                scored = [c for c in scored if c.score > 0]
            candidates.extend(scored)

        ranked = rank_candidates(candidates)
        matches = [self._to_match(c.item, c.score) for c in ranked[:limit]]

        logger.info(
            "Scan returned {} of {}",
            len(matches),
            len(ranked),
            extra={"operation": "scan", "scope": scope.value, "query": query, "limit": limit},
        )

        return ScanResult(
            matches=matches,
            total_count=len(ranked),
            truncated=len(ranked) > len(matches),
        )

    async def _fetch_candidates(
        self, kind: EntityKind, query: SearchQuery, filters: RecordFilters | None
    ) -> list[Record]:
        candidate_limit = self.config.retrieval.candidate_limit
        if kind == EntityKind.INSIGHT:
            if query.has_free_text:
                return await self.store.search_insights(query, filters, candidate_limit)
            return await self.store.query_insights(filters, candidate_limit)
        if query.has_free_text:
            return await self.store.search_tasks(query, filters, candidate_limit)
        return await self.store.query_tasks(filters, candidate_limit)

    def _resolve_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.config.retrieval.default_limit
        if limit < 1:
            raise ValidationError(
                "limit must be at least 1",
                errors=[{"field": "limit", "message": "must be >= 1"}],
                context={"limit": limit},
            )
        return min(limit, self.config.retrieval.max_limit)

    def _pushdown_filters(
        self, query: SearchQuery, filters: RecordFilters | None
    ) -> RecordFilters | None:
        """Fold field:value filters into storage filters. The scorer re-checks them exactly."""
        pushed = {
            _PUSHDOWN_FIELDS[field]: values
            for field, values in query.field_filters.items()
            if field in _PUSHDOWN_FIELDS
        }
        if not pushed:
            return filters

        merged = filters.model_copy(deep=True) if filters else RecordFilters()
        for attr, values in pushed.items():
            current = getattr(merged, attr)
            if current:
                # Explicit filter already narrows this field; keep it and let the scorer intersect
                continue
            setattr(merged, attr, list(values))
        return merged

    def _scoring_options(self, kind: EntityKind, now: datetime) -> ScoringOptions:
        scoring = self.config.scoring
        weights = (
            scoring.insight_field_weights
            if kind == EntityKind.INSIGHT
            else scoring.task_field_weights
        )
        return ScoringOptions(
            field_weights=dict(weights),
            phrase_weight=scoring.phrase_weight,
            recency_boost=scoring.recency_boost,
            max_recency_boost=scoring.max_recency_boost,
            recency_window_days=scoring.recency_window_days,
            now=now,
        )

    # ═══════════════════════════════════════════════════════════
    # EXPAND
    # ═══════════════════════════════════════════════════════════

    async def expand(
        self,
        ids: list[str],
        include_links: bool = False,
        include_timeline: bool = False,
    ) -> ExpandResult:
        """
        Fetch full records for IDs.

        Missing IDs are reported in not_found, never raised. Link expansion
        stops at one hop regardless of cycles in the link graph.

        Args:
            ids: Record IDs (insights and/or tasks), request order preserved
            include_links: Also return one-hop linked insights as summaries
            include_timeline: Also return nearest records before/after each item

        Returns:
            ExpandResult
        """
        requested = list(dict.fromkeys(i for i in ids if i))
        result = ExpandResult()
        if not requested:
            return result

        insights = {i.id: i for i in await self.store.get_insights(requested)}
        tasks = {t.id: t for t in await self.store.get_tasks(requested)}

        for record_id in requested:
            if record_id in insights:
                result.insights.append(insights[record_id])
            elif record_id in tasks:
                result.tasks.append(tasks[record_id])
            else:
                result.not_found.append(record_id)

        if include_links:
            result.linked, result.unresolved_links = await self._linked_summaries(
                result.insights, exclude=set(requested)
            )

        if include_timeline:
            for record in [*result.insights, *result.tasks]:
                result.timeline[record.id] = await self._neighbors(record)

        logger.info(
            "Expanded {} records",
            len(result.insights) + len(result.tasks),
            extra={
                "operation": "expand",
                "requested": len(requested),
                "not_found": len(result.not_found),
                "linked": len(result.linked),
            },
        )
        return result

    async def _linked_summaries(
        self, sources: list[Insight], exclude: set[str]
    ) -> tuple[list[LinkedSummary], list[str]]:
        """
        One-hop link targets of sources, as summaries.

        Self links, duplicate links and targets in exclude are skipped.
        Links of the linked records are not followed.
        """
        targets: dict[str, list[str]] = {}
        for insight in sources:
            for link in insight.links:
                if link == insight.id or link in exclude:
                    continue
                linked_from = targets.setdefault(link, [])
                if insight.id not in linked_from:
                    linked_from.append(insight.id)

        if not targets:
            return [], []

        found = {i.id: i for i in await self.store.get_insights(list(targets))}
        linked = []
        unresolved = []
        for target_id, linked_from in targets.items():
            insight = found.get(target_id)
            if insight is None:
                unresolved.append(target_id)
                continue
            linked.append(
                LinkedSummary(
                    id=insight.id,
                    summary=self._summary_for(insight),
                    type=insight.type.value,
                    linked_from=linked_from,
                )
            )
        return linked, unresolved

    async def _neighbors(self, record: Record) -> TimelineContext:
        before = await self.store.get_records_before(record.created_at, 1)
        after = await self.store.get_records_after(record.created_at, 1)
        return TimelineContext(
            before=self._to_match(before[0]) if before else None,
            after=self._to_match(after[0]) if after else None,
        )

    # ═══════════════════════════════════════════════════════════
    # TIMELINE
    # ═══════════════════════════════════════════════════════════

    async def timeline(
        self,
        anchor: datetime | str,
        depth_before: int | None = None,
        depth_after: int | None = None,
        scope: ScanScope | str = ScanScope.ALL,
    ) -> TimelineResult:
        """
        Chronological window around an anchor.

        Returns up to depth_before records strictly earlier, every record
        created exactly at the anchor, and up to depth_after strictly later,
        ascending.

        Args:
            anchor: Timestamp, record ID, or ISO-8601 timestamp string
            depth_before: Records before the anchor (default from config)
            depth_after: Records after the anchor (default from config)
            scope: Which entity kinds to include

        Returns:
            TimelineResult

        Raises:
            ValidationError: If the anchor cannot be resolved or a depth is negative
        """
        default_depth = self.config.retrieval.timeline_depth
        depth_before = default_depth if depth_before is None else depth_before
        depth_after = default_depth if depth_after is None else depth_after
        if depth_before < 0 or depth_after < 0:
            raise ValidationError(
                "timeline depths must not be negative",
                errors=[{"field": "depth", "message": "must be >= 0"}],
                context={"depth_before": depth_before, "depth_after": depth_after},
            )

        kinds = ScanScope(scope).kinds()
        anchor_time, anchor_id = await self._resolve_anchor(anchor)

        before = await self.store.get_records_before(anchor_time, depth_before, kinds)
        at = await self.store.get_records_at(anchor_time, kinds)
        after = await self.store.get_records_after(anchor_time, depth_after, kinds)

        items = [self._to_match(r) for r in [*reversed(before), *at, *after]]

        logger.info(
            "Timeline around {}",
            anchor_id or anchor_time.isoformat(),
            extra={"operation": "timeline", "items": len(items)},
        )
        return TimelineResult(anchor_time=anchor_time, anchor_id=anchor_id, items=items)

    async def _resolve_anchor(self, anchor: datetime | str) -> tuple[datetime, str | None]:
        if isinstance(anchor, datetime):
            return parse_timestamp(anchor), None

        record: Record | None = await self.store.get_insight(anchor)
        if record is None:
            record = await self.store.get_task(anchor)
        if record is not None:
            return record.created_at, record.id

        try:
            parsed = parse_timestamp(anchor)
        except ValueError:
            parsed = None
        if parsed is None:
            raise ValidationError(
                f"Unknown timeline anchor: {anchor}",
                errors=[{"field": "anchor", "message": "not a record ID or timestamp"}],
                context={"anchor": anchor},
            )
        return parsed, None

    # ═══════════════════════════════════════════════════════════
    # CONNECT
    # ═══════════════════════════════════════════════════════════

    async def connect(
        self, query: str, include_tasks: bool = True, now: datetime | None = None
    ) -> ConnectResult:
        """
        Associative lookup: matching insights, their one-hop links and matching tasks.

        Args:
            query: Concept or topic
            include_tasks: Also search tasks
            now: Reference time for the recency boost

        Returns:
            ConnectResult with summaries only
        """
        insights = await self.scan(
            query, ScanScope.INSIGHTS, limit=CONNECT_INSIGHT_LIMIT, now=now
        )
        matched_ids = [m.id for m in insights.matches]
        sources = await self.store.get_insights(matched_ids)
        order = {record_id: index for index, record_id in enumerate(matched_ids)}
        sources.sort(key=lambda i: order[i.id])
        linked, _ = await self._linked_summaries(sources, exclude=set(matched_ids))

        tasks = []
        if include_tasks:
            task_scan = await self.scan(query, ScanScope.TASKS, limit=CONNECT_TASK_LIMIT, now=now)
            tasks = task_scan.matches

        suggestion = (
            "No direct matches. Try broader terms or use expand(ids) for specific items."
            if not insights.matches and not tasks
            else "Use expand(ids) for full details."
        )
        return ConnectResult(
            query=query,
            insights=insights.matches,
            linked=linked,
            tasks=tasks,
            suggestion=suggestion,
        )

    # ═══════════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════════

    def _summary_for(self, record: Record) -> str:
        if record.summary:
            return record.summary
        if isinstance(record, Insight):
            return truncate_at_word(record.content.strip(), self.config.retrieval.summary_length)
        return record.title

    def _to_match(self, record: Record, score: float = 0.0) -> ScanMatch:
        """Convert a record into a compact index entry."""
        if isinstance(record, Task):
            return ScanMatch(
                id=record.id,
                kind=EntityKind.TASK,
                summary=self._summary_for(record),
                relevance=score,
                date=record.created_at,
                type=None,
                status=record.status.value,
            )
        return ScanMatch(
            id=record.id,
            kind=EntityKind.INSIGHT,
            summary=self._summary_for(record),
            relevance=score,
            date=record.created_at,
            type=record.type.value,
            status=record.status.value,
        )
