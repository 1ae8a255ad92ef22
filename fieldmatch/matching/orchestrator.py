"""Match detected fields against stored personal-data records.

One call to :meth:`MatchOrchestrator.match_fields_to_store` walks the states
``IDLE -> GROUPING -> CACHE_LOOKUP -> (CACHE_HIT | FETCHING) -> MATCHING -> DONE``.
Cache-miss types are fetched with a single remote query per batch, and
concurrent callers asking for the same batch share that query.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from ..config import Settings, get_settings
from ..models import (
    Candidate,
    DetectedField,
    MatchError,
    MatchReport,
    MatchResult,
    MatchSource,
    MissingData,
    RemoteRecord,
    Suggestion,
    utcnow,
)
from ..stores.kv import KeyValueStore
from ..stores.records import RecordQuery, RecordStore, parse_record
from .cache import InFlightRequests, ResultCache, request_key
from .cancellation import CancellationToken, MatchCancelledError
from .fuzzy import DEFAULT_THRESHOLD, TagIndex, find_matches, similarity
from .rules import DEFAULT_RULE_TABLE, MappingRule, RuleMatcher, RuleTable, load_rule_table, rule_types_for
from .tags import field_tags, search_tags_for

logger = logging.getLogger(__name__)

TRADITIONAL_SCORE = 90
MAX_CANDIDATES = 8
MAX_SUGGESTIONS = 5
RECENT_RECORD_WINDOW = timedelta(days=30)

TYPE_KEY_PREFIX = "data_"
RAW_RECORDS_KEY = "records_raw"
TAG_INDEX_KEY = "tag_index"
REMOTE_FETCH_ERROR = "remote_fetch_error"


class MatchState(Enum):
    IDLE = "idle"
    GROUPING = "grouping"
    CACHE_LOOKUP = "cache_lookup"
    CACHE_HIT = "cache_hit"
    FETCHING = "fetching"
    MATCHING = "matching"
    DONE = "done"


def type_cache_key(field_type: str) -> str:
    return f"{TYPE_KEY_PREFIX}{field_type}"


def records_to_payload(records: Iterable[RemoteRecord]) -> List[Dict[str, Any]]:
    return [record.to_dict() for record in records]


def records_from_payload(payload: Any) -> List[RemoteRecord]:
    if not isinstance(payload, list):
        return []
    return [record for record in (parse_record(item) for item in payload) if record is not None]


def traditional_candidates(records: Sequence[RemoteRecord], backing_field_names: Sequence[str]) -> List[Candidate]:
    """One fixed-score candidate per non-empty backing field value."""

    candidates: List[Candidate] = []
    for record in records:
        for name in backing_field_names:
            value = record.text_value(name)
            if value is None:
                continue
            candidates.append(
                Candidate(
                    value=value,
                    record_id=record.id,
                    score=TRADITIONAL_SCORE,
                    match_kind="traditional",
                    matched_on=name,
                    record_title=record.title,
                    last_used=record.last_used or record.created_at,
                )
            )
    return candidates


def fuzzy_value(
    record: RemoteRecord,
    field_type: str,
    backing_field_names: Sequence[str],
    threshold: int = DEFAULT_THRESHOLD,
) -> Optional[str]:
    """Pick the value a fuzzy-matched record offers for ``field_type``.

    Backing fields win; otherwise the content key closest to the type (or its
    backing names) is used when it clears ``threshold``. A record with no such
    key offers nothing, whatever else it holds.
    """

    for name in backing_field_names:
        value = record.text_value(name)
        if value is not None:
            return value

    keys = [key for key in record.content if record.text_value(key) is not None]
    targets = (field_type, *backing_field_names)
    best_key: Optional[str] = None
    best_score = 0
    for key in keys:
        score = max(similarity(key, target) for target in targets)
        if score > best_score:
            best_key, best_score = key, score
    if best_key is not None and best_score >= threshold:
        return record.text_value(best_key)
    return None


def combine_and_rank_matches(
    traditional: Iterable[Candidate],
    fuzzy: Iterable[Candidate],
    limit: int = MAX_CANDIDATES,
) -> List[Candidate]:
    """Merge both candidate sets on ``(value, record_id)``.

    A traditional candidate always replaces a fuzzy one for the same pair. The
    result is sorted by descending score and holds at most ``limit`` items.
    """

    merged: Dict[Tuple[str, str], Candidate] = {}
    for candidate in traditional:
        key = (candidate.value, candidate.record_id)
        current = merged.get(key)
        if current is None or candidate.score > current.score:
            merged[key] = candidate
    for candidate in fuzzy:
        key = (candidate.value, candidate.record_id)
        current = merged.get(key)
        if current is None or (current.match_kind == "fuzzy" and candidate.score > current.score):
            merged[key] = candidate

    ranked = sorted(
        merged.values(),
        key=lambda item: (-item.score, item.match_kind != "traditional", item.record_id, item.value),
    )
    return ranked[: max(limit, 0)]


def match_confidence(
    field: DetectedField,
    field_type: str,
    candidates: Sequence[Candidate],
    records: Mapping[str, RemoteRecord],
    *,
    now: Optional[datetime] = None,
) -> int:
    """Blend detection quality, candidate strength, data richness and recency."""

    confidence = 40
    if field.confidence > 80:
        confidence += 20
    elif field.confidence > 60:
        confidence += 10
    if field_type in rule_types_for(field.inferred_type):
        confidence += 10

    if candidates:
        best = candidates[0]
        if best.score >= 80:
            confidence += 15
        elif best.score >= 60:
            confidence += 10

        strong = sum(1 for candidate in candidates if candidate.score >= 60)
        if strong >= 3:
            confidence += 10
        elif strong == 2:
            confidence += 5

        winner = records.get(best.record_id)
        if winner is not None and winner.created_at is not None:
            if (now or utcnow()) - winner.created_at <= RECENT_RECORD_WINDOW:
                confidence += 5

    return max(0, min(confidence, 100))


def get_suggestions(match_result: MatchResult, limit: int = MAX_SUGGESTIONS) -> List[Suggestion]:
    """Autofill suggestions for one match, best and most recently used first."""

    suggestions = [
        Suggestion(
            value=candidate.value,
            label=f"{candidate.value} ({candidate.record_title})" if candidate.record_title else candidate.value,
            confidence=(match_result.confidence + candidate.score) // 2,
            source=match_result.source,
            last_used=candidate.last_used,
        )
        for candidate in match_result.candidates
    ]
    suggestions.sort(
        key=lambda item: (item.confidence, item.last_used.timestamp() if item.last_used else float("-inf")),
        reverse=True,
    )
    return suggestions[: max(limit, 0)]


class MatchOrchestrator:
    """Drive grouping, caching, fetching and ranking for detected fields."""

    def __init__(
        self,
        store: RecordStore,
        *,
        rules: RuleTable = DEFAULT_RULE_TABLE,
        cache: Optional[ResultCache] = None,
        fuzzy_threshold: int = DEFAULT_THRESHOLD,
        rule_min_score: int = 3,
        max_candidates: int = MAX_CANDIDATES,
        max_suggestions: int = MAX_SUGGESTIONS,
        fetch_limit: int = 10,
        record_filters: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._store = store
        self._table = rules
        self.cache = cache if cache is not None else ResultCache()
        self._in_flight = InFlightRequests()
        self._fuzzy_threshold = fuzzy_threshold
        self._rule_min_score = rule_min_score
        self._max_candidates = max_candidates
        self._max_suggestions = max_suggestions
        self._fetch_limit = fetch_limit
        self._record_filters: Dict[str, Any] = dict(record_filters or {})
        self._current_token: Optional[CancellationToken] = None
        self.state = MatchState.IDLE

    @classmethod
    def from_settings(
        cls,
        store: RecordStore,
        settings: Settings | None = None,
        *,
        kv_store: Optional[KeyValueStore] = None,
    ) -> "MatchOrchestrator":
        settings = settings or get_settings()
        cache = ResultCache(
            max_entries=settings.cache_max_entries,
            default_ttl=settings.cache_ttl_seconds,
            store=kv_store,
            snapshot_key=settings.snapshot_key,
        )
        return cls(
            store,
            rules=load_rule_table(settings.rules_file),
            cache=cache,
            fuzzy_threshold=settings.fuzzy_threshold,
            rule_min_score=settings.rule_min_score,
            max_candidates=settings.max_candidates,
            max_suggestions=settings.max_suggestions,
            fetch_limit=settings.fetch_limit,
            record_filters=settings.record_filters,
        )

    @property
    def rules(self) -> RuleTable:
        return self._table

    # ------------------------------------------------------------------
    # Rule administration

    def add_rule(self, rule: MappingRule) -> RuleTable:
        """Add ``rule`` (replacing any rule for the same type)."""

        self._swap_table(self._table.with_rule(rule), rule.field_type)
        return self._table

    def update_rule(self, field_type: str, **changes: Any) -> bool:
        """Change attributes of an existing rule.

        Returns ``False`` when no rule exists for ``field_type``. Changes are
        validated like rules loaded from JSON (``re:`` patterns are compiled);
        unknown attributes or invalid values raise :class:`ValueError` and
        leave the table untouched.
        """

        try:
            table = self._table.with_updates(field_type, **changes)
        except KeyError:
            return False
        self._swap_table(table, field_type)
        return True

    def delete_rule(self, field_type: str) -> bool:
        try:
            table = self._table.without_rule(field_type)
        except KeyError:
            return False
        self._swap_table(table, field_type)
        return True

    def _swap_table(self, table: RuleTable, field_type: str) -> None:
        self._table = table
        self.cache.delete(type_cache_key(field_type))
        logger.info("Rule table updated", extra={"field_type": field_type, "version": table.version})

    # ------------------------------------------------------------------
    # Cancellation

    def supersede(self) -> CancellationToken:
        """Cancel the running match cycle (if any) and issue a token for the next one."""

        if self._current_token is not None:
            self._current_token.cancel("superseded")
        self._current_token = CancellationToken()
        return self._current_token

    async def match_latest(self, fields: Sequence[DetectedField]) -> MatchReport:
        """Match ``fields`` after superseding whatever cycle is still running."""

        return await self.match_fields_to_store(fields, token=self.supersede())

    # ------------------------------------------------------------------
    # Matching

    async def restore_cache(self) -> int:
        return await self.cache.load_snapshot()

    def get_suggestions(self, match_result: MatchResult, limit: Optional[int] = None) -> List[Suggestion]:
        return get_suggestions(match_result, self._max_suggestions if limit is None else limit)

    async def match_fields_to_store(
        self,
        fields: Sequence[DetectedField],
        *,
        token: Optional[CancellationToken] = None,
    ) -> MatchReport:
        token = token or CancellationToken()
        table = self._table
        report = MatchReport()
        self._enter(report, MatchState.IDLE)

        self._enter(report, MatchState.GROUPING)
        grouped, unmatched = RuleMatcher(table, min_score=self._rule_min_score).group_fields(fields)
        report.unmatched = list(unmatched)
        token.raise_if_cancelled()
        if not grouped:
            self._enter(report, MatchState.DONE)
            return report

        self._enter(report, MatchState.CACHE_LOOKUP)
        resolved: Dict[str, Tuple[List[RemoteRecord], MatchSource]] = {}
        missing_types: List[str] = []
        for field_type in grouped:
            cached = self.cache.get(type_cache_key(field_type))
            if cached is None:
                missing_types.append(field_type)
            else:
                resolved[field_type] = (records_from_payload(cached), "cache")
        if resolved:
            self._enter(report, MatchState.CACHE_HIT)
            logger.debug("Cache hit", extra={"field_types": sorted(resolved)})

        if missing_types:
            self._enter(report, MatchState.FETCHING)
            try:
                records = await self._fetch(missing_types, grouped, table, token)
            except MatchCancelledError:
                raise
            except Exception as exc:
                logger.exception("Remote fetch failed", extra={"field_types": sorted(missing_types)})
                report.errors.append(MatchError(REMOTE_FETCH_ERROR, str(exc) or type(exc).__name__, sorted(missing_types)))
            else:
                for field_type in missing_types:
                    resolved[field_type] = (records, "remote")

        token.raise_if_cancelled()
        self._enter(report, MatchState.MATCHING)
        index = self._cached_tag_index()
        for field_type, type_fields in grouped.items():
            if field_type not in resolved:
                continue
            records, source = resolved[field_type]
            self._match_type(report, table, field_type, type_fields, records, source, index)

        self._enter(report, MatchState.DONE)
        logger.info(
            "Matched fields",
            extra={
                "matches": len(report.matches),
                "missing": len(report.missing_data),
                "errors": len(report.errors),
                "unmatched": len(report.unmatched),
            },
        )
        return report

    def _enter(self, report: MatchReport, state: MatchState) -> None:
        self.state = state
        report.states.append(state.value)

    async def _fetch(
        self,
        field_types: Sequence[str],
        grouped: Mapping[str, Sequence[DetectedField]],
        table: RuleTable,
        token: CancellationToken,
    ) -> List[RemoteRecord]:
        ordered = sorted(field_types)
        query = RecordQuery(
            backing_field_names=table.backing_fields_for(ordered),
            search_tags=sorted(search_tags_for(field for field_type in ordered for field in grouped[field_type])),
            filters=self._record_filters,
            limit=self._fetch_limit,
        )

        async def fetch() -> List[RemoteRecord]:
            records = await self._store.fetch_records(query)
            self._update_cache(records, ordered, table)
            await self.cache.persist_snapshot()
            return records

        return await self._in_flight.run(request_key(ordered), fetch, token=token)

    def _update_cache(self, records: Sequence[RemoteRecord], requested: Sequence[str], table: RuleTable) -> None:
        payload = records_to_payload(records)
        for field_type in requested:
            self.cache.set(type_cache_key(field_type), payload)
        for rule in table:
            if rule.field_type in requested:
                continue
            relevant = [record for record in records if any(record.text_value(name) for name in rule.backing_field_names)]
            if relevant:
                self.cache.set(type_cache_key(rule.field_type), records_to_payload(relevant))

        live = self._live_record_ids()
        raw = self.cache.get(RAW_RECORDS_KEY)
        merged: Dict[str, Any] = {}
        if isinstance(raw, dict):
            merged = {record_id: item for record_id, item in raw.items() if record_id in live}
        for record in records:
            merged[record.id] = record.to_dict()
        self.cache.set(RAW_RECORDS_KEY, merged)
        self.cache.set(TAG_INDEX_KEY, TagIndex.from_records(records_from_payload(list(merged.values()))).to_dict())

    def _live_record_ids(self) -> Set[str]:
        """Ids of records still referenced by an unexpired per-type entry."""

        ids: Set[str] = set()
        for key in self.cache.keys():
            if not key.startswith(TYPE_KEY_PREFIX):
                continue
            payload = self.cache.get(key)
            if not isinstance(payload, list):
                continue
            ids.update(str(item["id"]) for item in payload if isinstance(item, dict) and item.get("id") is not None)
        return ids

    def _cached_tag_index(self) -> Optional[TagIndex]:
        payload = self.cache.get(TAG_INDEX_KEY)
        if payload is None:
            return None
        return TagIndex.from_dict(payload)

    def _match_type(
        self,
        report: MatchReport,
        table: RuleTable,
        field_type: str,
        fields: Sequence[DetectedField],
        records: Sequence[RemoteRecord],
        source: MatchSource,
        index: Optional[TagIndex],
    ) -> None:
        rule = table.get(field_type)
        backing_names = rule.backing_field_names if rule is not None else ()
        by_id = {record.id: record for record in records}
        if index is not None and not {record.id for record in records if record.tags} <= index.record_ids():
            index = None

        traditional = traditional_candidates(records, backing_names)
        unfilled: List[DetectedField] = []
        for field in fields:
            fuzzy: List[Candidate] = []
            for match in find_matches(records, field_tags(field), self._fuzzy_threshold, index=index):
                value = fuzzy_value(match.record, field_type, backing_names, self._fuzzy_threshold)
                if value is None:
                    continue
                fuzzy.append(
                    Candidate(
                        value=value,
                        record_id=match.record.id,
                        score=match.score,
                        match_kind="fuzzy",
                        matched_on=match.matched_tag,
                        record_title=match.record.title,
                        last_used=match.record.last_used or match.record.created_at,
                    )
                )

            candidates = combine_and_rank_matches(traditional, fuzzy, self._max_candidates)
            if not candidates:
                unfilled.append(field)
                continue
            report.matches.append(
                MatchResult(
                    field=field,
                    field_type=field_type,
                    candidates=candidates,
                    confidence=match_confidence(field, field_type, candidates, by_id),
                    source=source,
                )
            )

        if unfilled:
            report.missing_data.append(MissingData(field_type, unfilled, tuple(backing_names)))


__all__ = [
    "MatchOrchestrator",
    "MatchState",
    "REMOTE_FETCH_ERROR",
    "combine_and_rank_matches",
    "fuzzy_value",
    "get_suggestions",
    "match_confidence",
    "records_from_payload",
    "traditional_candidates",
    "type_cache_key",
]
