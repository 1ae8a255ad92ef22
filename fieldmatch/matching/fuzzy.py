"""Tag similarity scoring and fuzzy record ranking.

Exact keyword rules miss paraphrased tags (``e-mail`` against ``mail``); the
scores here recover those without an exhaustive synonym table:

1. identical strings (case-insensitive) score 100;
2. when one string contains the other the score is ``floor(85 * shorter / longer)``;
3. otherwise the character *sets* are compared:
   ``floor(70 * |shared chars| / |all chars|)``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from ..models import RemoteRecord

DEFAULT_THRESHOLD = 60
EXACT_SCORE = 100
CONTAINMENT_WEIGHT = 85
CHARSET_WEIGHT = 70


def similarity(a: str, b: str) -> int:
    """Return a 0-100 similarity score between two tags."""

    left = (a or "").strip().lower()
    right = (b or "").strip().lower()
    if not left or not right:
        return 0
    if left == right:
        return EXACT_SCORE

    shorter, longer = sorted((len(left), len(right)))
    if left in right or right in left:
        return CONTAINMENT_WEIGHT * shorter // longer

    left_chars = set(left)
    right_chars = set(right)
    union = left_chars | right_chars
    return CHARSET_WEIGHT * len(left_chars & right_chars) // len(union)


def best_similarity(search_tags: Iterable[str], candidate_tags: Iterable[str]) -> Tuple[int, Optional[str]]:
    """Best pairwise score and the candidate tag that produced it."""

    candidates = list(candidate_tags)
    best_score = 0
    best_tag: Optional[str] = None
    for search_tag in search_tags:
        for tag in candidates:
            score = similarity(search_tag, tag)
            if score > best_score:
                best_score, best_tag = score, tag
                if best_score == EXACT_SCORE:
                    return best_score, best_tag
    return best_score, best_tag


@dataclass(frozen=True, slots=True)
class FuzzyMatch:
    record: RemoteRecord
    score: int
    matched_tag: str


class TagIndex:
    """Inverted view mapping each record tag to the records that carry it.

    Scoring against the index touches every distinct tag once, however many
    records share it.
    """

    def __init__(self, postings: Optional[Mapping[str, Iterable[str]]] = None) -> None:
        self._postings: Dict[str, List[str]] = {}
        for tag, record_ids in (postings or {}).items():
            for record_id in record_ids:
                self._add(str(tag), str(record_id))

    @classmethod
    def from_records(cls, records: Iterable[RemoteRecord]) -> "TagIndex":
        index = cls()
        for record in records:
            index.add_record(record)
        return index

    def add_record(self, record: RemoteRecord) -> None:
        for tag in record.tags:
            self._add(tag, record.id)

    def _add(self, tag: str, record_id: str) -> None:
        ids = self._postings.setdefault(tag, [])
        if record_id not in ids:
            ids.append(record_id)

    def __len__(self) -> int:
        return len(self._postings)

    def tags(self) -> List[str]:
        return list(self._postings)

    def record_ids(self) -> Set[str]:
        return {record_id for ids in self._postings.values() for record_id in ids}

    def best_per_record(self, search_tags: Iterable[str]) -> Dict[str, Tuple[int, str]]:
        """Best ``(score, tag)`` for every indexed record."""

        searches = list(search_tags)
        best: Dict[str, Tuple[int, str]] = {}
        for tag, record_ids in self._postings.items():
            score, _ = best_similarity(searches, [tag])
            for record_id in record_ids:
                current = best.get(record_id)
                if current is None or score > current[0]:
                    best[record_id] = (score, tag)
        return best

    def to_dict(self) -> Dict[str, List[str]]:
        return {tag: list(ids) for tag, ids in self._postings.items()}

    @classmethod
    def from_dict(cls, payload: Any) -> "TagIndex":
        if not isinstance(payload, Mapping):
            return cls()
        return cls({tag: ids for tag, ids in payload.items() if isinstance(ids, list)})


def find_matches(
    records: Sequence[RemoteRecord],
    search_tags: Iterable[str],
    threshold: int = DEFAULT_THRESHOLD,
    *,
    index: Optional[TagIndex] = None,
) -> List[FuzzyMatch]:
    """Rank ``records`` by their best tag similarity to ``search_tags``.

    Records whose best score is below ``threshold`` are dropped. ``index`` may
    be passed to reuse a cached :class:`TagIndex` covering ``records``.
    """

    searches: Set[str] = {tag for tag in search_tags if tag}
    if not searches or not records:
        return []

    by_id = {record.id: record for record in records}
    tag_index = index if index is not None else TagIndex.from_records(records)

    matches: List[FuzzyMatch] = []
    for record_id, (score, tag) in tag_index.best_per_record(searches).items():
        record = by_id.get(record_id)
        if record is None or score < threshold:
            continue
        matches.append(FuzzyMatch(record=record, score=score, matched_tag=tag))

    matches.sort(key=lambda match: (-match.score, match.record.id))
    return matches


__all__ = [
    "DEFAULT_THRESHOLD",
    "FuzzyMatch",
    "TagIndex",
    "best_similarity",
    "find_matches",
    "similarity",
]
