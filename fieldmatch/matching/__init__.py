"""Rule, fuzzy and cached matching of detected fields against stored records."""

from .cache import InFlightRequests, ResultCache, request_key
from .cancellation import CancellationToken, MatchCancelledError
from .fuzzy import FuzzyMatch, TagIndex, best_similarity, find_matches, similarity
from .orchestrator import (
    MatchOrchestrator,
    MatchState,
    combine_and_rank_matches,
    get_suggestions,
    match_confidence,
)
from .rules import DEFAULT_RULE_TABLE, DEFAULT_RULES, MappingRule, RuleMatcher, RuleTable, load_rule_table
from .tags import clean_phrase, field_tags, search_tags_for, tags_from

__all__ = [
    "InFlightRequests",
    "ResultCache",
    "request_key",
    "CancellationToken",
    "MatchCancelledError",
    "FuzzyMatch",
    "TagIndex",
    "best_similarity",
    "find_matches",
    "similarity",
    "MatchOrchestrator",
    "MatchState",
    "combine_and_rank_matches",
    "get_suggestions",
    "match_confidence",
    "DEFAULT_RULE_TABLE",
    "DEFAULT_RULES",
    "MappingRule",
    "RuleMatcher",
    "RuleTable",
    "load_rule_table",
    "clean_phrase",
    "field_tags",
    "search_tags_for",
    "tags_from",
]
