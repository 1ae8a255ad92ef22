"""Detect personal-data form fields and match them to stored records."""

from .models import (
    Candidate,
    DetectedField,
    FieldIdentifiers,
    MatchError,
    MatchReport,
    MatchResult,
    MissingData,
    PageElement,
    RemoteRecord,
    Suggestion,
)
from .scanner import FieldClassifier, FieldScanner, PageFieldWatcher
from .matching import (
    CancellationToken,
    MatchCancelledError,
    MatchOrchestrator,
    MappingRule,
    ResultCache,
    RuleMatcher,
    RuleTable,
    find_matches,
    similarity,
)
from .stores import MCPClient, MCPRecordStore, MemoryKeyValueStore, RecordQuery, RecordStoreError, SqlKeyValueStore

__all__ = [
    "Candidate",
    "DetectedField",
    "FieldIdentifiers",
    "MatchError",
    "MatchReport",
    "MatchResult",
    "MissingData",
    "PageElement",
    "RemoteRecord",
    "Suggestion",
    "FieldClassifier",
    "FieldScanner",
    "PageFieldWatcher",
    "CancellationToken",
    "MatchCancelledError",
    "MatchOrchestrator",
    "MappingRule",
    "ResultCache",
    "RuleMatcher",
    "RuleTable",
    "find_matches",
    "similarity",
    "MCPClient",
    "MCPRecordStore",
    "MemoryKeyValueStore",
    "RecordQuery",
    "RecordStoreError",
    "SqlKeyValueStore",
]
