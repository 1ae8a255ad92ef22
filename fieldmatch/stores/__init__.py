"""Remote record store and key/value persistence adapters."""

from .kv import KeyValueStore, MemoryKeyValueStore, SqlKeyValueStore
from .mcp_client import MCPClient, MCPError
from .records import (
    MCPRecordStore,
    RecordQuery,
    RecordStore,
    RecordStoreError,
    parse_record,
    parse_records,
)

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SqlKeyValueStore",
    "MCPClient",
    "MCPError",
    "MCPRecordStore",
    "RecordQuery",
    "RecordStore",
    "RecordStoreError",
    "parse_record",
    "parse_records",
]
