"""Remote personal-data record store: query shape, payload parsing, MCP adapter."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from websockets.exceptions import ConnectionClosed

from ..models import RemoteRecord, parse_timestamp
from .mcp_client import MCPClient, MCPError

logger = logging.getLogger(__name__)


class RecordStoreError(RuntimeError):
    """Raised when the remote record store cannot answer a query."""

    def __init__(self, message: str, *, data: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.data = data or {}


@dataclass(slots=True)
class RecordQuery:
    backing_field_names: Sequence[str] = ()
    search_tags: Sequence[str] = ()
    filters: Mapping[str, Any] = field(default_factory=dict)
    limit: int = 10

    def to_params(self) -> Dict[str, Any]:
        return {
            "backingFieldNames": list(self.backing_field_names),
            "searchTags": sorted(self.search_tags),
            "filters": dict(self.filters),
            "limit": self.limit,
        }


class RecordStore(Protocol):
    async def fetch_records(self, query: RecordQuery) -> List[RemoteRecord]:
        ...


def parse_record(raw: Any) -> Optional[RemoteRecord]:
    """Build a :class:`RemoteRecord` from one payload item, or ``None`` when malformed."""

    if not isinstance(raw, Mapping):
        return None
    record_id = raw.get("id")
    if record_id is None or isinstance(record_id, (dict, list)) or str(record_id).strip() == "":
        return None
    content = raw.get("content")
    if content is None:
        content = {}
    if not isinstance(content, Mapping):
        return None
    tags = raw.get("tags")
    return RemoteRecord(
        id=str(record_id).strip(),
        title=str(raw.get("title") or ""),
        content=dict(content),
        tags=tuple(tags) if isinstance(tags, list) else (),
        created_at=parse_timestamp(raw.get("createdAt", raw.get("created_at"))),
        last_used=parse_timestamp(raw.get("lastUsed", raw.get("last_used"))),
    )


def parse_records(payload: Any) -> List[RemoteRecord]:
    """Extract records from a query response.

    A missing or non-list ``records`` array yields an empty list; individual
    malformed records are skipped.
    """

    if not isinstance(payload, Mapping):
        return []
    items = payload.get("records")
    if items is None:
        items = payload.get("data")
    if not isinstance(items, list):
        return []

    records: List[RemoteRecord] = []
    skipped = 0
    for item in items:
        record = parse_record(item)
        if record is None:
            skipped += 1
            continue
        records.append(record)
    if skipped:
        logger.debug("Skipped %d malformed records", skipped)
    return records


class MCPRecordStore:
    """:class:`RecordStore` backed by a JSON-RPC call on an :class:`MCPClient`."""

    def __init__(self, client: MCPClient, *, method: str = "extract_personal_data", timeout: float | None = None) -> None:
        self._client = client
        self._method = method
        self._timeout = timeout

    async def fetch_records(self, query: RecordQuery) -> List[RemoteRecord]:
        params = query.to_params()
        logger.info(
            "Fetching personal-data records",
            extra={"method": self._method, "backing_fields": len(params["backingFieldNames"])},
        )
        try:
            result = await self._client.call(self._method, params, timeout=self._timeout)
        except MCPError as exc:
            raise RecordStoreError(str(exc), data={"code": exc.code, "method": self._method}) from exc
        except (ConnectionClosed, asyncio.TimeoutError, OSError) as exc:
            raise RecordStoreError(
                f"Record store unavailable: {str(exc) or type(exc).__name__}",
                data={"method": self._method, "url": self._client.url},
            ) from exc
        return parse_records(result)


__all__ = [
    "MCPRecordStore",
    "RecordQuery",
    "RecordStore",
    "RecordStoreError",
    "parse_record",
    "parse_records",
]
