"""Tests for record payload parsing, the MCP record store and key/value stores."""
from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from fieldmatch.stores import (
    MCPClient,
    MCPError,
    MCPRecordStore,
    MemoryKeyValueStore,
    RecordQuery,
    RecordStoreError,
    SqlKeyValueStore,
    parse_records,
)


class RecordClientStub:
    def __init__(self, result=None, *, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.url = "ws://stub"
        self.calls: list[tuple[str, dict, float | None]] = []

    async def call(self, method: str, params: dict, *, timeout: float | None = None):
        self.calls.append((method, params, timeout))
        if self.error is not None:
            raise self.error
        return self.result


def test_parse_records_normalizes_fields_and_skips_malformed_items():
    payload = {
        "records": [
            {
                "id": 42,
                "title": "Personal",
                "content": {"email": "ann@example.com"},
                "tags": ["Email", "ok", "Personal"],
                "createdAt": "2024-05-01T10:00:00Z",
                "last_used": "2024-06-01T08:30:00+00:00",
            },
            {"title": "no id"},
            {"id": "r3", "content": "not a mapping"},
            "junk",
            {"id": "r4"},
        ]
    }

    records = parse_records(payload)

    assert [record.id for record in records] == ["42", "r4"]
    first = records[0]
    assert first.tags == ("email", "personal")
    assert first.created_at == datetime(2024, 5, 1, 10, 0, tzinfo=UTC)
    assert first.last_used == datetime(2024, 6, 1, 8, 30, tzinfo=UTC)
    assert records[1].content == {}


@pytest.mark.parametrize("payload", [None, [], {}, {"records": "nope"}, {"records": None}])
def test_missing_or_malformed_records_array_is_empty(payload):
    assert parse_records(payload) == []


def test_parse_records_accepts_data_key():
    assert [record.id for record in parse_records({"data": [{"id": "r1"}]})] == ["r1"]


def test_record_query_wire_params():
    query = RecordQuery(["email", "work_email"], {"gmail", "email"}, {"active": True}, 5)

    assert query.to_params() == {
        "backingFieldNames": ["email", "work_email"],
        "searchTags": ["email", "gmail"],
        "filters": {"active": True},
        "limit": 5,
    }


@pytest.mark.asyncio
async def test_mcp_record_store_sends_query_and_parses_result():
    client = RecordClientStub({"records": [{"id": "r1", "content": {"email": "a@b.c"}}]})
    store = MCPRecordStore(client, method="extract_personal_data", timeout=3.0)

    records = await store.fetch_records(RecordQuery(["email"], ["email"], {}, 10))

    assert [record.id for record in records] == ["r1"]
    method, params, timeout = client.calls[0]
    assert method == "extract_personal_data"
    assert params["backingFieldNames"] == ["email"]
    assert timeout == 3.0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [MCPError(-32001, "permission denied"), asyncio.TimeoutError(), ConnectionError("connection closed")],
)
async def test_mcp_record_store_wraps_failures(error):
    store = MCPRecordStore(RecordClientStub(error=error))

    with pytest.raises(RecordStoreError) as excinfo:
        await store.fetch_records(RecordQuery())

    assert excinfo.value.data["method"] == "extract_personal_data"


@pytest.mark.asyncio
async def test_mcp_client_resolves_pending_calls():
    client = MCPClient("ws://unused")
    loop = asyncio.get_running_loop()
    ok = loop.create_future()
    failed = loop.create_future()
    dropped = loop.create_future()
    client._pending.update({"1": ok, "2": failed, "3": dropped})

    client._resolve({"id": "1", "result": {"records": []}})
    client._resolve({"id": "2", "error": {"code": -32602, "message": "bad params"}})
    client._resolve({"id": "99", "result": None})
    client._fail_pending("connection closed")

    assert ok.result() == {"records": []}
    with pytest.raises(MCPError) as excinfo:
        failed.result()
    assert excinfo.value.code == -32602
    with pytest.raises(ConnectionError):
        dropped.result()
    assert not client.connected


@pytest.mark.asyncio
async def test_memory_store_round_trip():
    store = MemoryKeyValueStore()
    await store.set("autofillCache", "{}")

    assert await store.get("autofillCache") == "{}"
    await store.delete("autofillCache")
    assert await store.get("autofillCache") is None


@pytest.mark.asyncio
async def test_sql_store_persists_values(tmp_path):
    url = f"sqlite:///{(tmp_path / 'kv.db').as_posix()}"
    store = SqlKeyValueStore.from_url(url)
    try:
        await store.set("autofillCache", '{"a": 1}')
        await store.set("autofillCache", '{"a": 2}')
        assert await store.get("autofillCache") == '{"a": 2}'
        assert [entry["key"] for entry in store.entries()] == ["autofillCache"]

        await store.delete("autofillCache")
        await store.delete("autofillCache")
        assert await store.get("autofillCache") is None
    finally:
        store.dispose()

    reopened = SqlKeyValueStore.from_url(url)
    try:
        assert await reopened.get("missing") is None
    finally:
        reopened.dispose()
