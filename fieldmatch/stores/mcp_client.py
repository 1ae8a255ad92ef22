"""Async JSON-RPC client for the personal-data MCP service."""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MCPError(Exception):
    """Error object returned by the MCP backend for a failed call."""

    code: int
    message: str
    data: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"MCP error {self.code}: {self.message}"


class MCPClient:
    """Request/response client; one websocket shared by concurrent calls."""

    def __init__(self, url: str, *, request_timeout: float = 30.0) -> None:
        self._url = url
        self._request_timeout = request_timeout

        self._socket: ClientConnection | None = None
        self._receiver_task: asyncio.Task[None] | None = None
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._lock = asyncio.Lock()

    @property
    def url(self) -> str:
        return self._url

    @property
    def connected(self) -> bool:
        return self._socket is not None and self._socket.state is State.OPEN

    async def connect(self) -> None:
        async with self._lock:
            if self.connected:
                return
            logger.debug("Connecting to MCP backend", extra={"url": self._url})
            self._socket = await connect(self._url, ping_interval=20, ping_timeout=20)
            self._receiver_task = asyncio.create_task(self._receiver())

    async def close(self) -> None:
        async with self._lock:
            if self._receiver_task and not self._receiver_task.done():
                self._receiver_task.cancel()
                try:
                    await self._receiver_task
                except asyncio.CancelledError:
                    pass
            self._receiver_task = None

            if self._socket is not None:
                await self._socket.close()
            self._socket = None
            self._fail_pending("connection closed")

    async def __aenter__(self) -> "MCPClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def call(self, method: str, params: Dict[str, Any] | None = None, *, timeout: float | None = None) -> Any:
        """Send one request and wait for its result.

        Raises :class:`MCPError` when the backend answers with an error object,
        ``TimeoutError`` when no answer arrives in time and ``ConnectionError``
        when the socket drops while the call is pending.
        """

        if not self.connected:
            await self.connect()
        assert self._socket is not None

        request_id = str(uuid.uuid4())
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}}
        logger.debug("Sending MCP request", extra={"method": method, "id": request_id})
        try:
            await self._socket.send(json.dumps(payload))
            return await asyncio.wait_for(future, timeout or self._request_timeout)
        finally:
            self._pending.pop(request_id, None)

    async def _receiver(self) -> None:
        assert self._socket is not None
        try:
            async for raw in self._socket:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Received invalid JSON from MCP backend")
                    continue
                if isinstance(message, dict) and "id" in message:
                    self._resolve(message)
                else:
                    logger.debug("Ignoring MCP message without id", extra={"mcp_message": message})
        except ConnectionClosed as exc:
            logger.info("MCP connection closed", extra={"reason": str(exc)})
        finally:
            self._fail_pending("connection closed")
            self._socket = None

    def _resolve(self, message: Dict[str, Any]) -> None:
        request_id = str(message.get("id"))
        future = self._pending.get(request_id)
        if future is None or future.done():
            logger.debug("No pending request for MCP response", extra={"id": request_id})
            return

        if "error" in message:
            error = message["error"] or {}
            future.set_exception(
                MCPError(int(error.get("code", -32000)), str(error.get("message", "unknown error")), error.get("data"))
            )
        else:
            future.set_result(message.get("result"))

    def _fail_pending(self, reason: str) -> None:
        while self._pending:
            _, future = self._pending.popitem()
            if not future.done():
                future.set_exception(ConnectionError(reason))


__all__ = ["MCPClient", "MCPError"]
