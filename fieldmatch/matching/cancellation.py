"""Cooperative cancellation for match cycles superseded by a newer scan."""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Dict, Optional, TypeVar

T = TypeVar("T")


class MatchCancelledError(RuntimeError):
    """Raised when a match cycle is abandoned because its token was cancelled."""

    def __init__(self, message: str = "match cycle cancelled", *, data: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.data = data or {}


class CancellationToken:
    """One-shot cancellation signal scoped to a single match invocation."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "superseded") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise MatchCancelledError(data={"reason": self.reason})

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        The awaited future is left running when the token wins; callers that own
        it decide whether to cancel it.
        """

        self.raise_if_cancelled()
        future = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({future, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if future in done:
            return future.result()
        raise MatchCancelledError(data={"reason": self.reason})


__all__ = ["CancellationToken", "MatchCancelledError"]
