"""Shared wiring for CLI commands: browser page, stores, orchestrator."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Tuple

from playwright.async_api import Page, async_playwright

from ..config import Settings, get_settings
from ..matching import MatchOrchestrator
from ..stores import MCPClient, MCPRecordStore, SqlKeyValueStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_page(url: str, *, headless: Optional[bool] = None, settings: Settings | None = None) -> AsyncIterator[Page]:
    """Launch Chromium, open ``url`` and yield the page."""

    settings = settings or get_settings()
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(
            headless=settings.playwright_headless if headless is None else headless,
        )
        try:
            page = await browser.new_page()
            logger.info("Opening page", extra={"url": url})
            await page.goto(url, wait_until="domcontentloaded")
            yield page
        finally:
            await browser.close()


def build_kv_store(settings: Settings | None = None) -> SqlKeyValueStore:
    return SqlKeyValueStore.from_settings(settings or get_settings())


@asynccontextmanager
async def open_orchestrator(settings: Settings | None = None) -> AsyncIterator[Tuple[MatchOrchestrator, SqlKeyValueStore]]:
    """Yield an orchestrator wired to the MCP record store and the snapshot database."""

    settings = settings or get_settings()
    kv_store = build_kv_store(settings)
    client = MCPClient(settings.mcp_ws_url, request_timeout=settings.mcp_request_timeout_seconds)
    store = MCPRecordStore(client, method=settings.mcp_record_method)
    orchestrator = MatchOrchestrator.from_settings(store, settings, kv_store=kv_store)
    await orchestrator.restore_cache()
    try:
        yield orchestrator, kv_store
    finally:
        await client.close()
        kv_store.dispose()
