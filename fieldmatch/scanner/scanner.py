"""Detect personal-data form fields among a page's interactive elements."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple

from ..models import DetectedField, FieldIdentifiers, PageElement
from .classifier import FieldClassifier
from .elements import collect_page_elements, observe_mutations
from .vocabulary import (
    EXCLUDED_FORM_TERMS,
    EXCLUSION_TERMS,
    INCLUDED_FORM_TERMS,
    PERSONAL_DATA_TERMS,
    SignalText,
    normalize_autocomplete,
)

logger = logging.getLogger(__name__)

FieldListener = Callable[[List[DetectedField]], Any]

EXCLUDED_KINDS = frozenset({"hidden", "submit", "button", "reset", "image", "file", "password"})
PERSONAL_KINDS = frozenset({"email", "tel"})
MAX_HINT_LENGTH = 100
MAX_CONTAINER_HINT_LENGTH = 200


def contextual_hints(element: PageElement) -> Tuple[str, ...]:
    """Text surrounding the element.

    Short preceding-sibling and parent text nodes count as hints, as does the
    (clipped) text of the question container on hosted form pages.
    """

    hints: List[str] = []
    for text in (element.preceding_text, *element.sibling_texts):
        if not text:
            continue
        text = text.strip()
        if not text or len(text) >= MAX_HINT_LENGTH or text in hints:
            continue
        hints.append(text)
    for text in element.container_texts:
        text = text.strip()[:MAX_CONTAINER_HINT_LENGTH]
        if text and text not in hints:
            hints.append(text)
    return tuple(hints)


def identifiers_for(element: PageElement) -> FieldIdentifiers:
    return FieldIdentifiers(
        name=element.name,
        element_id=element.element_id,
        label=element.label,
        placeholder=element.placeholder,
        aria_label=element.aria_label,
        autocomplete=element.autocomplete,
        hints=contextual_hints(element),
    )


class FieldScanner:
    """Filter page elements down to personal-data fields and classify them."""

    def __init__(
        self,
        classifier: Optional[FieldClassifier] = None,
        *,
        listener: Optional[FieldListener] = None,
    ) -> None:
        self._classifier = classifier or FieldClassifier()
        self._listener = listener
        self._last_fields: List[DetectedField] = []

    @property
    def last_fields(self) -> List[DetectedField]:
        return list(self._last_fields)

    def scan(self, page_elements: Iterable[PageElement]) -> List[DetectedField]:
        fields: List[DetectedField] = []
        skipped = 0
        for element in page_elements:
            identifiers = identifiers_for(element)
            if not self.is_candidate(element, identifiers):
                skipped += 1
                continue
            fields.append(self._detect(element, identifiers))

        logger.info("Detected %d fillable fields (%d skipped)", len(fields), skipped)
        self._last_fields = fields
        self._emit(fields)
        return fields

    def is_candidate(self, element: PageElement, identifiers: Optional[FieldIdentifiers] = None) -> bool:
        if element.hidden or element.disabled or element.readonly:
            return False
        if element.element_kind in EXCLUDED_KINDS:
            return False

        identifiers = identifiers or identifiers_for(element)
        signals = SignalText.from_texts(identifiers.texts())

        excluded = signals.mentions_any(EXCLUSION_TERMS)
        if excluded:
            logger.debug("Excluding field", extra={"ref": element.ref, "term": excluded})
            return False

        if signals.mentions_any(PERSONAL_DATA_TERMS):
            return True
        if element.form_host is not None and identifiers.label:
            return True
        if element.element_kind in PERSONAL_KINDS:
            return True
        if normalize_autocomplete(element.autocomplete):
            return True
        return self._in_personal_form(element)

    def _in_personal_form(self, element: PageElement) -> bool:
        if not element.form_context:
            return False
        form_signals = SignalText.from_texts([element.form_context])
        if form_signals.mentions_any(EXCLUDED_FORM_TERMS):
            return False
        return form_signals.mentions_any(INCLUDED_FORM_TERMS) is not None

    def _detect(self, element: PageElement, identifiers: FieldIdentifiers) -> DetectedField:
        field = DetectedField(
            ref=element.ref,
            identifiers=identifiers,
            element_kind=element.element_kind,
            form_host=element.form_host,
        )
        classification = self._classifier.classify(field)
        return replace(
            field,
            inferred_type=classification.inferred_type,
            confidence=classification.confidence,
        )

    def _emit(self, fields: List[DetectedField]) -> None:
        if self._listener is None:
            return
        try:
            self._listener(list(fields))
        except Exception as exc:
            logger.warning(f"Field listener failed: {exc}", exc_info=exc)


class RescanDebouncer:
    """Collapse bursts of triggers into a single call after a quiet period."""

    def __init__(self, callback: Callable[[], Awaitable[Any]], *, delay: float = 0.1) -> None:
        self._callback = callback
        self._delay = delay
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[Any] | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def wait(self) -> None:
        """Wait until the pending trigger (if any) has fired and finished."""

        while self._handle is not None:
            await asyncio.sleep(self._delay / 2 or 0.001)
        if self._task is not None:
            await self._task

    def _fire(self) -> None:
        self._handle = None
        self._task = asyncio.ensure_future(self._run())

    async def _run(self) -> None:
        try:
            await self._callback()
        except Exception as exc:
            logger.exception("Debounced rescan failed", exc_info=exc)


class PageFieldWatcher:
    """Re-scan a Playwright page whenever form controls are added to it."""

    def __init__(
        self,
        page: Any,
        scanner: FieldScanner,
        *,
        debounce_seconds: float = 0.1,
        collect: Optional[Callable[[Any], Awaitable[Sequence[PageElement]]]] = None,
    ) -> None:
        self._page = page
        self._scanner = scanner
        self._collect = collect or collect_page_elements
        self._debouncer = RescanDebouncer(self.rescan, delay=debounce_seconds)
        self.scan_count = 0

    async def start(self) -> List[DetectedField]:
        fields = await self.rescan()
        await observe_mutations(self._page, self.notify)
        return fields

    def notify(self) -> None:
        self._debouncer.trigger()

    async def rescan(self) -> List[DetectedField]:
        elements = await self._collect(self._page)
        self.scan_count += 1
        return self._scanner.scan(elements)

    async def settle(self) -> None:
        await self._debouncer.wait()

    def stop(self) -> None:
        self._debouncer.cancel()


__all__ = [
    "EXCLUDED_KINDS",
    "FieldScanner",
    "PageFieldWatcher",
    "RescanDebouncer",
    "contextual_hints",
    "identifiers_for",
]
