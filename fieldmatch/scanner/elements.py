"""Collect detached element snapshots from a live Playwright page.

Element handles never leave this module. Each control is described by a
:class:`~fieldmatch.models.PageElement` whose ``ref`` is a stable CSS selector;
:func:`locate_field` turns that selector back into a locator when a caller
actually needs the live element.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from ..models import DetectedField, ElementKind, FormHost, PageElement

logger = logging.getLogger(__name__)

CONTROL_SELECTOR = "input, textarea, select, button, [contenteditable='true']"
"""CSS selector that targets the candidate form controls."""

MUTATION_BINDING = "__fieldmatchDomChanged"

_DOM_HELPERS = """
    const clean = (value, limit = 200) => {
        const text = (value || "").replace(/\\s+/g, " ").trim();
        return text.length > limit ? text.slice(0, limit) : text;
    };
    const refFor = (el) => {
        if (el.id && document.querySelectorAll(`#${CSS.escape(el.id)}`).length === 1) {
            return `#${CSS.escape(el.id)}`;
        }
        const parts = [];
        let node = el;
        while (node && node.nodeType === Node.ELEMENT_NODE && node !== document.body) {
            if (node !== el && node.id && document.querySelectorAll(`#${CSS.escape(node.id)}`).length === 1) {
                parts.unshift(`#${CSS.escape(node.id)}`);
                return parts.join(" > ");
            }
            const tag = node.tagName.toLowerCase();
            let index = 1;
            for (let sib = node.previousElementSibling; sib; sib = sib.previousElementSibling) {
                if (sib.tagName === node.tagName) {
                    index += 1;
                }
            }
            parts.unshift(`${tag}:nth-of-type(${index})`);
            node = node.parentElement;
        }
        parts.unshift("body");
        return parts.join(" > ");
    };
    const labelFor = (el) => {
        const parts = [];
        if (el.labels) {
            for (const label of el.labels) {
                const text = clean(label.innerText || label.textContent);
                if (text) {
                    parts.push(text);
                }
            }
        }
        const labelledBy = el.getAttribute("aria-labelledby");
        if (labelledBy) {
            for (const id of labelledBy.split(/\\s+/).filter(Boolean)) {
                const node = document.getElementById(id);
                const text = node ? clean(node.innerText || node.textContent) : "";
                if (text) {
                    parts.push(text);
                }
            }
        }
        return parts.join(" ");
    };
    const isHidden = (el) => {
        const style = window.getComputedStyle(el);
        if (style.display === "none" || style.visibility === "hidden" || style.opacity === "0") {
            return true;
        }
        return el.getClientRects().length === 0;
    };
"""

_COLLECT_SCRIPT = (
    """
(selector) => {
"""
    + _DOM_HELPERS
    + """
    const results = [];
    for (const el of document.querySelectorAll(selector)) {
        const form = el.closest("form");
        const parent = el.parentElement;
        const siblingTexts = parent
            ? Array.from(parent.childNodes)
                .filter((node) => node.nodeType === Node.TEXT_NODE)
                .map((node) => clean(node.textContent))
                .filter(Boolean)
            : [];
        const previous = el.previousElementSibling;
        results.push({
            ref: refFor(el),
            tag: el.tagName.toLowerCase(),
            type: (el.getAttribute("type") || "").toLowerCase(),
            contentEditable: Boolean(el.isContentEditable),
            name: el.getAttribute("name"),
            id: el.id || null,
            label: labelFor(el),
            placeholder: el.getAttribute("placeholder"),
            ariaLabel: el.getAttribute("aria-label"),
            autocomplete: el.getAttribute("autocomplete"),
            hidden: isHidden(el),
            disabled: Boolean(el.disabled) || el.getAttribute("aria-disabled") === "true",
            readOnly: Boolean(el.readOnly) || el.getAttribute("aria-readonly") === "true",
            formContext: form ? clean(`${form.id || ""} ${form.className || ""}`) : "",
            precedingText: previous ? clean(previous.innerText || previous.textContent) : "",
            siblingTexts,
        });
    }
    return results;
}
"""
)

_CONTAINER_SCRIPT = (
    """
(layout) => {
"""
    + _DOM_HELPERS
    + """
    const questionOf = (container) => {
        for (const selector of layout.headingSelectors) {
            const heading = container.querySelector(selector);
            const text = heading ? clean(heading.innerText || heading.textContent) : "";
            if (text) {
                return text;
            }
        }
        for (const node of container.querySelectorAll("span, div")) {
            if (node.children.length) {
                continue;
            }
            const text = clean(node.textContent);
            if (text.length > 2 && text.length < 100 && !layout.ignoredTexts.some((skip) => text.includes(skip))) {
                return text;
            }
        }
        return "";
    };
    const results = [];
    const seen = new Set();
    for (const container of document.querySelectorAll(layout.containerSelector)) {
        const el = container.querySelector(layout.inputSelector) || container.querySelector(layout.customInputSelector);
        if (!el || seen.has(el)) {
            continue;
        }
        seen.add(el);
        const standard = el.matches("input, textarea, select");
        const role = (el.getAttribute("role") || "").toLowerCase();
        const help = layout.helpSelector ? container.querySelector(layout.helpSelector) : null;
        results.push({
            ref: refFor(el),
            tag: el.tagName.toLowerCase(),
            type: (el.getAttribute("type") || "").toLowerCase(),
            kind: standard ? null : layout.roleKinds[role] || null,
            contentEditable: Boolean(el.isContentEditable),
            name: el.getAttribute("name"),
            id: el.id || null,
            label: questionOf(container),
            placeholder: el.getAttribute("placeholder"),
            ariaLabel: el.getAttribute("aria-label"),
            autocomplete: el.getAttribute("autocomplete"),
            hidden: isHidden(el),
            disabled: Boolean(el.disabled) || el.getAttribute("aria-disabled") === "true",
            readOnly: Boolean(el.readOnly),
            containerTexts: [
                clean(container.innerText || container.textContent),
                help ? clean(help.innerText || help.textContent) : "",
            ],
            formHost: layout.host,
        });
    }
    return results;
}
"""
)

_ROLE_KINDS: Dict[str, ElementKind] = {
    "textbox": "text",
    "combobox": "dropdown",
    "listbox": "dropdown",
    "radio": "radio",
    "checkbox": "checkbox",
}

FORM_HOST_LAYOUTS: Dict[FormHost, Dict[str, Any]] = {
    "google_forms": {
        "containerSelector": (
            ".freebirdFormviewerViewItemsItemItem, [data-params], "
            ".freebirdFormviewerComponentsQuestionBaseRoot, [role='group']"
        ),
        "inputSelector": (
            "input[type='text'], input[type='email'], input[type='tel'], input[type='url'], "
            "input:not([type]), textarea"
        ),
        "customInputSelector": (
            "div[role='textbox'], div[role='combobox'], div[role='listbox'], div[contenteditable='true'], "
            "div[jsaction*='input'], div[jsaction*='change']"
        ),
        "headingSelectors": [
            "[role='heading']",
            ".freebirdFormviewerViewItemsItemItemTitle",
            ".exportLabel",
            "div[jsname] span",
            "div[dir] span",
        ],
        "helpSelector": ".freebirdFormviewerViewItemsItemItemHelpText",
        "ignoredTexts": ["Your answer", "Required"],
    },
    "microsoft_forms": {
        "containerSelector": "[data-automation-id='questionItem']",
        "inputSelector": "input:not([type='hidden']), textarea, select",
        "customInputSelector": "[aria-haspopup], div[role='radio'], div[role='checkbox'], [contenteditable='true']",
        "headingSelectors": ["[role='heading']", "[data-automation-id='questionTitle']"],
        "helpSelector": None,
        "ignoredTexts": ["Enter your answer", "Required"],
    },
}
"""Question-container layouts of hosted form builders whose inputs lack useful labels."""

_MICROSOFT_FORMS_URL = re.compile(r"forms\.(microsoft|office)\.com/pages/responsepage", re.IGNORECASE)

_OBSERVER_SCRIPT = """
(binding) => {
    if (window.__fieldmatchObserver) {
        return;
    }
    const controls = "input, textarea, select";
    const observer = new MutationObserver((mutations) => {
        for (const mutation of mutations) {
            for (const node of mutation.addedNodes) {
                if (node.nodeType !== Node.ELEMENT_NODE) {
                    continue;
                }
                if (node.matches(controls) || node.querySelector(controls)) {
                    window[binding]();
                    return;
                }
            }
        }
    });
    observer.observe(document.body, { childList: true, subtree: true });
    window.__fieldmatchObserver = observer;
}
"""

_HIGHLIGHT_SCRIPT = """
(el) => {
    el.style.outline = "2px solid #4CAF50";
    el.style.outlineOffset = "1px";
}
"""


def elements_from_payload(payload: Iterable[Any]) -> List[PageElement]:
    """Convert raw evaluation output into :class:`PageElement` snapshots."""

    elements: List[PageElement] = []
    for raw in payload or []:
        if not isinstance(raw, dict):
            continue
        try:
            elements.append(PageElement.from_dict(raw))
        except ValueError:
            logger.debug("Skipping element without a usable ref", extra={"element": raw})
    return elements


def detect_form_host(url: Optional[str]) -> Optional[FormHost]:
    """Recognise Google Forms and Microsoft Forms response pages by URL."""

    if not url:
        return None
    if "docs.google.com/forms" in url.lower():
        return "google_forms"
    if _MICROSOFT_FORMS_URL.search(url):
        return "microsoft_forms"
    return None


def container_layout(host: FormHost) -> Dict[str, Any]:
    """Arguments for the question-container collector on ``host`` pages."""

    return {**FORM_HOST_LAYOUTS[host], "host": host, "roleKinds": dict(_ROLE_KINDS)}


async def collect_form_questions(page: Page, host: FormHost) -> List[PageElement]:
    """Collect one answer control per question container of a hosted form.

    The question title becomes the element label and the container text its
    contextual hints, since these builders render inputs without labels.
    """

    payload = await page.evaluate(_CONTAINER_SCRIPT, container_layout(host))
    return elements_from_payload(payload)


async def collect_page_elements(page: Page, selector: str = CONTROL_SELECTOR) -> List[PageElement]:
    """Return snapshots of every candidate control on ``page`` in DOM order.

    Google Forms and Microsoft Forms pages are read question by question; when
    no question container is found the generic control walk is used.
    """

    host = detect_form_host(page.url)
    if host is not None:
        elements = await collect_form_questions(page, host)
        if elements:
            logger.debug("Collected form questions", extra={"count": len(elements), "host": host, "url": page.url})
            return elements
        logger.debug("No question containers found", extra={"host": host, "url": page.url})

    payload = await page.evaluate(_COLLECT_SCRIPT, selector)
    elements = elements_from_payload(payload)
    logger.debug("Collected page elements", extra={"count": len(elements), "url": page.url})
    return elements


def locate_field(page: Page, field: DetectedField) -> Locator:
    """Resolve a detected field back to a locator on the live page."""

    return page.locator(field.ref).first


async def highlight_fields(page: Page, fields: Sequence[DetectedField], *, min_confidence: int = 50) -> int:
    """Outline confident fields on the page; returns how many were highlighted."""

    highlighted = 0
    for field in fields:
        if field.confidence <= min_confidence:
            continue
        try:
            await locate_field(page, field).evaluate(_HIGHLIGHT_SCRIPT)
        except PlaywrightError:
            # The element disappeared between the scan and the highlight.
            continue
        highlighted += 1
    return highlighted


async def observe_mutations(page: Page, on_change: Callable[[], Awaitable[None] | None]) -> None:
    """Invoke ``on_change`` whenever form controls are added to the page."""

    await page.expose_function(MUTATION_BINDING, on_change)
    await page.evaluate(_OBSERVER_SCRIPT, MUTATION_BINDING)


__all__ = [
    "CONTROL_SELECTOR",
    "FORM_HOST_LAYOUTS",
    "collect_form_questions",
    "collect_page_elements",
    "container_layout",
    "detect_form_host",
    "elements_from_payload",
    "highlight_fields",
    "locate_field",
    "observe_mutations",
]
