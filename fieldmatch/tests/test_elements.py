"""Tests for page element collection and highlighting with a stub page."""
from __future__ import annotations

import pytest
from playwright.async_api import Error as PlaywrightError

from fieldmatch.models import DetectedField, FieldIdentifiers, PageElement
from fieldmatch.scanner import collect_page_elements, highlight_fields, locate_field
from fieldmatch.scanner.elements import CONTROL_SELECTOR, FORM_HOST_LAYOUTS, container_layout, detect_form_host


class LocatorStub:
    def __init__(self, page: "PageStub", ref: str) -> None:
        self._page = page
        self.ref = ref

    @property
    def first(self) -> "LocatorStub":
        return self

    async def evaluate(self, script: str):
        if self.ref in self._page.gone:
            raise PlaywrightError("element detached")
        self._page.highlighted.append(self.ref)


class PageStub:
    url = "https://example.test/checkout"

    def __init__(self, payload=None) -> None:
        self.payload = payload or []
        self.gone: set[str] = set()
        self.highlighted: list[str] = []
        self.evaluations: list[tuple[str, object]] = []

    async def evaluate(self, script: str, arg=None):
        self.evaluations.append((script, arg))
        return self.payload

    def locator(self, selector: str) -> LocatorStub:
        return LocatorStub(self, selector)


@pytest.mark.asyncio
async def test_collect_page_elements_builds_snapshots():
    page = PageStub(
        [
            {
                "ref": "#email",
                "tag": "INPUT",
                "type": "email",
                "name": "email",
                "id": "email",
                "label": "  Work   Email ",
                "ariaLabel": "Email",
                "autocomplete": "email",
                "readOnly": False,
                "formContext": "checkout-form",
                "precedingText": "Contact",
                "siblingTexts": ["Contact", ""],
            },
            {"ref": "form > select:nth-of-type(1)", "tag": "select", "name": "country"},
            {"tag": "input", "name": "no-ref"},
            "junk",
        ]
    )

    elements = await collect_page_elements(page)

    assert [element.ref for element in elements] == ["#email", "form > select:nth-of-type(1)"]
    email = elements[0]
    assert email.element_kind == "email"
    assert email.tag == "input"
    assert email.element_id == "email"
    assert email.aria_label == "Email"
    assert email.form_context == "checkout-form"
    assert email.sibling_texts == ("Contact",)
    assert elements[1].element_kind == "dropdown"
    assert page.evaluations and page.evaluations[0][1].startswith("input")


def test_page_element_kind_inference():
    assert PageElement.from_dict({"ref": "#a", "tag": "input", "type": "search"}).element_kind == "text"
    assert PageElement.from_dict({"ref": "#b", "tag": "button"}).element_kind == "submit"
    assert PageElement.from_dict({"ref": "#c", "tag": "div", "contentEditable": True}).element_kind == "contenteditable"
    assert PageElement.from_dict({"ref": "#d", "tag": "input", "type": "color"}).element_kind == "other"
    with pytest.raises(ValueError):
        PageElement.from_dict({"ref": "  "})


def _field(ref: str, confidence: int) -> DetectedField:
    return DetectedField(ref=ref, identifiers=FieldIdentifiers(name=ref), confidence=confidence)


@pytest.mark.asyncio
async def test_highlight_only_confident_and_present_fields():
    page = PageStub()
    page.gone.add("#gone")
    fields = [_field("#strong", 90), _field("#weak", 50), _field("#gone", 95)]

    count = await highlight_fields(page, fields, min_confidence=50)

    assert count == 1
    assert page.highlighted == ["#strong"]


def test_locate_field_resolves_ref_lazily():
    page = PageStub()

    locator = locate_field(page, _field("#email", 80))

    assert locator.ref == "#email"


class HostedFormPageStub(PageStub):
    def __init__(self, url: str, *payloads) -> None:
        super().__init__()
        self.url = url
        self.payloads = list(payloads)

    async def evaluate(self, script: str, arg=None):
        self.evaluations.append((script, arg))
        return self.payloads.pop(0) if self.payloads else []


@pytest.mark.parametrize(
    "url,host",
    [
        ("https://docs.google.com/forms/d/e/1FAIpQL/viewform", "google_forms"),
        ("https://forms.office.com/Pages/ResponsePage.aspx?id=abc", "microsoft_forms"),
        ("https://forms.microsoft.com/pages/responsepage.aspx?id=abc", "microsoft_forms"),
        ("https://example.test/forms/contact", None),
        (None, None),
    ],
)
def test_detect_form_host(url, host):
    assert detect_form_host(url) == host


@pytest.mark.asyncio
async def test_google_forms_questions_are_collected_per_container():
    page = HostedFormPageStub(
        "https://docs.google.com/forms/d/e/1FAIpQL/viewform",
        [
            {
                "ref": "div:nth-of-type(2) > input:nth-of-type(1)",
                "tag": "input",
                "type": "text",
                "label": "Email address",
                "containerTexts": ["Email address * Your answer", ""],
                "formHost": "google_forms",
            },
            {
                "ref": "#i9",
                "tag": "div",
                "kind": "dropdown",
                "label": "Country",
                "containerTexts": ["Country Choose"],
                "formHost": "google_forms",
            },
        ],
    )

    elements = await collect_page_elements(page)

    assert len(page.evaluations) == 1
    layout = page.evaluations[0][1]
    assert layout["host"] == "google_forms"
    assert layout["roleKinds"]["combobox"] == "dropdown"
    assert layout["headingSelectors"][0] == "[role='heading']"
    email, country = elements
    assert email.label == "Email address"
    assert email.container_texts == ("Email address * Your answer",)
    assert email.form_host == "google_forms"
    assert country.element_kind == "dropdown"


@pytest.mark.asyncio
async def test_hosted_form_without_containers_falls_back_to_control_walk():
    page = HostedFormPageStub(
        "https://forms.office.com/Pages/ResponsePage.aspx?id=abc",
        [],
        [{"ref": "#name", "tag": "input", "name": "name"}],
    )

    elements = await collect_page_elements(page)

    assert [element.ref for element in elements] == ["#name"]
    assert page.evaluations[0][1]["host"] == "microsoft_forms"
    assert page.evaluations[1][1] == CONTROL_SELECTOR
    assert elements[0].form_host is None


def test_container_layouts_cover_both_hosts():
    for host in FORM_HOST_LAYOUTS:
        layout = container_layout(host)
        assert layout["host"] == host
        assert layout["containerSelector"]
        assert layout["inputSelector"]
