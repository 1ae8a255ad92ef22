"""Dataclass-based data model shared by the scanner and the matching engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Tuple

ElementKind = Literal[
    "text",
    "email",
    "tel",
    "password",
    "number",
    "url",
    "date",
    "textarea",
    "dropdown",
    "checkbox",
    "radio",
    "hidden",
    "submit",
    "button",
    "reset",
    "image",
    "file",
    "contenteditable",
    "other",
]

_ELEMENT_KINDS = frozenset(ElementKind.__args__)  # type: ignore[attr-defined]

MatchKind = Literal["traditional", "fuzzy"]
FormHost = Literal["google_forms", "microsoft_forms"]
MatchSource = Literal["cache", "remote"]

_FORM_HOSTS = frozenset(FormHost.__args__)  # type: ignore[attr-defined]

CUSTOM_FIELD_TYPE = "custom"
MIN_TAG_LENGTH = 3


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(UTC)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or epoch seconds) into an aware datetime."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), UTC)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def normalize_tags(tags: Iterable[object]) -> Tuple[str, ...]:
    """Lowercase, trim and de-duplicate ``tags``, dropping ones shorter than three characters."""

    normalized: List[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            continue
        value = tag.strip().lower()
        if len(value) < MIN_TAG_LENGTH or value in normalized:
            continue
        normalized.append(value)
    return tuple(normalized)


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _text_tuple(value: Any) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        value = (value,)
    return tuple(text for text in (_clean(item) for item in value) if text)


def element_kind_for(tag: Optional[str], input_type: Optional[str] = None, *, editable: bool = False) -> ElementKind:
    """Map a DOM tag name and ``type`` attribute onto the closed :data:`ElementKind` set."""

    tag_name = (tag or "").strip().lower()
    kind = (input_type or "").strip().lower()
    if tag_name == "select":
        return "dropdown"
    if tag_name == "textarea":
        return "textarea"
    if tag_name == "button":
        return "submit" if kind in {"", "submit"} else "button"
    if tag_name == "input":
        if not kind:
            return "text"
        if kind in {"search", "text"}:
            return "text"
        if kind in {"datetime-local", "month", "week"}:
            return "date"
        if kind in _ELEMENT_KINDS:
            return kind  # type: ignore[return-value]
        return "other"
    if editable:
        return "contenteditable"
    return "other"


@dataclass(slots=True)
class PageElement:
    """Detached snapshot of an interactive DOM element.

    ``ref`` is a stable selector scoped to the page it was collected from. It is
    the only link back to the live element and is resolved lazily.
    """

    ref: str
    element_kind: ElementKind = "text"
    tag: str = "input"
    name: Optional[str] = None
    element_id: Optional[str] = None
    label: Optional[str] = None
    placeholder: Optional[str] = None
    aria_label: Optional[str] = None
    autocomplete: Optional[str] = None
    hidden: bool = False
    disabled: bool = False
    readonly: bool = False
    form_context: Optional[str] = None
    preceding_text: Optional[str] = None
    sibling_texts: Tuple[str, ...] = ()
    container_texts: Tuple[str, ...] = ()
    form_host: Optional[FormHost] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PageElement":
        """Create a :class:`PageElement` from a loosely typed mapping."""

        ref = _clean(payload.get("ref") or payload.get("selector"))
        if ref is None:
            raise ValueError("Element payload must include a non-empty 'ref'")

        kind = payload.get("element_kind") or payload.get("kind")
        if kind not in _ELEMENT_KINDS:
            kind = element_kind_for(
                payload.get("tag"),
                payload.get("type"),
                editable=bool(payload.get("contentEditable") or payload.get("content_editable")),
            )

        siblings = _text_tuple(payload.get("sibling_texts") or payload.get("siblingTexts"))
        container = _text_tuple(payload.get("container_texts") or payload.get("containerTexts"))
        host = payload.get("form_host") or payload.get("formHost")

        return cls(
            ref=ref,
            element_kind=kind,  # type: ignore[arg-type]
            tag=(_clean(payload.get("tag")) or "input").lower(),
            name=_clean(payload.get("name")),
            element_id=_clean(payload.get("element_id") or payload.get("id")),
            label=_clean(payload.get("label")),
            placeholder=_clean(payload.get("placeholder")),
            aria_label=_clean(payload.get("aria_label") or payload.get("ariaLabel")),
            autocomplete=_clean(payload.get("autocomplete")),
            hidden=bool(payload.get("hidden", False)),
            disabled=bool(payload.get("disabled", False)),
            readonly=bool(payload.get("readonly") or payload.get("readOnly")),
            form_context=_clean(payload.get("form_context") or payload.get("formContext")),
            preceding_text=_clean(payload.get("preceding_text") or payload.get("precedingText")),
            sibling_texts=siblings,
            container_texts=container,
            form_host=host if host in _FORM_HOSTS else None,
        )


@dataclass(frozen=True, slots=True)
class FieldIdentifiers:
    """Raw identifying signals of one form field."""

    name: Optional[str] = None
    element_id: Optional[str] = None
    label: Optional[str] = None
    placeholder: Optional[str] = None
    aria_label: Optional[str] = None
    autocomplete: Optional[str] = None
    hints: Tuple[str, ...] = ()

    def texts(self) -> List[str]:
        values = [
            self.name,
            self.element_id,
            self.label,
            self.placeholder,
            self.aria_label,
            self.autocomplete,
            *self.hints,
        ]
        return [value for value in values if value]

    def signal_text(self) -> str:
        """Lowercase concatenation of every identifier and contextual hint."""

        return " ".join(self.texts()).lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "id": self.element_id,
            "label": self.label,
            "placeholder": self.placeholder,
            "ariaLabel": self.aria_label,
            "autocomplete": self.autocomplete,
            "hints": list(self.hints),
        }


@dataclass(frozen=True, slots=True)
class DetectedField:
    """A form field judged to carry personal data on the current page."""

    ref: str
    identifiers: FieldIdentifiers
    element_kind: ElementKind = "text"
    inferred_type: str = CUSTOM_FIELD_TYPE
    confidence: int = 0
    form_host: Optional[FormHost] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", max(0, min(int(self.confidence), 100)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ref": self.ref,
            "identifiers": self.identifiers.to_dict(),
            "elementKind": self.element_kind,
            "inferredType": self.inferred_type,
            "confidence": self.confidence,
            "formHost": self.form_host,
        }


@dataclass(frozen=True, slots=True)
class RemoteRecord:
    """Read-only personal-data record owned by the remote store."""

    id: str
    title: str = ""
    content: Mapping[str, Any] = field(default_factory=dict)
    tags: Tuple[str, ...] = ()
    created_at: Optional[datetime] = None
    last_used: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", normalize_tags(self.tags))

    def text_value(self, key: str) -> Optional[str]:
        value = self.content.get(key)
        if value is None or isinstance(value, (dict, list)):
            return None
        text = str(value).strip()
        return text or None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": dict(self.content),
            "tags": list(self.tags),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "lastUsed": self.last_used.isoformat() if self.last_used else None,
        }


@dataclass(slots=True)
class CacheEntry:
    """Timestamped cache payload. Entries compare equal when their keys do."""

    key: str
    payload: Any
    timestamp: float
    ttl: float

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CacheEntry):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl

    def to_dict(self) -> Dict[str, Any]:
        return {"payload": self.payload, "timestamp": self.timestamp, "ttl": self.ttl}


@dataclass(frozen=True, slots=True)
class Candidate:
    """One ranked value proposed for a field."""

    value: str
    record_id: str
    score: int
    match_kind: MatchKind
    matched_on: Optional[str] = None
    record_title: str = ""
    last_used: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "score", max(0, min(int(self.score), 100)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "sourceRecordId": self.record_id,
            "score": self.score,
            "matchKind": self.match_kind,
            "matchedOn": self.matched_on,
        }


@dataclass(slots=True)
class MatchResult:
    field: DetectedField
    field_type: str
    candidates: List[Candidate] = field(default_factory=list)
    confidence: int = 0
    source: MatchSource = "remote"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field.to_dict(),
            "fieldType": self.field_type,
            "candidates": [candidate.to_dict() for candidate in self.candidates],
            "confidence": self.confidence,
            "source": self.source,
        }


@dataclass(slots=True)
class MissingData:
    field_type: str
    fields: List[DetectedField] = field(default_factory=list)
    backing_field_names: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fieldType": self.field_type,
            "fields": [item.ref for item in self.fields],
            "requestedBackingFields": list(self.backing_field_names),
        }


@dataclass(slots=True)
class MatchError:
    type: str
    message: str
    affected_types: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "message": self.message, "affectedTypes": list(self.affected_types)}


@dataclass(frozen=True, slots=True)
class Suggestion:
    value: str
    label: str
    confidence: int
    source: MatchSource
    last_used: Optional[datetime] = None


@dataclass(slots=True)
class MatchReport:
    """Outcome of one ``match_fields_to_store`` invocation."""

    matches: List[MatchResult] = field(default_factory=list)
    missing_data: List[MissingData] = field(default_factory=list)
    errors: List[MatchError] = field(default_factory=list)
    unmatched: List[DetectedField] = field(default_factory=list)
    states: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matches": [match.to_dict() for match in self.matches],
            "missingData": [item.to_dict() for item in self.missing_data],
            "errors": [error.to_dict() for error in self.errors],
            "unmatched": [item.ref for item in self.unmatched],
        }


__all__ = [
    "CUSTOM_FIELD_TYPE",
    "CacheEntry",
    "Candidate",
    "DetectedField",
    "ElementKind",
    "FieldIdentifiers",
    "FormHost",
    "MatchError",
    "MatchKind",
    "MatchReport",
    "MatchResult",
    "MatchSource",
    "MIN_TAG_LENGTH",
    "MissingData",
    "PageElement",
    "RemoteRecord",
    "Suggestion",
    "element_kind_for",
    "normalize_tags",
    "parse_timestamp",
    "utcnow",
]
