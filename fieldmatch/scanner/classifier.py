"""Semantic type inference and confidence scoring for detected fields."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from ..models import CUSTOM_FIELD_TYPE, DetectedField
from .vocabulary import autocomplete_field_type, has_autocomplete_hint, keyword_field_type

KIND_FIELD_TYPES: Dict[str, str] = {
    "email": "email",
    "tel": "phone",
    "password": "password",
    "url": "website",
    "date": "birthday",
}
"""Element kinds that determine the field type on their own."""

_STRONG_KINDS = frozenset({"email", "tel", "password"})

_CONFIDENCE_WEIGHTS: Dict[str, int] = {
    "strong_kind": 40,
    "autocomplete": 30,
    "label": 20,
    "name_or_id": 10,
    "placeholder_or_aria": 10,
    "hints": 5,
    "hosted_form": 10,
}


@dataclass(frozen=True, slots=True)
class Classification:
    inferred_type: str
    confidence: int


class FieldClassifier:
    """Infer a field's semantic type and score how well it is identified.

    Classification is pure: the field's existing ``inferred_type`` and
    ``confidence`` are ignored, so identical signals always yield the same
    :class:`Classification`.
    """

    def classify(self, field: DetectedField) -> Classification:
        return Classification(
            inferred_type=self.infer_type(field),
            confidence=self.confidence(field),
        )

    def infer_type(self, field: DetectedField) -> str:
        kind_type = KIND_FIELD_TYPES.get(field.element_kind)
        if kind_type:
            return kind_type

        autocomplete_type = autocomplete_field_type(field.identifiers.autocomplete)
        if autocomplete_type:
            return autocomplete_type

        return keyword_field_type(field.identifiers.signal_text()) or CUSTOM_FIELD_TYPE

    def confidence(self, field: DetectedField) -> int:
        identifiers = field.identifiers
        score = 0
        if field.element_kind in _STRONG_KINDS:
            score += _CONFIDENCE_WEIGHTS["strong_kind"]
        if has_autocomplete_hint(identifiers.autocomplete):
            score += _CONFIDENCE_WEIGHTS["autocomplete"]
        if identifiers.label:
            score += _CONFIDENCE_WEIGHTS["label"]
        if identifiers.name or identifiers.element_id:
            score += _CONFIDENCE_WEIGHTS["name_or_id"]
        if identifiers.placeholder or identifiers.aria_label:
            score += _CONFIDENCE_WEIGHTS["placeholder_or_aria"]
        if identifiers.hints:
            score += _CONFIDENCE_WEIGHTS["hints"]
        if field.form_host is not None:
            score += _CONFIDENCE_WEIGHTS["hosted_form"]
        return min(score, 100)


__all__ = ["Classification", "FieldClassifier", "KIND_FIELD_TYPES"]
