"""Normalized search tags derived from field signals and record tags."""
from __future__ import annotations

import re
from typing import Iterable, Optional, Set

from ..models import MIN_TAG_LENGTH, DetectedField, normalize_tags

MAX_PHRASE_LENGTH = 49

_SEPARATOR_RE = re.compile(r"[\s\-_.,;:/\\|@()\[\]{}<>\"'!?#+&=*~`^%$]+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_SPACES_RE = re.compile(r"\s+")


def _clean_token(token: str) -> str:
    return _NON_ALNUM_RE.sub("", token.lower())


def clean_phrase(text: str) -> str:
    """Lowercase ``text`` and collapse separators so it reads as one tag."""

    parts = (_clean_token(part) for part in _SEPARATOR_RE.split(text))
    return _SPACES_RE.sub(" ", " ".join(part for part in parts if part)).strip()


def tags_from(texts: Iterable[Optional[str]]) -> Set[str]:
    """Return the tag set for ``texts``.

    Every token of at least three characters becomes a tag, and the whole
    cleaned phrase is kept as one more tag when it is 3-49 characters long.
    """

    tags: Set[str] = set()
    for text in texts:
        if not text:
            continue
        for part in _SEPARATOR_RE.split(text):
            token = _clean_token(part)
            if len(token) >= MIN_TAG_LENGTH:
                tags.add(token)
        phrase = clean_phrase(text)
        if MIN_TAG_LENGTH <= len(phrase) <= MAX_PHRASE_LENGTH:
            tags.add(phrase)
    return tags


def field_tags(field: DetectedField) -> Set[str]:
    return tags_from(field.identifiers.texts())


def search_tags_for(fields: Iterable[DetectedField]) -> Set[str]:
    tags: Set[str] = set()
    for field in fields:
        tags |= field_tags(field)
    return tags


__all__ = [
    "MAX_PHRASE_LENGTH",
    "MIN_TAG_LENGTH",
    "clean_phrase",
    "field_tags",
    "normalize_tags",
    "search_tags_for",
    "tags_from",
]
