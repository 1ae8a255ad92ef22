"""Vocabularies used to decide which page fields carry personal data.

Terms are matched against a tokenized view of the field's signals (see
:class:`SignalText`) rather than raw substrings, so that short terms such as
``pin`` or ``otp`` never fire inside unrelated words like ``shipping``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple

from rapidfuzz import fuzz, process

EXCLUSION_TERMS: Tuple[str, ...] = (
    # search / filter widgets
    "search",
    "query",
    "filter",
    "keywords",
    "searchterm",
    # free text
    "comment",
    "message",
    "feedback",
    "review",
    # verification / security
    "captcha",
    "recaptcha",
    "verification",
    "token",
    "otp",
    "pin",
    "challenge",
    "securitycode",
    # credentials
    "password",
    "passwd",
    "pwd",
    "username",
    "userid",
    # payment secrets / government ids
    "cvv",
    "cvc",
    "csc",
    "ssn",
    "socialsecurity",
    "taxid",
    # promotions
    "coupon",
    "promo",
    "voucher",
)

PERSONAL_DATA_TERMS: Tuple[str, ...] = (
    "email",
    "mail",
    "phone",
    "mobile",
    "telephone",
    "tel",
    "name",
    "firstname",
    "lastname",
    "fullname",
    "surname",
    "address",
    "street",
    "city",
    "state",
    "zip",
    "zipcode",
    "postal",
    "postcode",
    "country",
    "creditcard",
    "card",
    "expiry",
    "birthday",
    "birthdate",
    "dob",
    "billing",
    "shipping",
    "contact",
    "personal",
    "profile",
    "company",
    "organization",
    "website",
)

INCLUDED_FORM_TERMS: Tuple[str, ...] = (
    "signup",
    "register",
    "registration",
    "checkout",
    "billing",
    "shipping",
    "profile",
    "account",
    "contact",
    "address",
)

EXCLUDED_FORM_TERMS: Tuple[str, ...] = ("search", "filter", "query", "newsletter")

AUTOCOMPLETE_TYPES: Dict[str, str] = {
    "email": "email",
    "tel": "phone",
    "tel-national": "phone",
    "tel-local": "phone",
    "name": "name",
    "given-name": "name",
    "additional-name": "name",
    "family-name": "name",
    "nickname": "name",
    "street-address": "address",
    "address-line1": "address",
    "address-line2": "address",
    "address-line3": "address",
    "address-level2": "city",
    "address-level1": "state",
    "locality": "city",
    "region": "state",
    "postal-code": "zip",
    "country": "country",
    "country-name": "country",
    "organization": "company",
    "organization-title": "company",
    "url": "website",
    "cc-name": "name",
    "cc-number": "creditcard",
    "cc-exp": "expiry",
    "cc-exp-month": "expiry",
    "cc-exp-year": "expiry",
    "bday": "birthday",
    "bday-day": "birthday",
    "bday-month": "birthday",
    "bday-year": "birthday",
}
"""Autocomplete field names that denote personal data, mapped to field types."""

_NON_FIELD_AUTOCOMPLETE = frozenset({"on", "off", ""})

FIELD_TYPE_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("email", ("email", "e-mail", "mail", "@")),
    ("creditcard", ("creditcard", "cardnumber", "cc-number", "card", "credit")),
    ("phone", ("phone", "tel", "mobile", "cell", "cellphone", "phonenumber")),
    ("name", ("name", "full name", "first name", "last name", "given", "family", "surname")),
    ("address", ("address", "street", "addr", "residence")),
    ("city", ("city", "town", "locality", "municipality")),
    ("state", ("state", "province", "region", "prefecture")),
    ("zip", ("zip", "postal", "postcode", "zipcode", "post code")),
    ("country", ("country", "nation", "nationality")),
    ("birthday", ("birthday", "birthdate", "birth", "born", "dob", "date of birth")),
    ("expiry", ("expiry", "expiration", "expires", "exp-date")),
    ("website", ("website", "homepage", "url", "web", "site", "link")),
    ("company", ("company", "organization", "business", "employer", "firm", "corporation")),
)
"""Ordered keyword table: the first type with a keyword present wins."""

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_TOKEN_RE = re.compile(r"[a-z0-9]+")
_SUBSTRING_MIN_LENGTH = 5
_AUTOCOMPLETE_FUZZY_CUTOFF = 88


@dataclass(frozen=True, slots=True)
class SignalText:
    """Tokenized view of a field's text signals."""

    tokens: frozenset[str]
    compact: str

    @classmethod
    def from_texts(cls, texts: Iterable[Optional[str]]) -> "SignalText":
        tokens: list[str] = []
        for text in texts:
            if not text:
                continue
            split = _CAMEL_BOUNDARY_RE.sub(" ", str(text)).lower()
            tokens.extend(_TOKEN_RE.findall(split))
        return cls(tokens=frozenset(tokens), compact="".join(tokens))

    def mentions(self, term: str) -> bool:
        """Return ``True`` when ``term`` appears as a token or inside a long run of text."""

        normalized = "".join(_TOKEN_RE.findall(term.lower()))
        if not normalized:
            return False
        if normalized in self.tokens:
            return True
        return len(normalized) >= _SUBSTRING_MIN_LENGTH and normalized in self.compact

    def mentions_any(self, terms: Sequence[str]) -> Optional[str]:
        for term in terms:
            if self.mentions(term):
                return term
        return None


def autocomplete_token(hint: Optional[str]) -> Optional[str]:
    """Return the autofill field name from an ``autocomplete`` attribute.

    The attribute is a space separated list (``"section-a shipping postal-code"``);
    the field name is the last token other than ``webauthn``.
    """

    if not hint:
        return None
    tokens = [token for token in hint.strip().lower().split() if token != "webauthn"]
    if not tokens:
        return None
    token = tokens[-1]
    if token in _NON_FIELD_AUTOCOMPLETE:
        return None
    return token


def normalize_autocomplete(hint: Optional[str]) -> Optional[str]:
    """Resolve an autocomplete hint to an allow-listed autofill name.

    Exact names are returned as-is; near misses such as ``given_name`` or
    ``postalcode`` are resolved with RapidFuzz.
    """

    token = autocomplete_token(hint)
    if token is None:
        return None
    if token in AUTOCOMPLETE_TYPES:
        return token
    match = process.extractOne(
        token,
        AUTOCOMPLETE_TYPES.keys(),
        scorer=fuzz.ratio,
        score_cutoff=_AUTOCOMPLETE_FUZZY_CUTOFF,
    )
    if match is None:
        return None
    return match[0]


def autocomplete_field_type(hint: Optional[str]) -> Optional[str]:
    name = normalize_autocomplete(hint)
    if name is None:
        return None
    return AUTOCOMPLETE_TYPES[name]


def has_autocomplete_hint(hint: Optional[str]) -> bool:
    """``True`` when the element carries a meaningful autocomplete attribute."""

    return autocomplete_token(hint) is not None


def keyword_field_type(signal_text: str) -> Optional[str]:
    """Look up the first field type whose keyword occurs in ``signal_text``."""

    lowered = signal_text.lower()
    for field_type, keywords in FIELD_TYPE_KEYWORDS:
        for keyword in keywords:
            if keyword in lowered:
                return field_type
    return None


__all__ = [
    "AUTOCOMPLETE_TYPES",
    "EXCLUDED_FORM_TERMS",
    "EXCLUSION_TERMS",
    "FIELD_TYPE_KEYWORDS",
    "INCLUDED_FORM_TERMS",
    "PERSONAL_DATA_TERMS",
    "SignalText",
    "autocomplete_field_type",
    "autocomplete_token",
    "has_autocomplete_hint",
    "keyword_field_type",
    "normalize_autocomplete",
]
