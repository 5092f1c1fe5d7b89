"""Credential fingerprints and their normalization."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from credguard.core.config import settings
from credguard.services.errors import ValidationFailed

_NON_PHONE_CHARS = re.compile(r"[^\d+]")
_PHONE_SHAPE = re.compile(r"^\+?\d+$")
_LETTERS = re.compile(r"[a-zA-Z]")


def normalize_email(email: str | None) -> str | None:
    if email is None:
        return None
    value = email.strip().lower()
    return value or None


def normalize_licenses(licenses: Iterable[str] | None) -> tuple[str, ...]:
    """Strip license numbers, drop blanks and repeats, keep declaration order.

    License formats vary by issuing authority, so nothing else is rewritten.
    """

    seen: dict[str, None] = {}
    for license_number in licenses or ():
        value = (license_number or "").strip()
        if value:
            seen.setdefault(value, None)
    return tuple(seen)


def _local_digits(digits: str, country_code: str) -> str | None:
    if digits.startswith(country_code):
        if len(digits) == len(country_code) + 10:
            return digits[len(country_code):]
        return None
    if digits.startswith("0"):
        return digits[1:] if len(digits) == 11 else None
    if len(digits) == 10:
        return digits
    return None


def validate_phone(phone: str | None, country_code: str | None = None) -> str:
    """Return the storage form ``+CC-xxx-xxxxxxx`` or raise ``ValidationFailed``."""

    country_code = country_code or settings.phone_country_code
    if not phone or not phone.strip():
        raise ValidationFailed("Phone number is required", detail={"field": "phone"})
    if _LETTERS.search(phone):
        raise ValidationFailed(
            "Phone number cannot contain letters", detail={"field": "phone"}
        )

    cleaned = _NON_PHONE_CHARS.sub("", phone)
    if not _PHONE_SHAPE.match(cleaned):
        raise ValidationFailed(
            "Phone number can only contain digits", detail={"field": "phone"}
        )

    local = _local_digits(cleaned.lstrip("+"), country_code)
    if local is None:
        raise ValidationFailed(
            "Invalid phone number format. Please use format: 0xxxxxxxxxx",
            detail={"field": "phone", "value": phone},
        )
    return f"+{country_code}-{local[:3]}-{local[3:]}"


def format_phone_for_storage(phone: str | None, country_code: str | None = None) -> str | None:
    """Best-effort variant of ``validate_phone`` used for lookups."""

    if phone is None or not phone.strip():
        return None
    try:
        return validate_phone(phone, country_code)
    except ValidationFailed:
        return phone.strip()


@dataclass(frozen=True)
class Credentials:
    """Credential fingerprint: email, phone and ordered license numbers."""

    email: str | None = None
    phone: str | None = None
    licenses: tuple[str, ...] = ()

    @classmethod
    def build(
        cls,
        *,
        email: str | None = None,
        phone: str | None = None,
        licenses: Iterable[str] | None = None,
    ) -> Credentials:
        return cls(
            email=normalize_email(email),
            phone=format_phone_for_storage(phone),
            licenses=normalize_licenses(licenses),
        )

    @property
    def is_empty(self) -> bool:
        return not (self.email or self.phone or self.licenses)

    def as_dict(self) -> dict[str, object]:
        return {
            "email": self.email,
            "phone": self.phone,
            "licenses": list(self.licenses),
        }
