"""Duplicate-credential detection against existing providers and candidates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from credguard.services.credentials import normalize_licenses
from credguard.services.directory import IdentityMatch, ProviderDirectory


@dataclass(frozen=True)
class CredentialConflict:
    """Which identity already holds a declared credential."""

    field: str
    value: str
    holder: IdentityMatch

    @property
    def with_provider(self) -> bool:
        return self.holder.is_provider

    def as_dict(self) -> dict[str, object]:
        return {"field": self.field, "value": self.value, **self.holder.as_dict()}


class ConflictResolver:
    """Read-only collision checks; never mutates the directory.

    When a provider and a candidate both hold a credential the provider
    collision wins, since it carries the stronger consequence.
    """

    def __init__(self, directory: ProviderDirectory) -> None:
        self.directory = directory

    def find_email_or_phone_conflict(
        self, email: str | None, phone: str | None
    ) -> CredentialConflict | None:
        if email:
            matches = self.directory.find_by_email(email)
            if matches:
                return CredentialConflict("email", email, matches[0])
        if phone:
            matches = self.directory.find_by_phone(phone)
            if matches:
                return CredentialConflict("phone", phone, matches[0])
        return None

    def find_license_conflict(
        self, license_numbers: Iterable[str]
    ) -> CredentialConflict | None:
        """First declared license already held by someone, compared verbatim."""

        for license_number in normalize_licenses(license_numbers):
            matches = self.directory.find_by_license(license_number)
            if matches:
                return CredentialConflict("license", license_number, matches[0])
        return None
