from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

ENROLLMENTS_KEY = r"SOFTWARE\Microsoft\Enrollments"
OMADM_ACCOUNTS_KEY = r"SOFTWARE\Microsoft\Provisioning\OMADM\Accounts"
DEFAULT_HIVE = "HKLM"

# Long hive names collapse to the short form so both spellings address one key.
HIVE_ALIASES = {
    "HKEY_LOCAL_MACHINE": "HKLM",
    "HKEY_CURRENT_USER": "HKCU",
}

PROVIDER_ID_PROPERTY = "ProviderID"
THUMBPRINT_PROPERTY = "DMPCertThumbPrint"
ENTDMID_PROPERTY = "EntDMID"


class ValueKind(str, Enum):
    SEARCH_CRITERIA = "SearchCriteria"
    REFERENCE = "Reference"

    @property
    def property_name(self) -> str:
        return _PROPERTY_NAMES[self]


_PROPERTY_NAMES = {
    ValueKind.SEARCH_CRITERIA: "SslClientCertSearchCriteria",
    ValueKind.REFERENCE: "SslClientCertReference",
}


@dataclass(frozen=True)
class StorePath:
    """A key in the configuration store, kept as hive plus path segments."""

    hive: str
    parts: tuple[str, ...]

    @classmethod
    def parse(cls, text: str) -> StorePath:
        hive, _, rest = text.strip().strip("\\").partition("\\")
        if not hive:
            raise ValueError(f"Invalid store path: {text!r}")
        parts = tuple(part for part in rest.split("\\") if part)
        hive = hive.upper().rstrip(":")
        return cls(HIVE_ALIASES.get(hive, hive), parts)

    @property
    def key(self) -> str:
        """Path below the hive, backslash separated."""
        return "\\".join(self.parts)

    def child(self, *segments: str) -> StorePath:
        for segment in segments:
            if not segment or "\\" in segment:
                raise ValueError(f"Invalid path segment: {segment!r}")
        return StorePath(self.hive, (*self.parts, *segments))

    def __str__(self) -> str:
        if not self.parts:
            return self.hive
        return f"{self.hive}\\{self.key}"


def _split(key: str) -> tuple[str, ...]:
    return tuple(key.split("\\"))


def enrollments_root(hive: str = DEFAULT_HIVE) -> StorePath:
    return StorePath(hive, _split(ENROLLMENTS_KEY))


def enrollment_path(enrollment_id: str, hive: str = DEFAULT_HIVE) -> StorePath:
    return enrollments_root(hive).child(enrollment_id)


def identity_path(enrollment_id: str, provider_id: str, hive: str = DEFAULT_HIVE) -> StorePath:
    """DMClient settings for the enrollment; holds the EntDMID value."""
    return enrollment_path(enrollment_id, hive).child("DMClient", provider_id)


def protected_settings_path(enrollment_id: str, hive: str = DEFAULT_HIVE) -> StorePath:
    return StorePath(hive, _split(OMADM_ACCOUNTS_KEY)).child(enrollment_id, "Protected")


@dataclass(frozen=True)
class ValueLocation:
    kind: ValueKind
    path: StorePath

    @property
    def name(self) -> str:
        return self.kind.property_name

    def __str__(self) -> str:
        return f"{self.path}\\{self.name}"


def value_location(
    enrollment_id: str, kind: ValueKind, hive: str = DEFAULT_HIVE
) -> ValueLocation:
    return ValueLocation(kind, protected_settings_path(enrollment_id, hive))
