from __future__ import annotations

import json
import re
import subprocess
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

DEFAULT_ISSUER_PATTERN = "Microsoft Intune MDM Device CA"

# Thumbprint and Issuer are what the core needs; NotBefore feeds the tie-break.
_POWERSHELL_LIST_CERTS = (
    "Get-ChildItem -Path Cert:\\LocalMachine\\My | "
    "Select-Object Thumbprint, Issuer, Subject, "
    "@{Name='NotBefore';Expression={"
    "$_.NotBefore.ToUniversalTime().ToString('yyyy-MM-ddTHH:mm:ssZ')}} | "
    "ConvertTo-Json -Compress"
)


class CertificateRecord(BaseModel):
    """One entry of the machine personal certificate store."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    thumbprint: str = Field(..., min_length=1, alias="Thumbprint")
    issuer: str = Field(..., alias="Issuer")
    subject: str | None = Field(None, alias="Subject")
    not_before: datetime | None = Field(None, alias="NotBefore")

    @field_validator("not_before")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


_RECORD_LIST = TypeAdapter(list[CertificateRecord])
_RECORD_SINGLE = TypeAdapter(CertificateRecord)


class CertificateSource(Protocol):
    def list_certificates(self) -> list[CertificateRecord]: ...


def parse_certificates(raw: Any) -> list[CertificateRecord]:
    if raw is None:
        return []
    if isinstance(raw, list):
        return _RECORD_LIST.validate_python(raw)
    if isinstance(raw, dict):
        return [_RECORD_SINGLE.validate_python(raw)]
    raise ValueError("Certificate JSON must be an object or list")


def load_certificates_json(path: Path) -> list[CertificateRecord]:
    return parse_certificates(json.loads(path.read_text(encoding="utf-8")))


def certificates_json_schema() -> dict[str, Any]:
    return _RECORD_LIST.json_schema(by_alias=False)


def issuer_matches(record: CertificateRecord, pattern: str) -> bool:
    return re.search(pattern, record.issuer, flags=re.IGNORECASE) is not None


def _selection_key(record: CertificateRecord) -> tuple[float, str]:
    started = record.not_before.timestamp() if record.not_before else float("-inf")
    return (-started, record.thumbprint.upper())


def select_management_certificate(
    records: Iterable[CertificateRecord], pattern: str
) -> tuple[CertificateRecord | None, int]:
    """
    Pick the management certificate among the records whose issuer matches `pattern`.

    Enumeration order is not stable across platforms, so the choice is made explicit:
    the most recent validity start wins, and remaining ties go to the lexicographically
    smallest thumbprint (case-insensitive). Records without a validity start sort oldest.

    Returns the selected record (or None) and the number of matching candidates.
    """
    candidates = [record for record in records if issuer_matches(record, pattern)]
    if not candidates:
        return None, 0
    return min(candidates, key=_selection_key), len(candidates)


class JsonCertificateSource:
    """Certificates from a JSON export (lab reproduction, staging, tests)."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def list_certificates(self) -> list[CertificateRecord]:
        return load_certificates_json(self.path)


class SystemCertificateSource:
    """Enumerates Cert:\\LocalMachine\\My through PowerShell."""

    def __init__(self, executable: str = "powershell.exe") -> None:
        self.executable = executable

    def _run(self) -> str | None:
        cmd = [self.executable, "-NoProfile", "-NonInteractive", "-Command", _POWERSHELL_LIST_CERTS]
        try:
            proc = subprocess.run(cmd, check=False, text=True, capture_output=True)
        except FileNotFoundError:
            return None
        if proc.returncode != 0:
            return None
        return proc.stdout.strip()

    def list_certificates(self) -> list[CertificateRecord]:
        output = self._run()
        if not output:
            return []
        return parse_certificates(json.loads(output))


def open_certificate_source(source: str) -> CertificateSource:
    if source == "system":
        return SystemCertificateSource()
    return JsonCertificateSource(Path(source).expanduser())
