from collections.abc import Callable
from pathlib import Path

import pytest

from dmcertsync.certs import CertificateRecord, JsonCertificateSource
from dmcertsync.enrollment import Enrollment
from dmcertsync.errors import ResolutionError, ResolutionReason
from dmcertsync.identity import (
    resolve_certificate,
    resolve_enrollment_thumbprint,
    resolve_management_id,
)
from dmcertsync.oplog import OperationLog
from dmcertsync.store import SqliteStore

from fakes import StaticCertificates

ENROLLMENT = Enrollment("{5E1F0B2C-9A7D-4C1E-8F3B-2D6A4E9C7B10}", "MS DM Server")


def test_resolve_management_id(
    sqlite_store: SqliteStore, log: OperationLog, seed_enrollment: Callable[..., None]
) -> None:
    seed_enrollment(ent_dm_id="Z9")
    assert resolve_management_id(sqlite_store, ENROLLMENT, log) == "Z9"


def test_resolve_management_id_missing(
    sqlite_store: SqliteStore, log: OperationLog, seed_enrollment: Callable[..., None]
) -> None:
    seed_enrollment(ent_dm_id=None)
    with pytest.raises(ResolutionError) as excinfo:
        resolve_management_id(sqlite_store, ENROLLMENT, log)
    assert excinfo.value.reason is ResolutionReason.MISSING_IDENTITY


def test_resolve_enrollment_thumbprint_keeps_case(
    sqlite_store: SqliteStore, log: OperationLog, seed_enrollment: Callable[..., None]
) -> None:
    seed_enrollment(thumbprint="9f3e7C1a")
    assert resolve_enrollment_thumbprint(sqlite_store, ENROLLMENT, log) == "9f3e7C1a"


def test_resolve_enrollment_thumbprint_missing(
    sqlite_store: SqliteStore, log: OperationLog, seed_enrollment: Callable[..., None]
) -> None:
    seed_enrollment(thumbprint=None)
    with pytest.raises(ResolutionError) as excinfo:
        resolve_enrollment_thumbprint(sqlite_store, ENROLLMENT, log)
    assert excinfo.value.reason is ResolutionReason.MISSING_THUMBPRINT


def test_resolve_certificate_not_found(log: OperationLog) -> None:
    source = StaticCertificates(
        [CertificateRecord(thumbprint="AAAA", issuer="CN=Contoso Issuing CA")]
    )
    with pytest.raises(ResolutionError) as excinfo:
        resolve_certificate(source, log)
    assert excinfo.value.reason is ResolutionReason.CERTIFICATE_NOT_FOUND


def test_resolve_certificate_unreadable_export(tmp_path: Path, log: OperationLog) -> None:
    path = tmp_path / "certs.json"
    path.write_text("not json", encoding="utf-8")
    with pytest.raises(ResolutionError) as excinfo:
        resolve_certificate(JsonCertificateSource(path), log)
    assert excinfo.value.reason is ResolutionReason.CERTIFICATE_NOT_FOUND


def test_resolve_certificate_invalid_issuer_pattern(
    certificates: StaticCertificates, log: OperationLog
) -> None:
    with pytest.raises(ResolutionError) as excinfo:
        resolve_certificate(certificates, log, issuer_pattern="Intune (MDM")
    assert excinfo.value.reason is ResolutionReason.CERTIFICATE_NOT_FOUND
    assert "Invalid issuer pattern" in str(excinfo.value)


def test_resolve_certificate_logs_ambiguous_selection(log: OperationLog) -> None:
    source = StaticCertificates(
        [
            CertificateRecord(thumbprint="BBBB", issuer="CN=Microsoft Intune MDM Device CA"),
            CertificateRecord(thumbprint="AAAA", issuer="CN=Microsoft Intune MDM Device CA"),
        ]
    )
    selected = resolve_certificate(source, log)

    assert selected.thumbprint == "AAAA"
    assert any("2 certificates match" in entry.message for entry in log.entries)
