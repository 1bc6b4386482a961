from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from dmcertsync.certs import CertificateRecord
from dmcertsync.oplog import OperationLog
from dmcertsync.paths import (
    ENTDMID_PROPERTY,
    PROVIDER_ID_PROPERTY,
    THUMBPRINT_PROPERTY,
    enrollment_path,
    identity_path,
)
from dmcertsync.store import SqliteStore

from fakes import ENROLLMENT_ID, INTUNE_ISSUER, RecordingStore, StaticCertificates


@pytest.fixture
def sqlite_store(tmp_path: Path) -> SqliteStore:
    return SqliteStore(tmp_path / "store.db")


@pytest.fixture
def store(sqlite_store: SqliteStore) -> RecordingStore:
    return RecordingStore(sqlite_store)


@pytest.fixture
def certificates() -> StaticCertificates:
    return StaticCertificates(
        [CertificateRecord(thumbprint="9F3E7C1A", issuer=INTUNE_ISSUER, subject="CN=AB12")]
    )


@pytest.fixture
def log(tmp_path: Path) -> Iterator[OperationLog]:
    oplog = OperationLog(tmp_path / "logs" / "run.log")
    yield oplog
    oplog.close()


@pytest.fixture
def seed_enrollment(sqlite_store: SqliteStore) -> Callable[..., None]:
    """Write an enrollment record directly to the backing store (not counted as a write)."""

    def _seed(
        enrollment_id: str = ENROLLMENT_ID,
        provider_id: str = "MS DM Server",
        ent_dm_id: str | None = "AB12",
        thumbprint: str | None = "9F3E7C1A",
    ) -> None:
        path = enrollment_path(enrollment_id)
        sqlite_store.set(path, PROVIDER_ID_PROPERTY, provider_id)
        if thumbprint is not None:
            sqlite_store.set(path, THUMBPRINT_PROPERTY, thumbprint)
        if ent_dm_id is not None:
            sqlite_store.set(identity_path(enrollment_id, provider_id), ENTDMID_PROPERTY, ent_dm_id)

    return _seed
