from __future__ import annotations

import re

from dmcertsync.certs import (
    DEFAULT_ISSUER_PATTERN,
    CertificateRecord,
    CertificateSource,
    select_management_certificate,
)
from dmcertsync.enrollment import Enrollment
from dmcertsync.errors import ResolutionError, ResolutionReason
from dmcertsync.oplog import OperationLog, Step
from dmcertsync.paths import (
    ENTDMID_PROPERTY,
    THUMBPRINT_PROPERTY,
    enrollment_path,
    identity_path,
)
from dmcertsync.store import ConfigStore


def resolve_management_id(store: ConfigStore, enrollment: Enrollment, log: OperationLog) -> str:
    path = identity_path(enrollment.id, enrollment.provider_id)
    ent_dm_id = store.get(path, ENTDMID_PROPERTY) or ""
    if not ent_dm_id.strip():
        raise ResolutionError(
            ResolutionReason.MISSING_IDENTITY,
            f"{ENTDMID_PROPERTY} is missing at {path}",
        )
    log.info(Step.RESOLVE, f"{ENTDMID_PROPERTY} = {ent_dm_id}")
    return ent_dm_id


def resolve_certificate(
    source: CertificateSource,
    log: OperationLog,
    issuer_pattern: str = DEFAULT_ISSUER_PATTERN,
) -> CertificateRecord:
    """Select the management certificate from the machine personal store."""
    try:
        records = source.list_certificates()
    except (OSError, ValueError) as exc:
        raise ResolutionError(
            ResolutionReason.CERTIFICATE_NOT_FOUND,
            f"Could not enumerate certificates: {exc}",
        ) from exc
    try:
        selected, candidates = select_management_certificate(records, issuer_pattern)
    except re.error as exc:
        raise ResolutionError(
            ResolutionReason.CERTIFICATE_NOT_FOUND,
            f"Invalid issuer pattern {issuer_pattern!r}: {exc}",
        ) from exc
    if selected is None:
        raise ResolutionError(
            ResolutionReason.CERTIFICATE_NOT_FOUND,
            f"No certificate issued by {issuer_pattern!r} among {len(records)} in the store",
        )
    if candidates > 1:
        log.warning(
            Step.RESOLVE,
            f"{candidates} certificates match issuer {issuer_pattern!r}; "
            f"selected {selected.thumbprint} (newest validity start)",
        )
    log.info(
        Step.RESOLVE, f"Management certificate {selected.thumbprint} issued by {selected.issuer}"
    )
    return selected


def resolve_enrollment_thumbprint(
    store: ConfigStore, enrollment: Enrollment, log: OperationLog
) -> str:
    """The thumbprint recorded on the enrollment itself; used verbatim for the Reference value."""
    path = enrollment_path(enrollment.id)
    thumbprint = store.get(path, THUMBPRINT_PROPERTY) or ""
    if not thumbprint.strip():
        raise ResolutionError(
            ResolutionReason.MISSING_THUMBPRINT,
            f"{THUMBPRINT_PROPERTY} is missing at {path}",
        )
    log.info(Step.RESOLVE, f"{THUMBPRINT_PROPERTY} = {thumbprint}")
    return thumbprint
