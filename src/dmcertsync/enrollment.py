from __future__ import annotations

from dataclasses import dataclass

from dmcertsync.errors import DiscoveryError, DiscoveryReason
from dmcertsync.oplog import OperationLog, Step
from dmcertsync.paths import PROVIDER_ID_PROPERTY, enrollment_path, enrollments_root
from dmcertsync.store import ConfigStore

MDM_PROVIDER_ID = "MS DM Server"


@dataclass(frozen=True)
class Enrollment:
    id: str
    provider_id: str


def list_enrollments(store: ConfigStore) -> list[Enrollment]:
    """All enrollment records, in store order, with their provider tag (blank if unset)."""
    enrollments: list[Enrollment] = []
    for enrollment_id in store.children(enrollments_root()):
        provider_id = store.get(enrollment_path(enrollment_id), PROVIDER_ID_PROPERTY)
        enrollments.append(Enrollment(enrollment_id, provider_id or ""))
    return enrollments


def locate_enrollment(
    store: ConfigStore, log: OperationLog, provider_id: str = MDM_PROVIDER_ID
) -> Enrollment:
    root = enrollments_root()
    matches = [item for item in list_enrollments(store) if item.provider_id == provider_id]
    if not matches:
        raise DiscoveryError(
            DiscoveryReason.NOT_FOUND,
            f"No enrollment under {root} has {PROVIDER_ID_PROPERTY} = {provider_id!r}",
        )
    enrollment = matches[0]
    if len(matches) > 1:
        others = ", ".join(item.id for item in matches[1:])
        log.warning(
            Step.DISCOVER,
            f"{len(matches)} enrollments match {provider_id!r}; using {enrollment.id} "
            f"(ignored: {others})",
        )
    log.info(
        Step.DISCOVER, f"Found enrollment {enrollment.id} at {enrollment_path(enrollment.id)}"
    )
    return enrollment
