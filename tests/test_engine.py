from collections.abc import Callable

from dmcertsync.certs import CertificateRecord
from dmcertsync.engine import Mode, State, Status, reconcile
from dmcertsync.errors import ResolutionReason
from dmcertsync.oplog import Level, OperationLog, Step
from dmcertsync.paths import ValueKind, value_location
from dmcertsync.store import SqliteStore

from fakes import ENROLLMENT_ID, RecordingStore, StaticCertificates

SEARCH = value_location(ENROLLMENT_ID, ValueKind.SEARCH_CRITERIA)
REFERENCE = value_location(ENROLLMENT_ID, ValueKind.REFERENCE)


def test_missing_enrollment_aborts_without_writes(
    store: RecordingStore, certificates: StaticCertificates, log: OperationLog
) -> None:
    report = reconcile(store, certificates, log)

    assert report.discovery_error is not None
    assert report.results == []
    assert report.exit_code == 1
    assert store.writes == []
    assert any(e.level is Level.ERROR and e.step == Step.DISCOVER for e in log.entries)


def test_absent_values_are_corrected(
    store: RecordingStore,
    certificates: StaticCertificates,
    log: OperationLog,
    seed_enrollment: Callable[..., None],
) -> None:
    seed_enrollment(ent_dm_id="Z9", thumbprint="9F3E7C1A")

    report = reconcile(store, certificates, log)

    search = report.result_for(ValueKind.SEARCH_CRITERIA)
    reference = report.result_for(ValueKind.REFERENCE)
    assert search is not None and reference is not None
    assert search.status is Status.CORRECTED
    assert search.current_value is None
    assert reference.status is Status.CORRECTED
    assert store.get(SEARCH.path, SEARCH.name) == "Subject=CN%3dZ9&Stores=MY%5CSystem"
    assert store.get(REFERENCE.path, REFERENCE.name) == "MY;System;9F3E7C1A"
    assert search.trace == [
        State.DISCOVER,
        State.RESOLVE,
        State.COMPARE,
        State.CORRECT,
        State.REPORT,
    ]
    assert report.exit_code == 0


def test_matching_value_is_left_untouched(
    sqlite_store: SqliteStore,
    store: RecordingStore,
    certificates: StaticCertificates,
    log: OperationLog,
    seed_enrollment: Callable[..., None],
) -> None:
    seed_enrollment()
    sqlite_store.set(REFERENCE.path, REFERENCE.name, "MY;System;9F3E7C1A")

    report = reconcile(store, certificates, log)

    reference = report.result_for(ValueKind.REFERENCE)
    assert reference is not None
    assert reference.status is Status.MATCHED
    assert reference.trace == [
        State.DISCOVER,
        State.RESOLVE,
        State.COMPARE,
        State.MATCH,
        State.REPORT,
    ]
    assert [name for _, name, _ in store.writes] == [SEARCH.name]


def test_second_run_converges_to_matched(
    store: RecordingStore,
    certificates: StaticCertificates,
    log: OperationLog,
    seed_enrollment: Callable[..., None],
) -> None:
    seed_enrollment()

    first = reconcile(store, certificates, log)
    writes_after_first = len(store.writes)
    second = reconcile(store, certificates, log)

    assert [r.status for r in first.results] == [Status.CORRECTED, Status.CORRECTED]
    assert [r.status for r in second.results] == [Status.MATCHED, Status.MATCHED]
    assert len(store.writes) == writes_after_first


def test_comparison_is_case_sensitive(
    sqlite_store: SqliteStore,
    store: RecordingStore,
    certificates: StaticCertificates,
    log: OperationLog,
    seed_enrollment: Callable[..., None],
) -> None:
    seed_enrollment(thumbprint="9F3E7C1A")
    sqlite_store.set(REFERENCE.path, REFERENCE.name, "MY;System;9f3e7c1a")

    report = reconcile(store, certificates, log)

    reference = report.result_for(ValueKind.REFERENCE)
    assert reference is not None
    assert reference.status is Status.CORRECTED
    assert reference.current_value == "MY;System;9f3e7c1a"


def test_missing_identity_fails_only_search_criteria(
    store: RecordingStore,
    certificates: StaticCertificates,
    log: OperationLog,
    seed_enrollment: Callable[..., None],
) -> None:
    seed_enrollment(ent_dm_id=None)

    report = reconcile(store, certificates, log)

    search = report.result_for(ValueKind.SEARCH_CRITERIA)
    reference = report.result_for(ValueKind.REFERENCE)
    assert search is not None and reference is not None
    assert search.status is Status.FAILED
    assert ResolutionReason.MISSING_IDENTITY.value in search.detail
    assert search.trace[-1] is State.FAILED
    assert reference.status is Status.CORRECTED
    assert [name for _, name, _ in store.writes] == [REFERENCE.name]
    assert report.exit_code == 1


def test_missing_certificate_fails_search_criteria(
    store: RecordingStore, log: OperationLog, seed_enrollment: Callable[..., None]
) -> None:
    seed_enrollment()
    no_mdm_cert = StaticCertificates(
        [CertificateRecord(thumbprint="AAAA", issuer="CN=Contoso Issuing CA")]
    )

    report = reconcile(store, no_mdm_cert, log)

    search = report.result_for(ValueKind.SEARCH_CRITERIA)
    reference = report.result_for(ValueKind.REFERENCE)
    assert search is not None and reference is not None
    assert search.status is Status.FAILED
    assert ResolutionReason.CERTIFICATE_NOT_FOUND.value in search.detail
    assert reference.status is Status.CORRECTED


def test_invalid_issuer_pattern_fails_only_search_criteria(
    store: RecordingStore,
    certificates: StaticCertificates,
    log: OperationLog,
    seed_enrollment: Callable[..., None],
) -> None:
    seed_enrollment()

    report = reconcile(store, certificates, log, issuer_pattern="Intune (MDM")

    search = report.result_for(ValueKind.SEARCH_CRITERIA)
    reference = report.result_for(ValueKind.REFERENCE)
    assert search is not None and reference is not None
    assert search.status is Status.FAILED
    assert ResolutionReason.CERTIFICATE_NOT_FOUND.value in search.detail
    assert reference.status is Status.CORRECTED
    assert [name for _, name, _ in store.writes] == [REFERENCE.name]
    assert report.exit_code == 1


def test_write_failure_is_reported_and_sibling_continues(
    sqlite_store: SqliteStore,
    certificates: StaticCertificates,
    log: OperationLog,
    seed_enrollment: Callable[..., None],
) -> None:
    seed_enrollment()
    rejecting = RecordingStore(sqlite_store, reject={SEARCH.name})

    report = reconcile(rejecting, certificates, log)

    search = report.result_for(ValueKind.SEARCH_CRITERIA)
    reference = report.result_for(ValueKind.REFERENCE)
    assert search is not None and reference is not None
    assert search.status is Status.FAILED
    assert search.trace[-2:] == [State.CORRECT, State.FAILED]
    assert search.detail.startswith("WriteError")
    assert reference.status is Status.CORRECTED
    assert report.exit_code == 1
    assert any(e.level is Level.ERROR and e.step == Step.CORRECT for e in log.entries)


def test_detect_mode_never_writes(
    store: RecordingStore,
    certificates: StaticCertificates,
    log: OperationLog,
    seed_enrollment: Callable[..., None],
) -> None:
    seed_enrollment()

    report = reconcile(store, certificates, log, mode=Mode.DETECT)

    assert [r.status for r in report.results] == [Status.DRIFTED, Status.DRIFTED]
    assert store.writes == []
    assert report.exit_code == 1


def test_detect_mode_passes_when_in_sync(
    store: RecordingStore,
    certificates: StaticCertificates,
    log: OperationLog,
    seed_enrollment: Callable[..., None],
) -> None:
    seed_enrollment()
    reconcile(store, certificates, log)

    report = reconcile(store, certificates, log, mode=Mode.DETECT)

    assert report.exit_code == 0


def test_certificate_mismatch_with_enrollment_is_logged(
    store: RecordingStore, log: OperationLog, seed_enrollment: Callable[..., None]
) -> None:
    seed_enrollment(thumbprint="9F3E7C1A")
    other_cert = StaticCertificates(
        [CertificateRecord(thumbprint="0BADF00D", issuer="CN=Microsoft Intune MDM Device CA")]
    )

    report = reconcile(store, other_cert, log)

    reference = report.result_for(ValueKind.REFERENCE)
    assert reference is not None
    assert reference.expected_value == "MY;System;9F3E7C1A"
    assert any(
        e.level is Level.WARNING and "differs from DMPCertThumbPrint" in e.message
        for e in log.entries
    )


def test_report_logs_one_result_per_kind(
    store: RecordingStore,
    certificates: StaticCertificates,
    log: OperationLog,
    seed_enrollment: Callable[..., None],
) -> None:
    seed_enrollment()
    reconcile(store, certificates, log)

    report_entries = [e for e in log.entries if e.step == Step.REPORT]
    assert any(e.message.startswith("SearchCriteria: Corrected") for e in report_entries)
    assert any(e.message.startswith("Reference: Corrected") for e in report_entries)
