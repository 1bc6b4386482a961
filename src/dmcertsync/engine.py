"""Drift detection and correction for the enrollment certificate binding values.

One run discovers the MDM enrollment once, then drives each value kind through

    DISCOVER -> RESOLVE -> COMPARE -> MATCH | CORRECT -> REPORT

with FAILED reachable from DISCOVER (aborts every kind) and from RESOLVE or CORRECT
(aborts only that kind). The store is written only in CORRECT, and only after COMPARE
found the current value different from the expected one.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from dmcertsync.certs import DEFAULT_ISSUER_PATTERN, CertificateSource
from dmcertsync.enrollment import MDM_PROVIDER_ID, Enrollment, locate_enrollment
from dmcertsync.errors import DiscoveryError, ResolutionError, WriteError
from dmcertsync.identity import (
    resolve_certificate,
    resolve_enrollment_thumbprint,
    resolve_management_id,
)
from dmcertsync.oplog import Level, OperationLog, Step
from dmcertsync.paths import (
    THUMBPRINT_PROPERTY,
    ValueKind,
    ValueLocation,
    enrollment_path,
    value_location,
)
from dmcertsync.store import ConfigStore
from dmcertsync.values import build_reference, build_search_criteria


class Mode(str, Enum):
    REMEDIATE = "remediate"
    DETECT = "detect"


class State(str, Enum):
    DISCOVER = "DISCOVER"
    RESOLVE = "RESOLVE"
    COMPARE = "COMPARE"
    MATCH = "MATCH"
    CORRECT = "CORRECT"
    REPORT = "REPORT"
    FAILED = "FAILED"


class Status(str, Enum):
    MATCHED = "Matched"
    CORRECTED = "Corrected"
    DRIFTED = "Drifted"
    FAILED = "Failed"


KINDS = (ValueKind.SEARCH_CRITERIA, ValueKind.REFERENCE)


def utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


@dataclass
class ConfigurationValue:
    kind: ValueKind
    location: ValueLocation
    current_value: str | None
    expected_value: str

    @property
    def in_sync(self) -> bool:
        # An absent value never equals the expected one, even if that were empty.
        return self.current_value is not None and self.current_value == self.expected_value


@dataclass
class ReconciliationResult:
    kind: ValueKind
    status: Status
    timestamp: str
    location: str = ""
    current_value: str | None = None
    expected_value: str | None = None
    detail: str = ""
    trace: list[State] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "status": self.status.value,
            "timestamp": self.timestamp,
            "location": self.location,
            "current_value": self.current_value,
            "expected_value": self.expected_value,
            "detail": self.detail,
            "trace": [state.value for state in self.trace],
        }


@dataclass
class RunReport:
    mode: Mode
    started_at: str
    enrollment_id: str | None = None
    discovery_error: str | None = None
    results: list[ReconciliationResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        if self.discovery_error is not None:
            return False
        allowed = {Status.MATCHED, Status.CORRECTED}
        return all(result.status in allowed for result in self.results)

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def result_for(self, kind: ValueKind) -> ReconciliationResult | None:
        for result in self.results:
            if result.kind == kind:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "started_at": self.started_at,
            "enrollment_id": self.enrollment_id,
            "discovery_error": self.discovery_error,
            "exit_code": self.exit_code,
            "results": [result.to_dict() for result in self.results],
        }


def _display(value: str | None) -> str:
    return "(absent)" if value is None else repr(value)


class Reconciler:
    """Runs the state machine for both value kinds against one device."""

    def __init__(
        self,
        store: ConfigStore,
        certificates: CertificateSource,
        log: OperationLog,
        provider_id: str = MDM_PROVIDER_ID,
        issuer_pattern: str = DEFAULT_ISSUER_PATTERN,
    ) -> None:
        self.store = store
        self.certificates = certificates
        self.log = log
        self.provider_id = provider_id
        self.issuer_pattern = issuer_pattern
        self._resolvers: dict[ValueKind, Callable[[Enrollment], str]] = {
            ValueKind.SEARCH_CRITERIA: self._expected_search_criteria,
            ValueKind.REFERENCE: self._expected_reference,
        }

    def run(self, mode: Mode = Mode.REMEDIATE) -> RunReport:
        report = RunReport(mode=mode, started_at=utc_now())
        self.log.info(
            Step.DISCOVER, f"Starting {mode.value} run for provider {self.provider_id!r}"
        )
        try:
            enrollment = locate_enrollment(self.store, self.log, self.provider_id)
        except DiscoveryError as exc:
            report.discovery_error = str(exc)
            self.log.error(Step.DISCOVER, f"{exc.reason.value}: {exc}; aborting run")
            return report

        report.enrollment_id = enrollment.id
        for kind in KINDS:
            result = self.reconcile_kind(enrollment, kind, mode)
            report.results.append(result)
            self._report(result)
        self.log.info(
            Step.REPORT,
            f"Run finished with exit code {report.exit_code} "
            f"({', '.join(f'{r.kind.value}={r.status.value}' for r in report.results)})",
        )
        return report

    def reconcile_kind(
        self, enrollment: Enrollment, kind: ValueKind, mode: Mode = Mode.REMEDIATE
    ) -> ReconciliationResult:
        trace = [State.DISCOVER, State.RESOLVE]
        location = value_location(enrollment.id, kind)

        try:
            expected = self._resolvers[kind](enrollment)
        except ResolutionError as exc:
            trace.append(State.FAILED)
            self.log.error(Step.RESOLVE, f"{kind.value}: {exc.reason.value}: {exc}")
            return ReconciliationResult(
                kind=kind,
                status=Status.FAILED,
                timestamp=utc_now(),
                location=str(location),
                detail=f"{exc.reason.value}: {exc}",
                trace=trace,
            )

        trace.append(State.COMPARE)
        value = ConfigurationValue(
            kind=kind,
            location=location,
            current_value=self.store.get(location.path, location.name),
            expected_value=expected,
        )
        self.log.info(
            Step.COMPARE,
            f"{kind.value} at {location}: current={_display(value.current_value)} "
            f"expected={value.expected_value!r}",
        )

        if value.in_sync:
            trace.extend([State.MATCH, State.REPORT])
            return self._result(value, Status.MATCHED, "already in sync", trace)

        if mode is Mode.DETECT:
            trace.append(State.REPORT)
            return self._result(value, Status.DRIFTED, "drift detected; no changes made", trace)

        trace.append(State.CORRECT)
        try:
            self.store.set(location.path, location.name, value.expected_value)
        except WriteError as exc:
            trace.append(State.FAILED)
            self.log.error(Step.CORRECT, f"{kind.value}: write rejected at {location}: {exc}")
            return self._result(value, Status.FAILED, f"WriteError: {exc}", trace)
        self.log.info(Step.CORRECT, f"{kind.value}: wrote {value.expected_value!r} to {location}")
        trace.append(State.REPORT)
        return self._result(value, Status.CORRECTED, "value corrected", trace)

    def _expected_search_criteria(self, enrollment: Enrollment) -> str:
        ent_dm_id = resolve_management_id(self.store, enrollment, self.log)
        certificate = resolve_certificate(self.certificates, self.log, self.issuer_pattern)
        recorded = self.store.get(enrollment_path(enrollment.id), THUMBPRINT_PROPERTY)
        if recorded and recorded.upper() != certificate.thumbprint.upper():
            self.log.warning(
                Step.RESOLVE,
                f"Selected certificate {certificate.thumbprint} differs from "
                f"{THUMBPRINT_PROPERTY} {recorded} on enrollment {enrollment.id}",
            )
        return build_search_criteria(ent_dm_id)

    def _expected_reference(self, enrollment: Enrollment) -> str:
        thumbprint = resolve_enrollment_thumbprint(self.store, enrollment, self.log)
        return build_reference(thumbprint)

    def _result(
        self,
        value: ConfigurationValue,
        status: Status,
        detail: str,
        trace: list[State],
    ) -> ReconciliationResult:
        return ReconciliationResult(
            kind=value.kind,
            status=status,
            timestamp=utc_now(),
            location=str(value.location),
            current_value=value.current_value,
            expected_value=value.expected_value,
            detail=detail,
            trace=trace,
        )

    def _report(self, result: ReconciliationResult) -> None:
        level = {
            Status.MATCHED: Level.INFO,
            Status.CORRECTED: Level.INFO,
            Status.DRIFTED: Level.WARNING,
            Status.FAILED: Level.ERROR,
        }[result.status]
        self.log.record(
            level,
            Step.REPORT,
            f"{result.kind.value}: {result.status.value} at {result.location or '(unresolved)'} "
            f"current={_display(result.current_value)} expected={_display(result.expected_value)} "
            f"({result.detail})",
        )


def reconcile(
    store: ConfigStore,
    certificates: CertificateSource,
    log: OperationLog,
    mode: Mode = Mode.REMEDIATE,
    provider_id: str = MDM_PROVIDER_ID,
    issuer_pattern: str = DEFAULT_ISSUER_PATTERN,
) -> RunReport:
    return Reconciler(store, certificates, log, provider_id, issuer_pattern).run(mode)
