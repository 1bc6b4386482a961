from __future__ import annotations

from enum import Enum


class DiscoveryReason(str, Enum):
    NOT_FOUND = "NotFound"


class ResolutionReason(str, Enum):
    MISSING_IDENTITY = "MissingIdentity"
    CERTIFICATE_NOT_FOUND = "CertificateNotFound"
    MISSING_THUMBPRINT = "MissingThumbprint"


class DmCertSyncError(Exception):
    """Base class for every error raised by dmcertsync."""


class DiscoveryError(DmCertSyncError):
    """No enrollment record matched the management provider. Fatal for the run."""

    def __init__(self, reason: DiscoveryReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class ResolutionError(DmCertSyncError):
    """Identity data for one value kind could not be resolved. Fatal for that kind only."""

    def __init__(self, reason: ResolutionReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class WriteError(DmCertSyncError):
    def __init__(self, path: str, name: str, message: str) -> None:
        super().__init__(message)
        self.path = path
        self.name = name


class LogError(DmCertSyncError):
    """A log entry could not be persisted. Never propagated out of OperationLog."""


class ConfigError(DmCertSyncError):
    pass
