"""
Error taxonomy for the deployment.

Adapters never raise — they return failed Receipts carrying an
``ErrorKind``. These exceptions are raised at the orchestrator seams
(preconditions, configuration and checkpoint parsing, fatal phase
failures, verification) and map one-to-one onto the same kinds.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a failure, used for branching and exit handling."""

    PRECONDITION = "precondition"
    INSTALL = "install"
    DOWNLOAD = "download"
    SCHEDULING = "scheduling"
    READINESS_TIMEOUT = "readiness_timeout"
    VERIFICATION = "verification"
    CONFIG = "config"
    COMMAND = "command"
    UNEXPECTED = "unexpected"


class DeploymentError(Exception):
    """Base class for all deployment errors."""

    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(
        self,
        message: str,
        *,
        hints: list[str] | None = None,
        kind: ErrorKind | None = None,
    ):
        super().__init__(message)
        self.hints = list(hints or [])
        if kind is not None:
            self.kind = kind


class PreconditionFailure(DeploymentError):
    """Not elevated, or the host cannot run the deployment."""

    kind = ErrorKind.PRECONDITION


class InstallFailure(DeploymentError):
    """A virtualization or container runtime install step failed."""

    kind = ErrorKind.INSTALL


class DownloadFailure(DeploymentError):
    """Every download strategy failed or produced a short file."""

    kind = ErrorKind.DOWNLOAD


class SchedulingFailure(DeploymentError):
    """The continuation task could not be registered or verified."""

    kind = ErrorKind.SCHEDULING


class ReadinessTimeout(DeploymentError):
    """A bounded wait (daemon, container, endpoint) ran out."""

    kind = ErrorKind.READINESS_TIMEOUT


class VerificationWarning(DeploymentError):
    """A post-deployment check failed. Logged, never fatal."""

    kind = ErrorKind.VERIFICATION


class ConfigFormatError(DeploymentError):
    """Configuration or checkpoint content failed validation."""

    kind = ErrorKind.CONFIG


_BY_KIND: dict[ErrorKind, type[DeploymentError]] = {
    cls.kind: cls
    for cls in (
        PreconditionFailure,
        InstallFailure,
        DownloadFailure,
        SchedulingFailure,
        ReadinessTimeout,
        VerificationWarning,
        ConfigFormatError,
    )
}


def error_for(
    kind: ErrorKind | None,
    message: str,
    *,
    hints: list[str] | None = None,
) -> DeploymentError:
    """The exception class matching a failure kind.

    Kinds without a dedicated class (``COMMAND``, ``UNEXPECTED``) come
    back as a plain DeploymentError carrying that kind.
    """
    kind = kind or ErrorKind.UNEXPECTED
    cls = _BY_KIND.get(kind)
    if cls is None:
        return DeploymentError(message, hints=hints, kind=kind)
    return cls(message, hints=hints)
