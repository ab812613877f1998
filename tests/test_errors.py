"""
Tests for the error taxonomy — kinds, hints and the kind → class mapping.
"""

import pytest

from kustoboot.core.errors import (
    ConfigFormatError,
    DeploymentError,
    DownloadFailure,
    ErrorKind,
    InstallFailure,
    PreconditionFailure,
    ReadinessTimeout,
    SchedulingFailure,
    VerificationWarning,
    error_for,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "cls, kind",
        [
            (PreconditionFailure, ErrorKind.PRECONDITION),
            (InstallFailure, ErrorKind.INSTALL),
            (DownloadFailure, ErrorKind.DOWNLOAD),
            (SchedulingFailure, ErrorKind.SCHEDULING),
            (ReadinessTimeout, ErrorKind.READINESS_TIMEOUT),
            (VerificationWarning, ErrorKind.VERIFICATION),
            (ConfigFormatError, ErrorKind.CONFIG),
        ],
    )
    def test_each_class_carries_its_kind(self, cls, kind):
        error = cls("boom")
        assert isinstance(error, DeploymentError)
        assert error.kind == kind

    def test_hints_copied(self):
        hints = ["check the proxy"]
        error = DownloadFailure("no bytes", hints=hints)
        hints.append("later")
        assert error.hints == ["check the proxy"]

    def test_base_defaults_to_unexpected(self):
        assert DeploymentError("?").kind == ErrorKind.UNEXPECTED


class TestErrorFor:
    @pytest.mark.parametrize(
        "kind, cls",
        [
            (ErrorKind.INSTALL, InstallFailure),
            (ErrorKind.DOWNLOAD, DownloadFailure),
            (ErrorKind.SCHEDULING, SchedulingFailure),
            (ErrorKind.READINESS_TIMEOUT, ReadinessTimeout),
        ],
    )
    def test_dedicated_class(self, kind, cls):
        error = error_for(kind, "failed", hints=["retry"])
        assert type(error) is cls
        assert str(error) == "failed"
        assert error.hints == ["retry"]

    def test_command_kind_keeps_kind(self):
        error = error_for(ErrorKind.COMMAND, "docker start failed")
        assert type(error) is DeploymentError
        assert error.kind == ErrorKind.COMMAND

    def test_missing_kind_is_unexpected(self):
        assert error_for(None, "?").kind == ErrorKind.UNEXPECTED
