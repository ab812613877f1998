"""
Tests for core models — Phase, Receipt, Checkpoint, download records.
"""

import json

import pytest

from kustoboot.core.errors import ConfigFormatError, ErrorKind
from kustoboot.core.models import (
    LADDER,
    Checkpoint,
    ContinuationTask,
    DownloadResult,
    Phase,
    Receipt,
)


class TestPhase:
    def test_ladder_order(self):
        assert [p.value for p in LADDER] == [
            "WSL2_INSTALL",
            "DOCKER_INSTALL",
            "DOCKER_WAIT",
            "KUSTO_DEPLOY",
            "KUSTO_START",
            "COMPLETE",
        ]

    def test_rank_follows_ladder(self):
        assert Phase.WSL2_INSTALL.rank == 0
        assert Phase.COMPLETE.rank == 5
        assert Phase.DOCKER_WAIT.rank < Phase.KUSTO_DEPLOY.rank

    def test_bookkeeping_phases_are_not_ladder(self):
        assert not Phase.REBOOT_REQUIRED.is_ladder
        assert not Phase.FINAL_VERIFICATION.is_ladder
        with pytest.raises(ValueError):
            _ = Phase.REBOOT_REQUIRED.rank

    def test_every_phase_has_a_label(self):
        for phase in Phase:
            assert phase.label

    def test_string_value(self):
        assert Phase("DOCKER_WAIT") is Phase.DOCKER_WAIT
        assert Phase.DOCKER_WAIT == "DOCKER_WAIT"


class TestReceipt:
    def test_success(self):
        r = Receipt.success("docker", "info", output="27.0.3")
        assert r.ok
        assert not r.failed
        assert r.error_kind is None

    def test_failure_defaults_to_command_kind(self):
        r = Receipt.failure("docker", "pull", "network unreachable")
        assert r.failed
        assert r.error_kind == ErrorKind.COMMAND

    def test_skip(self):
        r = Receipt.skip("bypass", "apply", "already applied")
        assert r.status == "skipped"
        assert not r.ok
        assert not r.failed

    def test_as_kind_reclassifies_failures_only(self):
        failed = Receipt.failure("schtasks", "create", "access denied")
        assert failed.as_kind(ErrorKind.SCHEDULING).error_kind == ErrorKind.SCHEDULING
        assert failed.error_kind == ErrorKind.COMMAND  # original untouched

        ok = Receipt.success("schtasks", "create")
        assert ok.as_kind(ErrorKind.SCHEDULING) is ok

    def test_describe(self):
        r = Receipt.failure("wsl", "install", "boom", return_code=5)
        assert r.describe() == "wsl.install: boom (exit 5)"
        assert Receipt.success("wsl", "status").describe() == "wsl.status: ok"
        assert "skipped (nothing)" in Receipt.skip("wsl", "x", "nothing").describe()


class TestCheckpoint:
    def test_serializes_with_on_disk_keys(self):
        cp = Checkpoint(phase=Phase.DOCKER_WAIT, data={"attempt": 3}, script_path="/opt/kb")
        data = json.loads(cp.to_json())
        assert set(data) == {"Phase", "Timestamp", "Data", "ScriptPath", "Parameters"}
        assert data["Phase"] == "DOCKER_WAIT"
        assert data["Data"] == {"attempt": 3}

    def test_round_trip(self):
        cp = Checkpoint(
            phase=Phase.KUSTO_DEPLOY,
            data={"attempt": 1, "note": "x"},
            script_path="/opt/kb",
            parameters={"listen_port": "8090", "manual": False},
        )
        loaded = Checkpoint.from_json(cp.to_json())
        assert loaded.phase == Phase.KUSTO_DEPLOY
        assert loaded.data["attempt"] == 1
        assert loaded.parameters["listen_port"] == "8090"
        assert loaded.timestamp == cp.timestamp

    def test_invalid_json(self):
        with pytest.raises(ConfigFormatError, match="not valid JSON"):
            Checkpoint.from_json("{not json")

    def test_not_an_object(self):
        with pytest.raises(ConfigFormatError, match="JSON object"):
            Checkpoint.from_json("[1, 2]")

    def test_unknown_phase(self):
        raw = json.dumps({"Phase": "INSTALL_EVERYTHING", "ScriptPath": "x"})
        with pytest.raises(ConfigFormatError):
            Checkpoint.from_json(raw)

    def test_missing_required_field(self):
        with pytest.raises(ConfigFormatError):
            Checkpoint.from_json(json.dumps({"Phase": "COMPLETE"}))

    def test_unknown_field_rejected(self):
        raw = json.dumps({"Phase": "COMPLETE", "ScriptPath": "x", "Extra": 1})
        with pytest.raises(ConfigFormatError):
            Checkpoint.from_json(raw)


class TestContinuationTask:
    def test_iso_time_limit(self):
        task = ContinuationTask(name="t", command=["a"], execution_time_limit_hours=3)
        assert task.iso_time_limit == "PT3H"

    def test_defaults(self):
        task = ContinuationTask(name="t")
        assert task.trigger == "startup"
        assert task.principal == "SYSTEM"


class TestDownloadResult:
    def test_to_dict(self):
        result = DownloadResult(success=True, bytes=10, file_size=10, strategy="streamed")
        d = result.to_dict()
        assert d["success"] is True
        assert d["strategy"] == "streamed"
        assert d["error"] == ""
