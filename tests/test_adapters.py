"""
Tests for the adapters — the shell runner, command lines they build,
and how they read collaborator output.
"""

import json
import sys
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path

import pytest

from kustoboot.adapters.containers.docker import DockerAdapter
from kustoboot.adapters.host.system import HostAdapter
from kustoboot.adapters.service.kusto import KustoServiceAdapter
from kustoboot.adapters.shell.command import run_command
from kustoboot.adapters.virtualization.wsl import WslAdapter
from kustoboot.core.errors import ErrorKind
from kustoboot.core.models.action import Receipt


class RecordingRunner:
    """Runner that records calls and replays canned receipts per operation."""

    def __init__(self, replies: dict[str, Receipt] | None = None):
        self.calls: list[tuple[list[str], dict]] = []
        self.replies = replies or {}

    def __call__(self, cmd, *, adapter="shell", operation="", **kwargs):
        self.calls.append((list(cmd), {"adapter": adapter, "operation": operation, **kwargs}))
        return self.replies.get(operation) or Receipt.success(adapter, operation)

    @property
    def commands(self) -> list[list[str]]:
        return [cmd for cmd, _ in self.calls]


# ── Shell runner ────────────────────────────────────────────────


class TestRunCommand:
    def test_success(self):
        receipt = run_command(
            [sys.executable, "-c", "print('hello')"], adapter="t", operation="echo"
        )
        assert receipt.ok
        assert receipt.output == "hello"
        assert receipt.return_code == 0
        assert receipt.adapter == "t"

    def test_failure_carries_stderr(self):
        receipt = run_command(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"]
        )
        assert receipt.failed
        assert receipt.error == "boom"
        assert receipt.return_code == 3
        assert receipt.error_kind == ErrorKind.COMMAND

    def test_extra_ok_codes(self):
        # POSIX truncates exit statuses to 8 bits, so stay below 256
        receipt = run_command([sys.executable, "-c", "raise SystemExit(3)"], ok_codes=(0, 3))
        assert receipt.ok
        assert receipt.return_code == 3

    def test_missing_binary_never_raises(self):
        receipt = run_command(["definitely-not-a-real-binary-xyz"])
        assert receipt.failed
        assert "Cannot execute" in receipt.error

    def test_timeout(self):
        receipt = run_command([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)
        assert receipt.failed
        assert "timed out" in receipt.error

    def test_env_overrides(self):
        receipt = run_command(
            [sys.executable, "-c", "import os; print(os.environ['KUSTOBOOT_TEST'])"],
            env_overrides={"KUSTOBOOT_TEST": "yes"},
        )
        assert receipt.output == "yes"

    def test_nul_bytes_stripped(self):
        receipt = run_command([sys.executable, "-c", "print('W\\x00S\\x00L')"])
        assert receipt.output == "WSL"


# ── WSL ─────────────────────────────────────────────────────────


class AvailableWsl(WslAdapter):
    def is_available(self) -> bool:
        return True


class TestWslProbe:
    def test_not_on_path(self, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda name: None)
        state = WslAdapter(runner=RecordingRunner()).probe()
        assert not state.installed
        assert "not found" in state.detail

    def test_status_failure_means_absent(self):
        runner = RecordingRunner({"status": Receipt.failure("wsl", "status", "not installed")})
        assert not AvailableWsl(runner=runner).probe().installed

    def test_ready(self):
        runner = RecordingRunner({
            "status": Receipt.success("wsl", "status", "Default Version: 2"),
            "version": Receipt.success("wsl", "version", "WSL version: 2.2.4.0\nKernel version: 5.15"),
        })
        state = AvailableWsl(runner=runner).probe()
        assert state.ready
        assert state.detail == "WSL version: 2.2.4.0"
        assert runner.calls[0][1]["env_overrides"] == {"WSL_UTF8": "1"}

    def test_update_marker_in_stderr(self):
        runner = RecordingRunner({
            "status": Receipt.success(
                "wsl", "status", "", metadata={"stderr": "Please run WSL.EXE --UPDATE"}
            ),
        })
        state = AvailableWsl(runner=runner).probe()
        assert state.installed
        assert state.needs_update
        assert not state.ready

    def test_inbox_wsl_needs_update(self):
        runner = RecordingRunner({
            "version": Receipt.failure("wsl", "version", "Invalid command line option: --version"),
        })
        state = AvailableWsl(runner=runner).probe()
        assert state.needs_update

    def test_enable_feature_accepts_reboot_code(self):
        runner = RecordingRunner()
        WslAdapter(runner=runner).enable_feature("VirtualMachinePlatform")
        cmd, kwargs = runner.calls[0]
        assert cmd[:3] == ["dism.exe", "/online", "/enable-feature"]
        assert "/norestart" in cmd
        assert 3010 in kwargs["ok_codes"]
        assert kwargs["operation"] == "enable_feature:VirtualMachinePlatform"


# ── Docker ──────────────────────────────────────────────────────


class TestDocker:
    def test_run_container_command_line(self):
        runner = RecordingRunner()
        DockerAdapter(runner=runner).run_container(
            "kusto-emulator",
            "kustainer:latest",
            ports={"8080": "8080"},
            volumes={"kusto-data": "/kustodata"},
            env={"ACCEPT_EULA": "Y"},
            memory="4g",
        )
        assert runner.commands[0] == [
            "docker", "run", "-d",
            "--name", "kusto-emulator",
            "--restart", "unless-stopped",
            "-p", "8080:8080",
            "-v", "kusto-data:/kustodata",
            "-e", "ACCEPT_EULA=Y",
            "--memory", "4g",
            "kustainer:latest",
        ]

    def test_container_state_exact_name_filter(self):
        runner = RecordingRunner({
            "container_state": Receipt.success("docker", "container_state", "\nrunning\n"),
        })
        docker = DockerAdapter(runner=runner)
        assert docker.container_state("kusto-emulator").output == "running"
        assert "name=^/kusto-emulator$" in runner.commands[0]

    @pytest.mark.parametrize(
        "output,exists,running",
        [("", False, False), ("exited", True, False), ("running", True, True)],
    )
    def test_exists_and_running(self, output: str, exists: bool, running: bool):
        runner = RecordingRunner({
            "container_state": Receipt.success("docker", "container_state", output),
        })
        docker = DockerAdapter(runner=runner)
        assert docker.container_exists("k") is exists
        assert docker.container_running("k") is running

    def test_daemon_down_is_not_running(self):
        runner = RecordingRunner({
            "container_state": Receipt.failure("docker", "container_state", "Cannot connect"),
        })
        assert not DockerAdapter(runner=runner).container_running("k")


# ── Host ────────────────────────────────────────────────────────


class TestHost:
    def test_windows_installer_is_unattended(self):
        runner = RecordingRunner()
        HostAdapter(runner, system="Windows").run_installer(Path("C:/dl/DockerDesktopInstaller.exe"))
        cmd, kwargs = runner.calls[0]
        assert cmd[1:4] == ["install", "--quiet", "--accept-license"]
        assert "--backend=wsl-2" in cmd
        assert kwargs["timeout"] == 3600

    def test_linux_installer_uses_sh(self):
        runner = RecordingRunner()
        HostAdapter(runner, system="Linux").run_installer(Path("/tmp/get-docker.sh"))
        assert runner.commands[0] == ["sh", str(Path("/tmp/get-docker.sh"))]

    def test_reboot_commands(self):
        runner = RecordingRunner()
        HostAdapter(runner, system="Windows").reboot()
        HostAdapter(runner, system="Linux").reboot()
        assert runner.commands[0][:4] == ["shutdown.exe", "/r", "/t", "0"]
        assert runner.commands[1] == ["systemctl", "reboot"]

    def test_windows_build_none_elsewhere(self):
        assert HostAdapter(RecordingRunner(), system="Linux").windows_build() is None

    def test_missing_docker_desktop_is_skip(self, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("ProgramFiles", str(tmp_path))
        receipt = HostAdapter(RecordingRunner(), system="Windows").start_runtime_daemon()
        assert receipt.status == "skipped"


# ── Kusto service ───────────────────────────────────────────────


class _KustoHandler(BaseHTTPRequestHandler):
    requests: list[dict] = []

    def do_POST(self):
        length = int(self.headers.get("Content-Length", 0))
        body = json.loads(self.rfile.read(length))
        _KustoHandler.requests.append({"path": self.path, **body})
        if body["csl"].startswith(".bad"):
            self.send_response(400)
            self.end_headers()
            self.wfile.write(b"Syntax error")
            return
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(b'{"Tables": []}')

    def log_message(self, format, *args):
        pass


@pytest.fixture
def kusto_server():
    _KustoHandler.requests = []
    server = HTTPServer(("127.0.0.1", 0), _KustoHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_port}"
    server.shutdown()
    server.server_close()


class TestKusto:
    def test_health(self, kusto_server: str):
        receipt = KustoServiceAdapter(kusto_server).health()
        assert receipt.ok
        assert receipt.return_code == 200
        assert _KustoHandler.requests[0] == {
            "path": "/v1/rest/mgmt", "db": "NetDefaultDB", "csl": ".show cluster",
        }

    def test_query_endpoint(self, kusto_server: str):
        KustoServiceAdapter(kusto_server + "/").query("SampleEvents | count")
        assert _KustoHandler.requests[0]["path"] == "/v1/rest/query"

    def test_http_error(self, kusto_server: str):
        receipt = KustoServiceAdapter(kusto_server).management(".bad command")
        assert receipt.failed
        assert receipt.return_code == 400
        assert "Syntax error" in receipt.error
        assert receipt.error_kind == ErrorKind.VERIFICATION

    def test_unreachable(self):
        server = HTTPServer(("127.0.0.1", 0), _KustoHandler)
        port = server.server_port
        server.server_close()

        receipt = KustoServiceAdapter(f"http://127.0.0.1:{port}", timeout=2).health()

        assert receipt.failed
        assert "Cannot reach" in receipt.error
        assert receipt.error_kind == ErrorKind.VERIFICATION
