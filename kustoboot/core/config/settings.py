"""
DeploymentConfig — the immutable context threaded through every component.

Holds the operator's flags, the fixed names (continuation task, service
container), the timing bounds of every wait, and the well-known paths
(checkpoint, audit ledger, log file). Nothing in the deployment reads
module-level mutable state; everything it needs is on this object.
"""

from __future__ import annotations

import math
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

TASK_NAME = "KustoEmulatorDeploymentContinuation"
CONTAINER_NAME = "kusto-emulator"
DEFAULT_LISTEN_PORT = "8080"

# CLI flag for each invocation parameter that survives a reboot.
PARAMETER_FLAGS: dict[str, str] = {
    "skip_virtualization_install": "--skip-virtualization-install",
    "skip_reboot": "--skip-reboot",
    "download_only": "--download-only",
    "manual": "--manual",
    "listen_port": "--listen-port",
    "data_path": "--data-path",
    "verbose": "--verbose",
    "sample_data": "--no-sample-data",
    "config_file": "--config",
    "state_dir": "--state-dir",
    "docker_settings_file": "--docker-settings-file",
}


def _default_state_dir() -> Path:
    return Path(tempfile.gettempdir()) / "kustoboot"


class DeploymentConfig(BaseModel):
    """Validated, frozen deployment settings.

    Precedence when built by the loader: CLI flags > YAML file > defaults.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # ── Operator flags ──────────────────────────────────────────
    skip_virtualization_install: bool = False
    skip_reboot: bool = False
    download_only: bool = False
    manual: bool = False
    listen_port: str = DEFAULT_LISTEN_PORT
    data_path: str | None = None
    verbose: bool = False
    sample_data: bool = True
    config_file: str | None = None
    # Docker Desktop settings of the operator who started the deployment.
    # The resumed run executes as SYSTEM, whose APPDATA is a different profile.
    docker_settings_file: str | None = None

    # ── Fixed names ─────────────────────────────────────────────
    task_name: str = TASK_NAME
    container_name: str = CONTAINER_NAME
    image: str = "mcr.microsoft.com/azuredataexplorer/kustainer-linux:latest"
    volume_name: str = "kusto-emulator-data"
    container_memory: str = "4g"

    # ── Paths ───────────────────────────────────────────────────
    state_dir: Path = Field(default_factory=_default_state_dir)
    systemd_unit_dir: Path = Path("/etc/systemd/system")

    # ── Runtime installer ───────────────────────────────────────
    docker_installer_url: str = (
        "https://desktop.docker.com/win/main/amd64/Docker%20Desktop%20Installer.exe"
    )
    docker_installer_min_bytes: int = 100 * 1024 * 1024
    linux_installer_url: str = "https://get.docker.com"
    linux_installer_min_bytes: int = 1024

    # ── Timing bounds (seconds) ─────────────────────────────────
    daemon_wait_seconds: float = 15 * 60
    daemon_poll_seconds: float = 30
    container_wait_seconds: float = 120
    container_poll_seconds: float = 5
    health_wait_seconds: float = 180
    health_poll_seconds: float = 10
    task_verify_seconds: float = 15
    task_verify_poll_seconds: float = 1
    reboot_countdown_seconds: int = 30
    task_time_limit_hours: int = 2
    download_poll_seconds: float = 2
    download_progress_gate_seconds: float = 10
    download_max_seconds: float = 60 * 60

    @field_validator("listen_port", mode="before")
    @classmethod
    def _port_is_numeric(cls, v: Any) -> str:
        if isinstance(v, int) and not isinstance(v, bool):
            v = str(v)
        if not isinstance(v, str):
            raise ValueError(f"listen_port must be a TCP port number, got {v!r}")
        if not v.isdigit() or not 0 < int(v) < 65536:
            raise ValueError(f"listen_port must be a TCP port number, got {v!r}")
        return v

    @field_validator("state_dir")
    @classmethod
    def _absolute_state_dir(cls, v: Path) -> Path:
        # The continuation task starts in another working directory
        return v.expanduser().resolve()

    @field_validator("data_path", "docker_settings_file")
    @classmethod
    def _absolute_path(cls, v: str | None) -> str | None:
        if not v:
            return v
        return str(Path(v).expanduser().resolve())

    @field_validator(
        "daemon_wait_seconds",
        "container_wait_seconds",
        "health_wait_seconds",
        "task_verify_seconds",
        "download_max_seconds",
    )
    @classmethod
    def _bounded(cls, v: float) -> float:
        if not math.isfinite(v) or v <= 0:
            raise ValueError("wait bounds must be finite and positive")
        return v

    # ── Derived paths ───────────────────────────────────────────

    @property
    def checkpoint_path(self) -> Path:
        return self.state_dir / "checkpoint.json"

    @property
    def audit_path(self) -> Path:
        return self.state_dir / "audit.ndjson"

    @property
    def log_path(self) -> Path:
        return self.state_dir / "deployment.log"

    @property
    def downloads_dir(self) -> Path:
        return self.state_dir / "downloads"

    @property
    def service_url(self) -> str:
        return f"http://localhost:{self.listen_port}"

    def docker_settings(self, default: Path) -> Path:
        """The pinned Docker Desktop settings file, else ``default``."""
        return Path(self.docker_settings_file) if self.docker_settings_file else default

    # ── Invocation ──────────────────────────────────────────────

    def invocation_parameters(self) -> dict[str, Any]:
        """The operator flags that reproduce this run."""
        params: dict[str, Any] = {}
        for name in PARAMETER_FLAGS:
            value = getattr(self, name)
            params[name] = str(value) if isinstance(value, Path) else value
        return params

    def continuation_args(self) -> list[str]:
        """CLI arguments for the resumed run after a reboot.

        Always carries ``--skip-reboot`` so the resumed process never
        enters the automatic reboot branch on its own.
        """
        return parameters_to_args(
            {**self.invocation_parameters(), "skip_reboot": True, "download_only": False}
        )


def parameters_to_args(parameters: dict[str, Any]) -> list[str]:
    """Turn saved invocation parameters back into ``deploy`` arguments."""
    args: list[str] = []
    for name, flag in PARAMETER_FLAGS.items():
        value = parameters.get(name)
        if name == "sample_data":
            if value is False:
                args.append(flag)
        elif isinstance(value, bool):
            if value:
                args.append(flag)
        elif value is not None and value != "":
            if name == "listen_port" and str(value) == DEFAULT_LISTEN_PORT:
                continue
            args.extend([flag, str(value)])
    return args
