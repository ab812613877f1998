"""
Host adapter — privilege, OS version, reboot, and runtime daemon launch.

Wraps the platform-specific bits the orchestrator needs from the host
itself. The platform is captured once at construction so a simulated
host can stand in for it in tests.
"""

from __future__ import annotations

import logging
import os
import platform
import sys
from pathlib import Path
from typing import Any

import distro

from kustoboot.adapters.base import Adapter, Runner
from kustoboot.adapters.shell.command import spawn_detached
from kustoboot.core.models.action import Receipt

logger = logging.getLogger(__name__)

# First Windows 10 build that ships WSL2 with ``wsl --install``
MIN_WINDOWS_BUILD = 19041


class HostAdapter(Adapter):
    """The local machine."""

    def __init__(self, runner: Runner | None = None, system: str | None = None):
        super().__init__(runner)
        self._system = system or platform.system()

    @property
    def name(self) -> str:
        return "host"

    def is_available(self) -> bool:
        return True

    @property
    def system(self) -> str:
        return self._system

    @property
    def is_windows(self) -> bool:
        return self._system == "Windows"

    # ── Identification ──────────────────────────────────────────

    def platform_info(self) -> dict[str, Any]:
        """OS facts for the log and the status report."""
        info: dict[str, Any] = {
            "system": self.system,
            "release": platform.release(),
            "machine": platform.machine(),
        }
        if self.is_windows:
            info["build"] = self.windows_build()
        elif self.system == "Linux":
            info["distro"] = distro.name(pretty=True) or "Linux (unknown)"
            info["distro_id"] = distro.id()
        return info

    # ── Preconditions ───────────────────────────────────────────

    def is_elevated(self) -> bool:
        """Administrator on Windows, root elsewhere."""
        if self.is_windows:
            try:
                import ctypes

                return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
            except (AttributeError, OSError):
                return False
        return os.geteuid() == 0

    def windows_build(self) -> int | None:
        """Windows build number, or None on other platforms."""
        if not self.is_windows:
            return None
        getwindowsversion = getattr(sys, "getwindowsversion", None)
        if getwindowsversion is not None:
            return int(getwindowsversion().build)
        try:
            return int(platform.version().split(".")[-1])
        except ValueError:
            return None

    # ── Paths ───────────────────────────────────────────────────

    @property
    def docker_desktop_exe(self) -> Path:
        program_files = os.environ.get("ProgramFiles", r"C:\Program Files")
        return Path(program_files) / "Docker" / "Docker" / "Docker Desktop.exe"

    @property
    def docker_settings_path(self) -> Path:
        appdata = os.environ.get("APPDATA") or str(Path.home() / "AppData" / "Roaming")
        return Path(appdata) / "Docker" / "settings-store.json"

    # ── Actions ─────────────────────────────────────────────────

    def start_runtime_daemon(self) -> Receipt:
        """Launch Docker Desktop, or start the docker service on Linux."""
        if self.is_windows:
            exe = self.docker_desktop_exe
            if not exe.is_file():
                return Receipt.skip(self.name, "start_runtime_daemon", f"{exe} not found")
            return spawn_detached([str(exe)], adapter=self.name, operation="start_runtime_daemon")
        return self._run("start_runtime_daemon", ["systemctl", "start", "docker"], timeout=120)

    def run_installer(self, installer: Path) -> Receipt:
        """Run the downloaded container runtime installer unattended."""
        if self.is_windows:
            cmd = [
                str(installer),
                "install",
                "--quiet",
                "--accept-license",
                "--backend=wsl-2",
                "--always-run-service",
            ]
        else:
            cmd = ["sh", str(installer)]
        return self._run("run_installer", cmd, timeout=3600)

    def reboot(self, reason: str = "Continuing Kusto emulator deployment") -> Receipt:
        if self.is_windows:
            return self._run(
                "reboot",
                ["shutdown.exe", "/r", "/t", "0", "/c", reason],
                timeout=60,
            )
        return self._run("reboot", ["systemctl", "reboot"], timeout=60)
