"""
WSL adapter — the virtualization layer.

Probes and installs the Windows Subsystem for Linux through ``wsl.exe``
and enables the optional Windows features it needs through ``dism.exe``.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass

from kustoboot.adapters.base import Adapter
from kustoboot.core.models.action import Receipt

logger = logging.getLogger(__name__)

# wsl.exe writes UTF-16 to pipes unless told otherwise
_WSL_ENV = {"WSL_UTF8": "1"}

REQUIRED_FEATURES = (
    "Microsoft-Windows-Subsystem-Linux",
    "VirtualMachinePlatform",
)

# DISM: success, reboot required
_DISM_OK = (0, 3010)

_UPDATE_MARKERS = ("wsl --update", "wsl.exe --update", "kernel file is not found")


@dataclass(frozen=True)
class WslState:
    """Result of probing the virtualization layer."""

    installed: bool
    needs_update: bool = False
    detail: str = ""

    @property
    def ready(self) -> bool:
        return self.installed and not self.needs_update


class WslAdapter(Adapter):
    """wsl.exe and dism.exe operations."""

    @property
    def name(self) -> str:
        return "wsl"

    def is_available(self) -> bool:
        return shutil.which("wsl") is not None or shutil.which("wsl.exe") is not None

    # ── Probes ──────────────────────────────────────────────────

    def status(self) -> Receipt:
        return self._run("status", ["wsl", "--status"], timeout=60, env_overrides=_WSL_ENV)

    def version(self) -> Receipt:
        return self._run("version", ["wsl", "--version"], timeout=60, env_overrides=_WSL_ENV)

    def probe(self) -> WslState:
        """Whether WSL is installed and current.

        ``wsl --status`` fails when WSL is absent. When present, an
        outdated kernel is reported in its output, and the inbox
        (pre-Store) WSL does not understand ``--version`` at all.
        """
        if not self.is_available():
            return WslState(installed=False, detail="wsl.exe not found")

        status = self.status()
        if not status.ok:
            return WslState(installed=False, detail=status.error or "")

        text = f"{status.output}\n{status.metadata.get('stderr', '')}".lower()
        if any(marker in text for marker in _UPDATE_MARKERS):
            return WslState(installed=True, needs_update=True, detail="kernel update required")

        version = self.version()
        if not version.ok:
            return WslState(installed=True, needs_update=True, detail="inbox WSL without --version")

        return WslState(installed=True, detail=version.output.splitlines()[0] if version.output else "")

    # ── Actions ─────────────────────────────────────────────────

    def enable_feature(self, feature: str) -> Receipt:
        return self._run(
            f"enable_feature:{feature}",
            [
                "dism.exe",
                "/online",
                "/enable-feature",
                f"/featurename:{feature}",
                "/all",
                "/norestart",
            ],
            timeout=600,
            ok_codes=_DISM_OK,
        )

    def install(self) -> Receipt:
        return self._run(
            "install",
            ["wsl", "--install", "--no-distribution"],
            timeout=1800,
            env_overrides=_WSL_ENV,
        )

    def update(self) -> Receipt:
        return self._run("update", ["wsl", "--update"], timeout=1800, env_overrides=_WSL_ENV)

    def set_default_version(self, version: int = 2) -> Receipt:
        return self._run(
            "set_default_version",
            ["wsl", "--set-default-version", str(version)],
            timeout=120,
            env_overrides=_WSL_ENV,
        )
