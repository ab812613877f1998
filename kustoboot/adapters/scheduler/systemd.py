"""
systemd bridge — a oneshot unit enabled for multi-user.target.

Stands in for the Windows Task Scheduler on Linux hosts: the unit runs
as root at boot, once, with ``TimeoutStartSec`` as its execution limit.
"""

from __future__ import annotations

import logging
import shlex
import shutil
from pathlib import Path

from kustoboot.adapters.scheduler.base import ContinuationBridge
from kustoboot.core.models.action import Receipt
from kustoboot.core.models.continuation import ContinuationTask

logger = logging.getLogger(__name__)


def render_unit(task: ContinuationTask) -> str:
    """Render the unit file text for ``task``."""
    return "\n".join(
        [
            "[Unit]",
            "Description=Resume Kusto emulator deployment after reboot",
            "Wants=network-online.target",
            "After=network-online.target",
            "",
            "[Service]",
            "Type=oneshot",
            "User=root",
            f"ExecStart={shlex.join(task.command)}",
            f"TimeoutStartSec={task.execution_time_limit_hours}h",
            "",
            "[Install]",
            "WantedBy=multi-user.target",
            "",
        ]
    )


class SystemdUnitBridge(ContinuationBridge):
    """Continuation task as a systemd unit."""

    @property
    def name(self) -> str:
        return "systemd"

    def is_available(self) -> bool:
        return shutil.which("systemctl") is not None

    @property
    def unit_name(self) -> str:
        return f"{self.task_name}.service"

    @property
    def unit_path(self) -> Path:
        return self._config.systemd_unit_dir / self.unit_name

    def _create(self, task: ContinuationTask) -> Receipt:
        try:
            self.unit_path.parent.mkdir(parents=True, exist_ok=True)
            self.unit_path.write_text(render_unit(task), encoding="utf-8")
        except OSError as e:
            return Receipt.failure(self.name, "create", f"Cannot write {self.unit_path}: {e}")

        reloaded = self._run("daemon_reload", ["systemctl", "daemon-reload"], timeout=60)
        if reloaded.failed:
            return reloaded
        return self._run("enable", ["systemctl", "enable", self.unit_name], timeout=60)

    def _delete(self) -> Receipt:
        disabled = self._run("disable", ["systemctl", "disable", self.unit_name], timeout=60)
        try:
            self.unit_path.unlink(missing_ok=True)
        except OSError as e:
            return Receipt.failure(self.name, "delete", f"Cannot remove {self.unit_path}: {e}")
        self._run("daemon_reload", ["systemctl", "daemon-reload"], timeout=60)
        if disabled.failed:
            return disabled
        return Receipt.success(self.name, "delete", output=self.unit_name)

    def query(self) -> Receipt:
        if not self.unit_path.is_file():
            return Receipt.failure(self.name, "query", f"{self.unit_path} does not exist")
        # is-enabled exits non-zero for "disabled"; the state is still informative
        receipt = self._run(
            "query", ["systemctl", "is-enabled", self.unit_name], timeout=30, ok_codes=(0, 1)
        )
        if receipt.ok:
            lines = receipt.output.splitlines()
            return receipt.model_copy(update={"output": lines[0].strip() if lines else ""})
        return receipt

    def _is_runnable(self, state: str) -> bool:
        return state == "enabled"
