"""
Windows Task Scheduler bridge — ``schtasks.exe`` with an XML definition.

The task runs as LocalSystem (``S-1-5-18``) at the highest run level,
fires at boot, and is killed after its execution time limit. The XML
form is used because ``/SC ONSTART`` flags cannot express the time
limit or the battery settings.
"""

from __future__ import annotations

import csv
import io
import logging
import shutil
import subprocess
import xml.etree.ElementTree as ET
from pathlib import Path

from kustoboot.adapters.scheduler.base import ContinuationBridge
from kustoboot.core.models.action import Receipt
from kustoboot.core.models.continuation import ContinuationTask

logger = logging.getLogger(__name__)

TASK_NS = "http://schemas.microsoft.com/windows/2004/02/mit/task"
SYSTEM_SID = "S-1-5-18"

_RUNNABLE_STATES = {"ready", "running", "queued"}


def build_task_xml(task: ContinuationTask) -> ET.ElementTree:
    """Build the Task Scheduler 1.2 definition for ``task``."""
    ET.register_namespace("", TASK_NS)

    def el(parent: ET.Element, tag: str, text: str | None = None) -> ET.Element:
        child = ET.SubElement(parent, f"{{{TASK_NS}}}{tag}")
        if text is not None:
            child.text = text
        return child

    root = ET.Element(f"{{{TASK_NS}}}Task", {"version": "1.2"})

    info = el(root, "RegistrationInfo")
    el(info, "Description", "Resumes the Kusto emulator deployment after a reboot.")

    triggers = el(root, "Triggers")
    boot = el(triggers, "BootTrigger")
    el(boot, "Enabled", "true")
    el(boot, "Delay", "PT1M")

    principals = el(root, "Principals")
    principal = el(principals, "Principal")
    principal.set("id", "Author")
    el(principal, "UserId", SYSTEM_SID)
    el(principal, "RunLevel", "HighestAvailable")

    settings = el(root, "Settings")
    el(settings, "MultipleInstancesPolicy", "IgnoreNew")
    el(settings, "DisallowStartIfOnBatteries", "false")
    el(settings, "StopIfGoingOnBatteries", "false")
    el(settings, "StartWhenAvailable", "true")
    el(settings, "ExecutionTimeLimit", task.iso_time_limit)
    el(settings, "Enabled", "true")

    actions = el(root, "Actions")
    actions.set("Context", "Author")
    exec_ = el(actions, "Exec")
    el(exec_, "Command", task.command[0] if task.command else "")
    if len(task.command) > 1:
        el(exec_, "Arguments", subprocess.list2cmdline(task.command[1:]))

    return ET.ElementTree(root)


class WindowsTaskBridge(ContinuationBridge):
    """Continuation task in the Windows Task Scheduler."""

    @property
    def name(self) -> str:
        return "schtasks"

    def is_available(self) -> bool:
        return shutil.which("schtasks.exe") is not None or shutil.which("schtasks") is not None

    @property
    def _xml_path(self) -> Path:
        return self._config.state_dir / "continuation-task.xml"

    def _create(self, task: ContinuationTask) -> Receipt:
        path = self._xml_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            build_task_xml(task).write(path, encoding="utf-16", xml_declaration=True)
        except OSError as e:
            return Receipt.failure(self.name, "create", f"Cannot write task definition: {e}")

        try:
            return self._run(
                "create",
                ["schtasks.exe", "/Create", "/TN", task.name, "/XML", str(path), "/F"],
                timeout=60,
            )
        finally:
            path.unlink(missing_ok=True)

    def _delete(self) -> Receipt:
        return self._run(
            "delete", ["schtasks.exe", "/Delete", "/TN", self.task_name, "/F"], timeout=60
        )

    def query(self) -> Receipt:
        receipt = self._run(
            "query",
            ["schtasks.exe", "/Query", "/TN", self.task_name, "/FO", "CSV", "/NH"],
            timeout=60,
        )
        if not receipt.ok:
            return receipt
        return receipt.model_copy(update={"output": parse_task_status(receipt.output)})

    def _is_runnable(self, state: str) -> bool:
        return state.strip().lower() in _RUNNABLE_STATES


def parse_task_status(output: str) -> str:
    """Extract the Status column from ``schtasks /Query /FO CSV /NH``.

    Rows look like ``"\\TaskName","N/A","Ready"``.
    """
    for row in csv.reader(io.StringIO(output)):
        if row:
            return row[-1].strip()
    return ""
