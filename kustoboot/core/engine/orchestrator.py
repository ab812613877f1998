"""
Orchestrator — the resumable driver loop.

Flow per invocation:
    preconditions → detect → checkpoint → action → (re-detect → ...)
        ├─ reboot required → register continuation task → countdown → restart
        ├─ action failed   → report, keep checkpoint, exit 1
        └─ COMPLETE        → final verification → unregister task, clear checkpoint

Live detection is authoritative. The checkpoint only records where the
previous process got to (and how often it tried), so an operator or the
resumed process can tell what happened across a reboot.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from kustoboot.adapters.containers.docker import DockerAdapter
from kustoboot.adapters.host.system import HostAdapter
from kustoboot.adapters.scheduler import ContinuationBridge, select_bridge
from kustoboot.adapters.service.kusto import KustoServiceAdapter
from kustoboot.adapters.virtualization.wsl import WslAdapter
from kustoboot.core.config.settings import DeploymentConfig, parameters_to_args
from kustoboot.core.engine.detector import detect, determine_current_phase
from kustoboot.core.engine.executors import PhaseExecutors, PhaseOutcome
from kustoboot.core.engine.preconditions import check_preconditions
from kustoboot.core.errors import DeploymentError, ErrorKind, PreconditionFailure, error_for
from kustoboot.core.models.phase import Phase
from kustoboot.core.observability.health import SystemHealth, run_final_verification
from kustoboot.core.persistence.audit import AuditEntry, AuditWriter
from kustoboot.core.persistence.checkpoint_store import CheckpointStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1

# Audit entries shown by status
STATUS_EVENTS = 5

REMEDIATION_CHECKLIST = (
    "Re-run from an elevated (Administrator / root) prompt",
    "Check internet connectivity and proxy settings",
    "Use --manual to run without the continuation task and reboot by hand",
    "Inspect the deployment log",
)


@dataclass
class RunSummary:
    """What one invocation did. Kept for the CLI and tests."""

    exit_code: int = EXIT_OK
    phases: list[Phase] = field(default_factory=list)
    outcomes: list[PhaseOutcome] = field(default_factory=list)
    health: SystemHealth | None = None
    reboot_scheduled: bool = False
    rebooting: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "exit_code": self.exit_code,
            "phases": [p.value for p in self.phases],
            "outcomes": [o.to_dict() for o in self.outcomes],
            "health": self.health.to_dict() if self.health else None,
            "reboot_scheduled": self.reboot_scheduled,
            "rebooting": self.rebooting,
        }


class Orchestrator:
    """Drives the deployment ladder for one process lifetime."""

    def __init__(
        self,
        config: DeploymentConfig,
        *,
        host: HostAdapter | None = None,
        wsl: WslAdapter | None = None,
        docker: DockerAdapter | None = None,
        bridge: ContinuationBridge | None = None,
        kusto: KustoServiceAdapter | None = None,
        executors: PhaseExecutors | None = None,
        audit: AuditWriter | None = None,
        store: CheckpointStore | None = None,
        echo: Callable[[str], None] | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        self.host = host or HostAdapter()
        if self.host.is_windows and config.docker_settings_file is None:
            # Carried through the checkpoint and the continuation task
            config = config.model_copy(
                update={"docker_settings_file": str(self.host.docker_settings_path)}
            )
        self.config = config
        self.wsl = wsl or WslAdapter()
        self.docker = docker or DockerAdapter()
        self.bridge = bridge or select_bridge(config, self.host, clock=clock, sleep=sleep)
        self.kusto = kusto or KustoServiceAdapter(config.service_url)
        self.executors = executors or PhaseExecutors(
            config, self.host, self.wsl, self.docker, clock=clock, sleep=sleep
        )
        self.audit = audit or AuditWriter(config.audit_path)
        self.store = store or CheckpointStore(config, self.audit)
        self._echo = echo or (lambda message: logger.info("%s", message))
        self._clock = clock
        self._sleep = sleep or time.sleep
        self.summary = RunSummary()

    # ── Entry points ────────────────────────────────────────────

    def run(self) -> int:
        """Run the deployment (or the download-only mode) to an exit code.

        This is the top-level handler: nothing but KeyboardInterrupt
        escapes it.
        """
        started = time.monotonic()
        try:
            if self.config.download_only:
                code = self._download_only()
            else:
                code = self._drive()
        except PreconditionFailure as e:
            logger.error("Precondition failed: %s", e)
            self._audit("precondition", status="failed", error_kind=e.kind, message=str(e))
            self._echo(f"✗ {e}")
            for hint in e.hints:
                self._echo(f"  → {hint}")
            code = EXIT_FAILURE
        except DeploymentError as e:
            logger.error("Deployment stopped (%s): %s", e.kind.value, e)
            self._echo(f"✗ {e}")
            for hint in e.hints:
                self._echo(f"  → {hint}")
            self._echo(f"Re-run the deployment to resume. Log: {self.config.log_path}")
            code = EXIT_FAILURE
        except Exception as e:
            logger.exception("Unexpected error during deployment: %s", e)
            self._audit("unexpected", status="failed", error_kind=ErrorKind.UNEXPECTED, message=str(e))
            if not self.config.manual:
                self._cleanup_after_crash()
            self._echo(f"✗ Deployment failed unexpectedly: {e}")
            self._echo("Remediation checklist:")
            for item in REMEDIATION_CHECKLIST:
                self._echo(f"  • {item}")
            self._echo(f"  • Log: {self.config.log_path}")
            code = EXIT_FAILURE

        self.summary.exit_code = code
        logger.debug("Run finished with exit code %d in %.1fs", code, time.monotonic() - started)
        return code

    def cleanup(self) -> int:
        """Remove the continuation task and the checkpoint."""
        removed = self.bridge.unregister()
        cleared = self.store.clear()
        self._audit(
            "cleanup",
            status="failed" if removed.failed else "ok",
            message=removed.describe(),
            context={"checkpoint_cleared": cleared},
        )
        if removed.failed:
            logger.error("Could not remove continuation task: %s", removed.describe())
            self._echo(f"✗ Could not remove task '{self.bridge.task_name}': {removed.error}")
            return EXIT_FAILURE

        task_state = "removed" if removed.ok else "not registered"
        self._echo(f"Continuation task '{self.bridge.task_name}': {task_state}")
        self._echo(f"Checkpoint: {'cleared' if cleared else 'none'}")
        return EXIT_OK

    def status(self) -> dict[str, Any]:
        """Detected phase, last checkpoint and continuation task state."""
        report = detect(self.config, self.wsl, self.docker)
        checkpoint = self.store.load()
        task = self.bridge.query()
        return {
            "detected_phase": report.phase.value,
            "checks": report.checks,
            "checkpoint": checkpoint.model_dump(mode="json", by_alias=True) if checkpoint else None,
            "continuation_task": {
                "name": self.bridge.task_name,
                "registered": task.ok,
                "state": task.output if task.ok else None,
            },
            "host": self.host.platform_info(),
            "recent_events": [e.model_dump() for e in self.audit.read_recent(STATUS_EVENTS)],
            "state_dir": str(self.config.state_dir),
        }

    def continuation_command(self) -> list[str]:
        """Argv the continuation task runs after the reboot."""
        return [sys.executable, "-m", "kustoboot.main", "deploy", *self.config.continuation_args()]

    # ── Driver loop ─────────────────────────────────────────────

    def _drive(self) -> int:
        check_preconditions(self.config, self.host)
        logger.info("Host: %s", self.host.platform_info())

        previous = self.store.load()
        if previous is not None:
            logger.info(
                "Last checkpoint: %s at %s (live state decides where to resume)",
                previous.phase.value, previous.timestamp.isoformat(timespec="seconds"),
            )

        last: Phase | None = None
        while True:
            phase = determine_current_phase(self.config, self.wsl, self.docker)
            self.summary.phases.append(phase)
            logger.info("Current phase: %s", phase.value)

            if last is not None and phase.rank <= last.rank:
                raise self._failure(
                    PhaseOutcome.failure(
                        last,
                        f"{last.label} reported success but the host is still at {phase.value}",
                        ErrorKind.INSTALL,
                        hints=["Inspect the deployment log for the commands that ran"],
                    )
                )

            attempt = 1
            if previous is not None and previous.phase == phase:
                attempt = int(previous.data.get("attempt", 0) or 0) + 1
            previous = self.store.save(phase, {"attempt": attempt})

            started = time.monotonic()
            outcome = self.executors.run(phase)
            self.summary.outcomes.append(outcome)
            self._audit(
                "phase",
                phase=phase,
                status="ok" if outcome.ok else "failed",
                error_kind=outcome.error_kind,
                message=outcome.message,
                duration_ms=int((time.monotonic() - started) * 1000),
                context={"reboot_required": outcome.reboot_required, "attempt": attempt},
            )

            if not outcome.ok:
                raise self._failure(outcome)
            if phase is Phase.COMPLETE:
                return self._finish()
            logger.info("✓ %s", outcome.message or phase.label)
            if outcome.reboot_required:
                return self._reboot(phase)
            last = phase

    def _failure(self, outcome: PhaseOutcome) -> DeploymentError:
        for receipt in outcome.receipts:
            if receipt.failed:
                logger.debug("  %s", receipt.describe())
        return error_for(
            outcome.error_kind,
            f"{outcome.phase.label} failed: {outcome.message}",
            hints=outcome.hints,
        )

    # ── Reboot protocol ─────────────────────────────────────────

    def _reboot(self, phase: Phase) -> int:
        self.store.save(Phase.REBOOT_REQUIRED, {"after": phase.value})

        if self.config.manual:
            self._audit("reboot", phase=phase, status="skipped", message="manual mode")
            self._manual_instructions(f"{phase.label} needs a reboot.")
            return EXIT_OK

        registered = self.bridge.register(self.continuation_command())
        if registered.failed:
            logger.error("Continuation task registration failed: %s", registered.describe())
            self._audit(
                "reboot",
                phase=phase,
                status="failed",
                error_kind=registered.error_kind or ErrorKind.SCHEDULING,
                message=registered.error or "",
            )
            self._manual_instructions(
                "Automatic continuation could not be set up, so the machine will NOT reboot."
            )
            return EXIT_FAILURE

        self.summary.reboot_scheduled = True
        self._audit("reboot", phase=phase, status="ok", message="continuation task registered")

        if self.config.skip_reboot:
            self._echo(
                f"{phase.label} needs a reboot. Reboot when ready; the deployment "
                f"resumes automatically at startup (task '{self.bridge.task_name}')."
            )
            return EXIT_OK

        if not self._countdown(self.config.reboot_countdown_seconds):
            self._echo(
                f"Reboot cancelled. Task '{self.bridge.task_name}' stays registered; "
                "the deployment resumes at the next startup."
            )
            self._audit("reboot", phase=phase, status="skipped", message="countdown cancelled")
            return EXIT_OK

        rebooted = self.host.reboot()
        if rebooted.failed:
            logger.error("Reboot command failed: %s", rebooted.describe())
            self._echo(
                "✗ Could not restart the machine. Reboot manually; "
                "the deployment resumes automatically at startup."
            )
            return EXIT_FAILURE

        self.summary.rebooting = True
        self._echo("Restarting now.")
        return EXIT_OK

    def _countdown(self, seconds: int) -> bool:
        """Count down to the reboot. False if the operator pressed Ctrl+C."""
        try:
            for remaining in range(seconds, 0, -1):
                if remaining == seconds or remaining <= 5 or remaining % 10 == 0:
                    self._echo(f"Rebooting in {remaining}s (Ctrl+C to cancel)...")
                self._sleep(1)
        except KeyboardInterrupt:
            return False
        return True

    def _manual_instructions(self, reason: str) -> None:
        args = ["kustoboot", "deploy", *parameters_to_args(self.config.invocation_parameters())]
        if self.host.is_windows:
            command = subprocess.list2cmdline(args)
        else:
            command = shlex.join(args)
        self._echo(reason)
        self._echo("To continue:")
        self._echo("  1. Reboot the machine")
        self._echo(f"  2. From an elevated prompt, run:  {command}")

    # ── Completion ──────────────────────────────────────────────

    def _finish(self) -> int:
        self.store.save(Phase.FINAL_VERIFICATION)
        health = run_final_verification(
            self.config, self.host, self.kusto, clock=self._clock, sleep=self._sleep
        )
        self.summary.health = health
        for warning in health.warnings:
            self._audit(
                "verification",
                phase=Phase.FINAL_VERIFICATION,
                status="warning",
                error_kind=ErrorKind.VERIFICATION,
                message=f"{warning.name}: {warning.message}",
            )

        if self.config.manual:
            logger.info("Manual mode: checkpoint left at %s", self.store.path)
        else:
            removed = self.bridge.unregister()
            if removed.failed:
                logger.warning("Could not remove continuation task: %s", removed.describe())
            self.store.clear()

        self._audit("complete", phase=Phase.COMPLETE, status="ok", message=health.status)
        self._echo(f"✓ Kusto emulator is deployed at {self.config.service_url}")
        if health.warnings:
            self._echo(f"  ({len(health.warnings)} verification warning(s), see the log)")
        return EXIT_OK

    # ── Download-only mode ──────────────────────────────────────

    def _download_only(self) -> int:
        result = self.executors.fetch_installer()
        destination = self.executors.installer_destination()
        self._audit(
            "download",
            status="ok" if result.success else "failed",
            error_kind=None if result.success else ErrorKind.DOWNLOAD,
            message=result.error or str(destination),
            context=result.to_dict(),
        )
        if not result.success:
            self._echo(f"✗ Download failed: {result.error}")
            return EXIT_FAILURE
        self._echo(f"Installer ready at {destination} ({result.file_size} bytes, {result.strategy})")
        return EXIT_OK

    # ── Helpers ─────────────────────────────────────────────────

    def _cleanup_after_crash(self) -> None:
        try:
            removed = self.bridge.unregister()
            if removed.failed:
                logger.warning("Cleanup: %s", removed.describe())
            self.store.clear()
        except Exception as e:
            logger.warning("Cleanup after failure was incomplete: %s", e)

    def _audit(
        self,
        event: str,
        *,
        phase: Phase | None = None,
        status: str = "",
        error_kind: ErrorKind | None = None,
        message: str = "",
        duration_ms: int = 0,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.audit.write(
            AuditEntry(
                event=event,
                phase=phase.value if phase else "",
                status=status,
                error_kind=error_kind.value if error_kind else "",
                message=message,
                duration_ms=duration_ms,
                context=context or {},
            )
        )
