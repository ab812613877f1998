"""
Phase action executors — one action per ladder phase.

Each executor performs the side effects that move the host past its
phase and reports a PhaseOutcome. Executors never raise for collaborator
failures; the failed Receipt's kind flows into the outcome and the
orchestrator decides what is fatal.

    WSL2_INSTALL    enable features, install/update WSL        → reboot
    DOCKER_INSTALL  bypass, download + run installer, bypass    → reboot
    DOCKER_WAIT     bypass, start daemon, wait for docker info
    KUSTO_DEPLOY    replace container, wait for running
    KUSTO_START     docker start, wait for running
    COMPLETE        nothing
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from kustoboot.adapters.containers.docker import DockerAdapter
from kustoboot.adapters.host.system import HostAdapter
from kustoboot.adapters.virtualization.wsl import REQUIRED_FEATURES, WslAdapter
from kustoboot.core.config.settings import DeploymentConfig
from kustoboot.core.errors import ErrorKind
from kustoboot.core.models.action import Receipt
from kustoboot.core.models.download import DownloadResult
from kustoboot.core.models.phase import Phase
from kustoboot.core.reliability.waiter import wait_until
from kustoboot.core.services.bypass import apply_profile_bypass
from kustoboot.core.services.download import DownloadManager, default_strategies

logger = logging.getLogger(__name__)

CONTAINER_DATA_DIR = "/kustodata"
CONTAINER_PORT = "8080"


@dataclass
class PhaseOutcome:
    """What a phase action achieved."""

    phase: Phase
    ok: bool = True
    reboot_required: bool = False
    error_kind: ErrorKind | None = None
    message: str = ""
    hints: list[str] = field(default_factory=list)
    receipts: list[Receipt] = field(default_factory=list)

    @classmethod
    def failure(
        cls,
        phase: Phase,
        message: str,
        error_kind: ErrorKind,
        hints: list[str] | None = None,
        receipts: list[Receipt] | None = None,
    ) -> PhaseOutcome:
        return cls(
            phase=phase,
            ok=False,
            error_kind=error_kind,
            message=message,
            hints=list(hints or []),
            receipts=list(receipts or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "ok": self.ok,
            "reboot_required": self.reboot_required,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "message": self.message,
            "hints": list(self.hints),
        }


class PhaseExecutors:
    """Dispatch table from ladder phase to its action."""

    def __init__(
        self,
        config: DeploymentConfig,
        host: HostAdapter,
        wsl: WslAdapter,
        docker: DockerAdapter,
        downloader: DownloadManager | None = None,
        *,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        self._config = config
        self._host = host
        self._wsl = wsl
        self._docker = docker
        self._downloader = downloader or DownloadManager(
            default_strategies(config, windows=host.is_windows)
        )
        self._wait_kwargs: dict[str, Any] = {}
        if clock is not None:
            self._wait_kwargs["clock"] = clock
        if sleep is not None:
            self._wait_kwargs["sleep"] = sleep

        self._actions: dict[Phase, Callable[[], PhaseOutcome]] = {
            Phase.WSL2_INSTALL: self.install_wsl,
            Phase.DOCKER_INSTALL: self.install_runtime,
            Phase.DOCKER_WAIT: self.wait_for_daemon,
            Phase.KUSTO_DEPLOY: self.deploy_container,
            Phase.KUSTO_START: self.start_container,
            Phase.COMPLETE: self.complete,
        }

    def run(self, phase: Phase) -> PhaseOutcome:
        """Execute the action for ``phase``.

        Raises:
            ValueError: For bookkeeping phases, which have no action.
        """
        action = self._actions.get(phase)
        if action is None:
            raise ValueError(f"No action for phase {phase.value}")
        logger.info("▶ %s", phase.label)
        return action()

    # ── WSL2_INSTALL ────────────────────────────────────────────

    def install_wsl(self) -> PhaseOutcome:
        phase = Phase.WSL2_INSTALL
        receipts: list[Receipt] = []
        state = self._wsl.probe()

        if state.installed and state.needs_update:
            logger.info("WSL is installed but outdated (%s), updating", state.detail)
            updated = self._wsl.update()
            receipts.append(updated)
            if updated.failed:
                return PhaseOutcome.failure(
                    phase,
                    f"WSL update failed: {updated.describe()}",
                    ErrorKind.INSTALL,
                    hints=["Run 'wsl --update' manually and check Windows Update"],
                    receipts=receipts,
                )
        else:
            for feature in REQUIRED_FEATURES:
                logger.info("Enabling Windows feature %s", feature)
                enabled = self._wsl.enable_feature(feature)
                receipts.append(enabled)
                if enabled.failed:
                    return PhaseOutcome.failure(
                        phase,
                        f"Could not enable {feature}: {enabled.describe()}",
                        ErrorKind.INSTALL,
                        hints=[
                            "Check that virtualization is enabled in the BIOS/UEFI",
                            f"dism.exe /online /get-featureinfo /featurename:{feature}",
                        ],
                        receipts=receipts,
                    )

            logger.info("Installing WSL")
            installed = self._wsl.install()
            receipts.append(installed)
            if installed.failed:
                return PhaseOutcome.failure(
                    phase,
                    f"WSL install failed: {installed.describe()}",
                    ErrorKind.INSTALL,
                    hints=["Run 'wsl --install --no-distribution' manually to see the error"],
                    receipts=receipts,
                )

        default = self._wsl.set_default_version(2)
        receipts.append(default)
        if default.failed:
            # Often fails until after the reboot; WSL2 is the default on current builds.
            logger.debug("wsl --set-default-version 2: %s", default.describe())

        return PhaseOutcome(
            phase=phase,
            reboot_required=True,
            message="WSL installed; a reboot is required to finish enabling it",
            receipts=receipts,
        )

    # ── DOCKER_INSTALL ──────────────────────────────────────────

    def installer_destination(self) -> Path:
        name = "DockerDesktopInstaller.exe" if self._host.is_windows else "get-docker.sh"
        return self._config.downloads_dir / name

    def fetch_installer(self) -> DownloadResult:
        """Download the runtime installer (cached copies are reused)."""
        if self._host.is_windows:
            url = self._config.docker_installer_url
            minimum = self._config.docker_installer_min_bytes
        else:
            url = self._config.linux_installer_url
            minimum = self._config.linux_installer_min_bytes
        return self._downloader.fetch(url, self.installer_destination(), minimum)

    def install_runtime(self) -> PhaseOutcome:
        phase = Phase.DOCKER_INSTALL
        receipts: list[Receipt] = []

        receipts.append(self._apply_bypass("pre-install"))

        result = self.fetch_installer()
        if not result.success:
            return PhaseOutcome.failure(
                phase,
                f"Could not download the container runtime installer: {result.error}",
                ErrorKind.DOWNLOAD,
                hints=[
                    "Check internet connectivity and any proxy settings",
                    f"Download it manually to {self.installer_destination()} and re-run",
                ],
                receipts=receipts,
            )

        logger.info("Running container runtime installer (this can take several minutes)")
        installed = self._host.run_installer(self.installer_destination())
        receipts.append(installed)
        if installed.failed:
            return PhaseOutcome.failure(
                phase,
                f"Container runtime installer failed: {installed.describe()}",
                ErrorKind.INSTALL,
                hints=[
                    f"Run {self.installer_destination()} interactively to see the error",
                    "Delete the cached installer if it may be corrupt",
                ],
                receipts=receipts,
            )

        receipts.append(self._apply_bypass("post-install"))

        return PhaseOutcome(
            phase=phase,
            # get-docker.sh starts the daemon itself; Docker Desktop needs a fresh logon
            reboot_required=self._host.is_windows,
            message=f"Container runtime installed ({result.strategy})",
            receipts=receipts,
        )

    # ── DOCKER_WAIT ─────────────────────────────────────────────

    def wait_for_daemon(self) -> PhaseOutcome:
        phase = Phase.DOCKER_WAIT
        receipts: list[Receipt] = [self._apply_bypass("daemon start")]

        started = self._host.start_runtime_daemon()
        receipts.append(started)
        if started.failed:
            logger.warning("Could not start the runtime daemon: %s", started.describe())

        ready = wait_until(
            lambda: self._docker.info().ok,
            self._config.daemon_wait_seconds,
            self._config.daemon_poll_seconds,
            description="container runtime daemon",
            **self._wait_kwargs,
        )
        if not ready:
            minutes = int(self._config.daemon_wait_seconds // 60)
            return PhaseOutcome.failure(
                phase,
                f"Container runtime daemon not reachable after {minutes} minutes",
                ErrorKind.READINESS_TIMEOUT,
                hints=[
                    "Open Docker Desktop and finish any prompt it shows"
                    if self._host.is_windows
                    else "systemctl status docker",
                    "Check 'docker info' from an elevated prompt",
                    "Confirm WSL works: 'wsl --status'"
                    if self._host.is_windows
                    else "journalctl -u docker --no-pager | tail -50",
                    "Re-run the deployment once the daemon is up; it resumes from here",
                ],
                receipts=receipts,
            )

        return PhaseOutcome(phase=phase, message="Container runtime daemon is reachable", receipts=receipts)

    # ── KUSTO_DEPLOY / KUSTO_START ──────────────────────────────

    def _volume_source(self) -> str:
        if not self._config.data_path:
            return self._config.volume_name
        path = Path(self._config.data_path)
        path.mkdir(parents=True, exist_ok=True)
        return str(path.resolve())

    def deploy_container(self) -> PhaseOutcome:
        phase = Phase.KUSTO_DEPLOY
        name = self._config.container_name
        receipts: list[Receipt] = []

        if self._docker.container_exists(name):
            logger.info("Removing stale container '%s'", name)
            receipts.append(self._docker.stop(name))
            removed = self._docker.remove(name)
            receipts.append(removed)
            if removed.failed:
                return PhaseOutcome.failure(
                    phase,
                    f"Could not remove stale container '{name}': {removed.describe()}",
                    ErrorKind.INSTALL,
                    hints=[f"docker rm -f {name}"],
                    receipts=receipts,
                )

        logger.info("Pulling %s", self._config.image)
        pulled = self._docker.pull(self._config.image)
        receipts.append(pulled)
        if pulled.failed:
            return PhaseOutcome.failure(
                phase,
                f"Could not pull {self._config.image}: {pulled.describe()}",
                ErrorKind.INSTALL,
                hints=[
                    "Check internet connectivity from the container runtime",
                    "Docker Desktop must be in Linux containers mode",
                ],
                receipts=receipts,
            )

        try:
            volume = self._volume_source()
        except OSError as e:
            return PhaseOutcome.failure(
                phase,
                f"Cannot create data path {self._config.data_path}: {e}",
                ErrorKind.INSTALL,
                receipts=receipts,
            )

        logger.info("Starting container '%s' on port %s", name, self._config.listen_port)
        created = self._docker.run_container(
            name,
            self._config.image,
            ports={self._config.listen_port: CONTAINER_PORT},
            volumes={volume: CONTAINER_DATA_DIR},
            env={"ACCEPT_EULA": "Y"},
            memory=self._config.container_memory,
        )
        receipts.append(created)
        if created.failed:
            return PhaseOutcome.failure(
                phase,
                f"Could not start container '{name}': {created.describe()}",
                ErrorKind.INSTALL,
                hints=[f"Check nothing else listens on port {self._config.listen_port}"],
                receipts=receipts,
            )

        return self._await_running(phase, receipts)

    def start_container(self) -> PhaseOutcome:
        phase = Phase.KUSTO_START
        name = self._config.container_name
        started = self._docker.start(name)
        if started.failed:
            return PhaseOutcome.failure(
                phase,
                f"Could not start container '{name}': {started.describe()}",
                started.error_kind or ErrorKind.COMMAND,
                hints=[f"docker logs {name}", f"docker rm -f {name}  (then re-run to redeploy)"],
                receipts=[started],
            )
        return self._await_running(phase, [started])

    def _await_running(self, phase: Phase, receipts: list[Receipt]) -> PhaseOutcome:
        name = self._config.container_name
        running = wait_until(
            lambda: self._docker.container_running(name),
            self._config.container_wait_seconds,
            self._config.container_poll_seconds,
            description=f"container '{name}'",
            **self._wait_kwargs,
        )
        if not running:
            tail = self._docker.logs(name, tail=30)
            if tail.ok and tail.output:
                logger.debug("Last container log lines:\n%s", tail.output)
            return PhaseOutcome.failure(
                phase,
                f"Container '{name}' did not reach the running state",
                ErrorKind.READINESS_TIMEOUT,
                hints=[f"docker logs {name}", f"docker inspect {name}"],
                receipts=receipts,
            )
        return PhaseOutcome(phase=phase, message=f"Container '{name}' is running", receipts=receipts)

    # ── COMPLETE ────────────────────────────────────────────────

    def complete(self) -> PhaseOutcome:
        return PhaseOutcome(phase=Phase.COMPLETE, message="Nothing to do")

    # ── Helpers ─────────────────────────────────────────────────

    def _apply_bypass(self, stage: str) -> Receipt:
        if not self._host.is_windows:
            return Receipt.skip("bypass", "apply", "not applicable on this host")
        settings = self._config.docker_settings(self._host.docker_settings_path)
        receipt = apply_profile_bypass(settings)
        if receipt.failed:
            logger.warning("Profile bypass (%s) failed: %s", stage, receipt.describe())
        return receipt
