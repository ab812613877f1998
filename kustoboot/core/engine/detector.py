"""
Phase detector — derive the current phase from live state.

The checkpoint is advisory; this is authoritative. Every call samples
the host afresh and walks the prerequisite ladder, returning the first
phase whose check fails. Probes that raise count as failed checks, so
detection itself never raises.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from kustoboot.adapters.containers.docker import DockerAdapter
from kustoboot.adapters.virtualization.wsl import WslAdapter
from kustoboot.core.config.settings import DeploymentConfig
from kustoboot.core.models.phase import Phase

logger = logging.getLogger(__name__)


@dataclass
class DetectionReport:
    """The detected phase plus the result of each ladder check."""

    phase: Phase
    checks: dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"phase": self.phase.value, "checks": dict(self.checks)}


def _probe(name: str, check: Callable[[], bool]) -> bool:
    try:
        return bool(check())
    except Exception as e:
        logger.debug("Probe '%s' raised %s: %s — treating as not met", name, type(e).__name__, e)
        return False


def detect(config: DeploymentConfig, wsl: WslAdapter, docker: DockerAdapter) -> DetectionReport:
    """Walk the ladder, recording each check until the first unmet one."""
    ladder: list[tuple[str, Phase, Callable[[], bool]]] = []
    if not config.skip_virtualization_install:
        ladder.append(("wsl_ready", Phase.WSL2_INSTALL, lambda: wsl.probe().ready))
    ladder += [
        ("runtime_installed", Phase.DOCKER_INSTALL, lambda: docker.version().ok),
        ("daemon_reachable", Phase.DOCKER_WAIT, lambda: docker.info().ok),
        (
            "container_exists",
            Phase.KUSTO_DEPLOY,
            lambda: docker.container_exists(config.container_name),
        ),
        (
            "container_running",
            Phase.KUSTO_START,
            lambda: docker.container_running(config.container_name),
        ),
    ]

    checks: dict[str, bool] = {}
    for name, phase, check in ladder:
        met = _probe(name, check)
        checks[name] = met
        if not met:
            logger.debug("Detected phase %s (%s not met)", phase.value, name)
            return DetectionReport(phase=phase, checks=checks)

    logger.debug("Detected phase COMPLETE")
    return DetectionReport(phase=Phase.COMPLETE, checks=checks)


def determine_current_phase(
    config: DeploymentConfig, wsl: WslAdapter, docker: DockerAdapter
) -> Phase:
    """The earliest ladder phase whose prerequisite is not met in live state."""
    return detect(config, wsl, docker).phase
