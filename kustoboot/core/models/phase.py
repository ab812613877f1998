"""
Phase — the deployment ladder.

Ladder phases are produced by the phase detector from live state, in
prerequisite order. ``REBOOT_REQUIRED`` and ``FINAL_VERIFICATION`` are
bookkeeping states the orchestrator writes to the checkpoint; the
detector never returns them.
"""

from __future__ import annotations

from enum import Enum


class Phase(str, Enum):
    WSL2_INSTALL = "WSL2_INSTALL"
    DOCKER_INSTALL = "DOCKER_INSTALL"
    DOCKER_WAIT = "DOCKER_WAIT"
    KUSTO_DEPLOY = "KUSTO_DEPLOY"
    KUSTO_START = "KUSTO_START"
    COMPLETE = "COMPLETE"
    REBOOT_REQUIRED = "REBOOT_REQUIRED"
    FINAL_VERIFICATION = "FINAL_VERIFICATION"

    @property
    def is_ladder(self) -> bool:
        """Whether the detector can produce this phase."""
        return self in LADDER

    @property
    def rank(self) -> int:
        """Position in the prerequisite ladder.

        Raises:
            ValueError: For bookkeeping phases, which have no rank.
        """
        if self not in LADDER:
            raise ValueError(f"{self.value} is not a ladder phase")
        return LADDER.index(self)

    @property
    def label(self) -> str:
        return _LABELS[self]


LADDER: tuple[Phase, ...] = (
    Phase.WSL2_INSTALL,
    Phase.DOCKER_INSTALL,
    Phase.DOCKER_WAIT,
    Phase.KUSTO_DEPLOY,
    Phase.KUSTO_START,
    Phase.COMPLETE,
)

_LABELS: dict[Phase, str] = {
    Phase.WSL2_INSTALL: "Install WSL2",
    Phase.DOCKER_INSTALL: "Install container runtime",
    Phase.DOCKER_WAIT: "Wait for container runtime daemon",
    Phase.KUSTO_DEPLOY: "Deploy Kusto emulator container",
    Phase.KUSTO_START: "Start Kusto emulator container",
    Phase.COMPLETE: "Deployment complete",
    Phase.REBOOT_REQUIRED: "Reboot required",
    Phase.FINAL_VERIFICATION: "Final verification",
}
