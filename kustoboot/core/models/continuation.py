"""
ContinuationTask — the boot-time re-invocation of the orchestrator.

Exists only while a reboot-pending deployment is outstanding.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ContinuationTask:
    """An at-startup task that runs ``command`` with full privileges."""

    name: str
    command: list[str] = field(default_factory=list)
    trigger: str = "startup"
    principal: str = "SYSTEM"
    execution_time_limit_hours: int = 2

    @property
    def iso_time_limit(self) -> str:
        """ISO-8601 duration for the Windows task definition."""
        return f"PT{self.execution_time_limit_hours}H"
