"""Continuation bridges — boot-time re-invocation of the orchestrator."""

from __future__ import annotations

from collections.abc import Callable

from kustoboot.adapters.base import Runner
from kustoboot.adapters.host.system import HostAdapter
from kustoboot.adapters.scheduler.base import ContinuationBridge
from kustoboot.adapters.scheduler.systemd import SystemdUnitBridge
from kustoboot.adapters.scheduler.windows import WindowsTaskBridge
from kustoboot.core.config.settings import DeploymentConfig


def select_bridge(
    config: DeploymentConfig,
    host: HostAdapter,
    runner: Runner | None = None,
    clock: Callable[[], float] | None = None,
    sleep: Callable[[float], None] | None = None,
) -> ContinuationBridge:
    """Task Scheduler on Windows, systemd everywhere else."""
    bridge_cls = WindowsTaskBridge if host.is_windows else SystemdUnitBridge
    return bridge_cls(config, runner=runner, clock=clock, sleep=sleep)


__all__ = [
    "ContinuationBridge",
    "SystemdUnitBridge",
    "WindowsTaskBridge",
    "select_bridge",
]
