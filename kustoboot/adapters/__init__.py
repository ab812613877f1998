"""Adapters — bindings for the host tools the deployment drives.

Public re-exports for convenient access.
"""

from kustoboot.adapters.base import Adapter, Runner
from kustoboot.adapters.shell.command import run_command, spawn_detached

__all__ = [
    "Adapter",
    "Runner",
    "run_command",
    "spawn_detached",
]
