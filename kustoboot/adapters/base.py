"""
Adapter base — the contract between the deployment engine and host tools.

The engine only talks to external tools through adapters. Adapters
perform the side effect (or the read-only probe) and return a Receipt.
They NEVER raise: failures are captured in the Receipt.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import Any

from kustoboot.adapters.shell.command import run_command
from kustoboot.core.models.action import Receipt

Runner = Callable[..., Receipt]


class Adapter(ABC):
    """Abstract base class for all adapters.

    Subclasses build command lines and interpret output; execution goes
    through ``self._run`` so tests can substitute the runner.
    """

    def __init__(self, runner: Runner | None = None):
        self._runner: Runner = runner or run_command

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'wsl', 'docker', 'schtasks')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the underlying tool is installed.

        Should be fast and never raise.
        """

    def _run(self, operation: str, cmd: Sequence[str], **kwargs: Any) -> Receipt:
        """Run ``cmd`` through the configured runner, tagged with this adapter."""
        return self._runner(cmd, adapter=self.name, operation=operation, **kwargs)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
