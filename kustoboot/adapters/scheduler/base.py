"""
Continuation bridge base — register, verify, and remove the boot task.

The registration protocol is the same on every platform:

    1. remove any existing task of the fixed name (no duplicates)
    2. create the new at-startup task
    3. read it back until it reports a runnable state, within a short bound

A registration that cannot be read back is a failure. Callers must fall
back to manual-reboot instructions rather than reboot into a dead end.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from collections.abc import Callable, Sequence
from typing import Any

from kustoboot.adapters.base import Adapter, Runner
from kustoboot.core.config.settings import DeploymentConfig
from kustoboot.core.models.action import ErrorKind, Receipt
from kustoboot.core.models.continuation import ContinuationTask
from kustoboot.core.reliability.waiter import wait_until

logger = logging.getLogger(__name__)


class ContinuationBridge(Adapter):
    """Platform scheduler binding for the continuation task."""

    def __init__(
        self,
        config: DeploymentConfig,
        runner: Runner | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        super().__init__(runner)
        self._config = config
        self._wait_kwargs: dict[str, Any] = {}
        if clock is not None:
            self._wait_kwargs["clock"] = clock
        if sleep is not None:
            self._wait_kwargs["sleep"] = sleep

    @property
    def task_name(self) -> str:
        return self._config.task_name

    # ── Platform hooks ──────────────────────────────────────────

    @abstractmethod
    def _create(self, task: ContinuationTask) -> Receipt:
        """Create the task. Assumes no task of that name exists."""

    @abstractmethod
    def _delete(self) -> Receipt:
        """Delete the task. Assumes it exists."""

    @abstractmethod
    def query(self) -> Receipt:
        """Read the task back.

        Fails when the task does not exist; on success the output is the
        scheduler's state string for the task.
        """

    @abstractmethod
    def _is_runnable(self, state: str) -> bool:
        """Whether a queried state means the task will fire at boot."""

    # ── Protocol ────────────────────────────────────────────────

    def build_task(self, command: Sequence[str]) -> ContinuationTask:
        return ContinuationTask(
            name=self.task_name,
            command=list(command),
            execution_time_limit_hours=self._config.task_time_limit_hours,
        )

    def is_registered(self) -> bool:
        return self.query().ok

    def register(self, command: Sequence[str]) -> Receipt:
        """Replace any existing task and verify the new one.

        Args:
            command: Full argv of the resumed orchestrator, including the
                reboot-skip flag.

        Returns:
            Success receipt once the task reads back as runnable, or a
            failure receipt with ``ErrorKind.SCHEDULING``.
        """
        removed = self.unregister()
        if removed.failed:
            return removed.as_kind(ErrorKind.SCHEDULING)

        task = self.build_task(command)
        logger.info("Registering continuation task '%s'", task.name)
        created = self._create(task)
        if created.failed:
            logger.error("Could not create continuation task: %s", created.describe())
            return created.as_kind(ErrorKind.SCHEDULING)

        verified = wait_until(
            self._verify_once,
            self._config.task_verify_seconds,
            self._config.task_verify_poll_seconds,
            description=f"continuation task '{task.name}'",
            **self._wait_kwargs,
        )
        if not verified:
            return Receipt.failure(
                adapter=self.name,
                operation="register",
                error=f"Continuation task '{task.name}' was created but could not be verified",
                error_kind=ErrorKind.SCHEDULING,
            )

        logger.info("Continuation task '%s' registered and verified", task.name)
        return Receipt.success(
            adapter=self.name,
            operation="register",
            output=task.name,
            metadata={"command": task.command},
        )

    def unregister(self) -> Receipt:
        """Remove the task. Absent task is a no-op (skip receipt)."""
        if not self.query().ok:
            return Receipt.skip(self.name, "unregister", f"'{self.task_name}' not registered")
        deleted = self._delete()
        if deleted.ok:
            logger.info("Continuation task '%s' removed", self.task_name)
        return deleted

    def _verify_once(self) -> bool:
        state = self.query()
        return state.ok and self._is_runnable(state.output)
