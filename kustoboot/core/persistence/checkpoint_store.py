"""
Checkpoint store — atomic read/write of the single progress record.

The checkpoint lives at a well-known path under the state directory.
Writes are atomic (write to temp file, then replace) so a reboot or a
crash mid-write never leaves a half-written record behind. There is no
locking: one orchestrator instance at a time is the supported mode.
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from kustoboot.core.config.settings import DeploymentConfig
from kustoboot.core.errors import ConfigFormatError
from kustoboot.core.models.checkpoint import Checkpoint
from kustoboot.core.models.phase import Phase
from kustoboot.core.persistence.audit import AuditEntry, AuditWriter

logger = logging.getLogger(__name__)


def _script_path() -> str:
    argv0 = sys.argv[0] if sys.argv and sys.argv[0] else "kustoboot"
    try:
        return str(Path(argv0).resolve())
    except OSError:
        return argv0


class CheckpointStore:
    """Save, load, and clear the deployment checkpoint."""

    def __init__(self, config: DeploymentConfig, audit: AuditWriter | None = None):
        self._config = config
        self._path = config.checkpoint_path
        self._audit = audit

    @property
    def path(self) -> Path:
        return self._path

    def save(self, phase: Phase, data: Mapping[str, Any] | None = None) -> Checkpoint:
        """Overwrite the checkpoint with ``phase`` and diagnostic ``data``.

        The current invocation parameters are recorded alongside so the
        run can be reproduced after a reboot.
        """
        checkpoint = Checkpoint(
            phase=phase,
            data=dict(data or {}),
            script_path=_script_path(),
            parameters=self._config.invocation_parameters(),
        )
        content = checkpoint.to_json()

        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".checkpoint_", suffix=".tmp")
        tmp = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            tmp.replace(self._path)
        except Exception:
            tmp.unlink(missing_ok=True)
            logger.error("Failed to save checkpoint to %s", self._path)
            raise

        logger.debug("Checkpoint saved: %s -> %s", phase.value, self._path)
        if self._audit is not None:
            self._audit.write(
                AuditEntry(event="checkpoint", phase=phase.value, context=dict(checkpoint.data))
            )
        return checkpoint

    def load(self) -> Checkpoint | None:
        """Read the checkpoint.

        Returns:
            The parsed checkpoint, or None if absent. A corrupt or
            schema-invalid file is logged as a warning and treated as
            absent.
        """
        if not self._path.is_file():
            logger.debug("No checkpoint at %s", self._path)
            return None

        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("Cannot read checkpoint %s: %s — ignoring it", self._path, e)
            return None

        try:
            checkpoint = Checkpoint.from_json(raw)
        except ConfigFormatError as e:
            logger.warning("Corrupt checkpoint %s: %s — ignoring it", self._path, e)
            return None

        logger.debug("Loaded checkpoint %s (%s)", checkpoint.phase.value, checkpoint.timestamp)
        return checkpoint

    def clear(self) -> bool:
        """Delete the checkpoint. Idempotent.

        Returns:
            True if a file was removed.
        """
        if not self._path.exists():
            return False
        self._path.unlink(missing_ok=True)
        logger.debug("Checkpoint cleared: %s", self._path)
        if self._audit is not None:
            self._audit.write(AuditEntry(event="checkpoint_cleared"))
        return True
