"""
Audit ledger — append-only deployment history.

Every checkpoint write, phase outcome, reboot decision and cleanup
appends one JSON line to an NDJSON file next to the checkpoint. Unlike
the checkpoint, which is overwritten, the ledger keeps the whole story
across reboots. Entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class AuditEntry(BaseModel):
    """A single audit log entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    pid: int = Field(default_factory=os.getpid)

    # What happened
    event: str = ""                 # checkpoint, phase, reboot, cleanup, verification...
    phase: str = ""

    # Results
    status: str = ""                # ok, failed, skipped, warning
    error_kind: str = ""
    message: str = ""
    duration_ms: int = 0

    # Extensible context
    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Append-only audit ledger writer.

    Each call to write() appends a single JSON line to the ledger file.
    The file is created if it doesn't exist. Write failures are logged
    and never interrupt the deployment.
    """

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append an audit entry to the ledger."""
        data = entry.model_dump(mode="json")
        line = json.dumps(data, ensure_ascii=False, default=str) + "\n"

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Audit entry written: %s/%s", entry.event, entry.phase)
        except OSError as e:
            logger.error("Failed to write audit entry: %s", e)

    def read_all(self) -> list[AuditEntry]:
        """Read all entries from the ledger, oldest first."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(AuditEntry.model_validate(json.loads(line)))
                    except ValueError as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        """Read the most recent N entries."""
        return self.read_all()[-n:]
