"""
Download job and result records.

A ``DownloadJob`` lives only for the duration of one fetch; outside the
download manager only the ``DownloadResult`` is visible.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class DownloadJob:
    """In-flight state of one fetch."""

    source_url: str
    destination: Path
    strategies_attempted: list[str] = field(default_factory=list)
    bytes_transferred: int = 0
    bytes_total: int = 0
    start_time: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        return max(time.monotonic() - self.start_time, 0.0)


@dataclass
class DownloadResult:
    """Terminal outcome of a fetch."""

    success: bool
    bytes: int = 0                    # transferred by this fetch
    file_size: int = 0
    average_throughput: float = 0.0   # bytes per second
    strategy: str = ""
    error: str = ""

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "bytes": self.bytes,
            "file_size": self.file_size,
            "average_throughput": self.average_throughput,
            "strategy": self.strategy,
            "error": self.error,
        }
