"""
Receipt model — the collaborator result contract.

Every call into an external tool (wsl, dism, docker, schtasks, systemctl,
the service HTTP endpoint) comes back as a Receipt. Adapters never raise:
failures are captured here together with an ``ErrorKind`` so the
orchestrator can branch on the kind of failure instead of parsing
exception messages.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from kustoboot.core.errors import ErrorKind


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Receipt(BaseModel):
    """Result of a single collaborator call.

    ``output`` carries stdout (or the response body for HTTP calls),
    ``error`` a short human-readable failure description.
    """

    adapter: str
    operation: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    error_kind: ErrorKind | None = None
    return_code: int | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the call succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the call failed."""
        return self.status == "failed"

    @classmethod
    def success(
        cls,
        adapter: str,
        operation: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(
            adapter=adapter,
            operation=operation,
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        adapter: str,
        operation: str,
        error: str,
        error_kind: ErrorKind = ErrorKind.COMMAND,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            adapter=adapter,
            operation=operation,
            status="failed",
            error=error,
            error_kind=error_kind,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        adapter: str,
        operation: str,
        reason: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(
            adapter=adapter,
            operation=operation,
            status="skipped",
            output=reason,
            **kwargs,
        )

    def as_kind(self, kind: ErrorKind) -> Receipt:
        """Return a copy of a failed receipt reclassified as ``kind``."""
        if not self.failed:
            return self
        return self.model_copy(update={"error_kind": kind})

    def describe(self) -> str:
        """One-line summary for logs and error output."""
        if self.ok:
            return f"{self.adapter}.{self.operation}: ok"
        if self.status == "skipped":
            return f"{self.adapter}.{self.operation}: skipped ({self.output})"
        detail = self.error or "failed"
        if self.return_code is not None:
            detail = f"{detail} (exit {self.return_code})"
        return f"{self.adapter}.{self.operation}: {detail}"
