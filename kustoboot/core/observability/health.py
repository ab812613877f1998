"""
Final verification — health of the finished deployment.

Runs once the ladder reaches COMPLETE: probes the service endpoint with a
bounded wait, optionally seeds a sample table, and checks that the
runtime profile bypass is still in place. Every check reports a
ComponentHealth; failures are warnings, never fatal.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from kustoboot.adapters.host.system import HostAdapter
from kustoboot.adapters.service.kusto import KustoServiceAdapter
from kustoboot.core.config.settings import DeploymentConfig
from kustoboot.core.errors import VerificationWarning
from kustoboot.core.reliability.waiter import wait_until
from kustoboot.core.services.bypass import missing_bypass_keys

logger = logging.getLogger(__name__)

SAMPLE_TABLE = "SampleEvents"

_SAMPLE_ROWS = [
    ("2024-01-01T00:00:00Z", "installer", "Info", "WSL2 enabled"),
    ("2024-01-01T00:05:00Z", "installer", "Info", "Container runtime installed"),
    ("2024-01-01T00:20:00Z", "runtime", "Warning", "Daemon slow to start"),
    ("2024-01-01T00:25:00Z", "emulator", "Info", "Kusto emulator container started"),
    ("2024-01-01T00:26:00Z", "emulator", "Info", "Health probe succeeded"),
]


@dataclass
class ComponentHealth:
    """Health of a single component."""

    name: str
    status: str = "unknown"  # healthy, degraded, unhealthy, skipped, unknown
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.status in ("healthy", "skipped")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class SystemHealth:
    """Aggregate result of the final verification."""

    status: str = "healthy"
    timestamp: str = ""
    components: list[ComponentHealth] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(UTC).isoformat()

    def add(self, component: ComponentHealth) -> None:
        self.components.append(component)
        self._recalculate()

    def _recalculate(self) -> None:
        """Recalculate overall status from components."""
        statuses = [c.status for c in self.components]
        if any(s == "unhealthy" for s in statuses):
            self.status = "unhealthy"
        elif any(s == "degraded" for s in statuses):
            self.status = "degraded"
        elif all(s in ("healthy", "skipped") for s in statuses):
            self.status = "healthy"
        else:
            self.status = "unknown"

    @property
    def warnings(self) -> list[ComponentHealth]:
        return [c for c in self.components if not c.healthy]

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "components": [c.to_dict() for c in self.components],
        }


def _run_check(name: str, check: Callable[[], ComponentHealth]) -> ComponentHealth:
    """Run one check, turning a VerificationWarning into an unhealthy result."""
    try:
        return check()
    except VerificationWarning as w:
        logger.warning("Verification warning (%s): %s", name, w)
        for hint in w.hints:
            logger.warning("  • %s", hint)
        return ComponentHealth(name=name, status="unhealthy", message=str(w))


def check_service_endpoint(
    kusto: KustoServiceAdapter,
    config: DeploymentConfig,
    clock: Callable[[], float] | None = None,
    sleep: Callable[[float], None] | None = None,
) -> ComponentHealth:
    """Wait, within the health bound, for the emulator to answer."""
    extra: dict[str, Any] = {}
    if clock is not None:
        extra["clock"] = clock
    if sleep is not None:
        extra["sleep"] = sleep
    ready = wait_until(
        lambda: kusto.health().ok,
        config.health_wait_seconds,
        config.health_poll_seconds,
        description=f"Kusto endpoint {kusto.base_url}",
        **extra,
    )
    if not ready:
        raise VerificationWarning(
            f"Kusto emulator at {kusto.base_url} did not answer within "
            f"{int(config.health_wait_seconds)}s",
            hints=[
                f"docker logs {config.container_name}",
                f"Check nothing else listens on port {config.listen_port}",
            ],
        )
    return ComponentHealth(name="service_endpoint", status="healthy", message=kusto.base_url)


def _sample_csl() -> str:
    rows = ",\n".join(
        f'  datetime({ts}), "{source}", "{level}", "{message}"'
        for ts, source, level, message in _SAMPLE_ROWS
    )
    return (
        f".set-or-replace {SAMPLE_TABLE} <|\n"
        "datatable(Timestamp: datetime, Source: string, Level: string, Message: string) [\n"
        f"{rows}\n"
        "]"
    )


def load_sample_dataset(kusto: KustoServiceAdapter) -> ComponentHealth:
    """Create (or replace) a small sample table. Idempotent."""
    receipt = kusto.management(_sample_csl(), operation="sample_data")
    if not receipt.ok:
        raise VerificationWarning(f"Sample dataset not loaded: {receipt.error}")
    counted = kusto.query(f"{SAMPLE_TABLE} | count")
    if not counted.ok:
        raise VerificationWarning(f"Sample dataset not queryable: {counted.error}")
    return ComponentHealth(
        name="sample_dataset",
        status="healthy",
        message=f"{SAMPLE_TABLE} ({len(_SAMPLE_ROWS)} rows)",
    )


def check_bypass_artifacts(host: HostAdapter, settings_path: Path | None = None) -> ComponentHealth:
    """Docker Desktop profile bypass keys still present."""
    if not host.is_windows:
        return ComponentHealth(name="profile_bypass", status="skipped", message="not applicable")
    settings_path = settings_path or host.docker_settings_path
    missing = missing_bypass_keys(settings_path)
    if missing:
        raise VerificationWarning(
            f"Profile bypass incomplete in {settings_path}: {', '.join(missing)}",
            hints=["Re-run the deployment to re-apply the bypass"],
        )
    return ComponentHealth(name="profile_bypass", status="healthy", message=str(settings_path))


def run_final_verification(
    config: DeploymentConfig,
    host: HostAdapter,
    kusto: KustoServiceAdapter,
    clock: Callable[[], float] | None = None,
    sleep: Callable[[float], None] | None = None,
) -> SystemHealth:
    """Run every post-deployment check and aggregate the result."""
    health = SystemHealth()

    endpoint = _run_check(
        "service_endpoint", lambda: check_service_endpoint(kusto, config, clock, sleep)
    )
    health.add(endpoint)

    if not config.sample_data:
        health.add(ComponentHealth(name="sample_dataset", status="skipped", message="disabled"))
    elif not endpoint.healthy:
        health.add(
            ComponentHealth(name="sample_dataset", status="skipped", message="endpoint unavailable")
        )
    else:
        health.add(_run_check("sample_dataset", lambda: load_sample_dataset(kusto)))

    settings_path = config.docker_settings(host.docker_settings_path)
    health.add(_run_check("profile_bypass", lambda: check_bypass_artifacts(host, settings_path)))
    return health
