"""
Docker adapter — container runtime operations.

Uses the docker CLI — never the Docker API directly.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Mapping, Sequence

from kustoboot.adapters.base import Adapter
from kustoboot.core.models.action import Receipt

logger = logging.getLogger(__name__)


class DockerAdapter(Adapter):
    """Container runtime probes and container lifecycle operations."""

    @property
    def name(self) -> str:
        return "docker"

    def is_available(self) -> bool:
        return shutil.which("docker") is not None

    # ── Probes ──────────────────────────────────────────────────

    def version(self) -> Receipt:
        """Client binary responds (``docker --version``)."""
        return self._run("version", ["docker", "--version"], timeout=30)

    def info(self) -> Receipt:
        """Daemon reachable (``docker info``)."""
        return self._run("info", ["docker", "info", "--format", "{{.ServerVersion}}"], timeout=30)

    def container_state(self, name: str) -> Receipt:
        """State of the named container.

        The receipt's output is the docker state string (``running``,
        ``exited``, ``created``...) or empty when no such container exists.
        """
        receipt = self._run(
            "container_state",
            [
                "docker", "ps", "-a",
                "--filter", f"name=^/{name}$",
                "--format", "{{.State}}",
            ],
            timeout=30,
        )
        if receipt.ok:
            lines = [line.strip() for line in receipt.output.splitlines() if line.strip()]
            return receipt.model_copy(update={"output": lines[0] if lines else ""})
        return receipt

    def container_exists(self, name: str) -> bool:
        receipt = self.container_state(name)
        return receipt.ok and bool(receipt.output)

    def container_running(self, name: str) -> bool:
        receipt = self.container_state(name)
        return receipt.ok and receipt.output == "running"

    # ── Lifecycle ───────────────────────────────────────────────

    def pull(self, image: str) -> Receipt:
        return self._run("pull", ["docker", "pull", image], timeout=1800)

    def run_container(
        self,
        name: str,
        image: str,
        *,
        ports: Mapping[str, str] | None = None,
        volumes: Mapping[str, str] | None = None,
        env: Mapping[str, str] | None = None,
        restart: str = "unless-stopped",
        memory: str | None = None,
        extra_args: Sequence[str] = (),
    ) -> Receipt:
        """``docker run -d`` a named container."""
        args = ["docker", "run", "-d", "--name", name, "--restart", restart]
        for host_port, container_port in (ports or {}).items():
            args += ["-p", f"{host_port}:{container_port}"]
        for source, target in (volumes or {}).items():
            args += ["-v", f"{source}:{target}"]
        for key, value in (env or {}).items():
            args += ["-e", f"{key}={value}"]
        if memory:
            args += ["--memory", memory]
        args += list(extra_args)
        args.append(image)
        return self._run("run", args, timeout=300)

    def start(self, name: str) -> Receipt:
        return self._run("start", ["docker", "start", name], timeout=120)

    def stop(self, name: str) -> Receipt:
        return self._run("stop", ["docker", "stop", name], timeout=120)

    def remove(self, name: str) -> Receipt:
        return self._run("remove", ["docker", "rm", "-f", name], timeout=60)

    def logs(self, name: str, tail: int = 50) -> Receipt:
        return self._run("logs", ["docker", "logs", f"--tail={tail}", name], timeout=30)
