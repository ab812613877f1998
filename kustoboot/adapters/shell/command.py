"""
Shell command runner — the single place ``subprocess`` is invoked.

Every collaborator CLI (wsl, dism, docker, schtasks, systemctl,
powershell, shutdown) goes through ``run_command`` and comes back as a
Receipt. Logging, timeouts and output trimming are centralised here.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections.abc import Sequence

from kustoboot.core.models.action import ErrorKind, Receipt

logger = logging.getLogger(__name__)

_OUTPUT_LIMIT = 4000


def run_command(
    cmd: Sequence[str],
    *,
    adapter: str = "shell",
    operation: str = "",
    timeout: float = 300,
    ok_codes: Sequence[int] = (0,),
    env_overrides: dict[str, str] | None = None,
    cwd: str | None = None,
) -> Receipt:
    """Run a command and capture its output.

    Args:
        cmd: Command list for ``subprocess.run()``.
        adapter: Adapter name recorded on the receipt.
        operation: Operation name recorded on the receipt.
        timeout: Seconds before the command is killed.
        ok_codes: Exit codes that count as success (DISM reports
            "success, reboot required" as 3010).
        env_overrides: Extra environment variables.
        cwd: Working directory.

    Returns:
        Success receipt with stdout, or a failure receipt with stderr.
        Never raises.
    """
    operation = operation or (cmd[0] if cmd else "")
    env = None
    if env_overrides:
        env = os.environ.copy()
        env.update(env_overrides)

    logger.debug("Executing: %s", " ".join(cmd))
    start = time.monotonic()
    try:
        result = subprocess.run(
            list(cmd),
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            env=env,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        return Receipt.failure(
            adapter=adapter,
            operation=operation,
            error=f"Command timed out after {timeout:g}s",
            metadata={"command": list(cmd)},
        )
    except OSError as e:
        # Missing binary, permission denied, bad working directory
        return Receipt.failure(
            adapter=adapter,
            operation=operation,
            error=f"Cannot execute {cmd[0] if cmd else '?'}: {e}",
            metadata={"command": list(cmd)},
        )

    elapsed_ms = int((time.monotonic() - start) * 1000)
    stdout = _clean(result.stdout)
    stderr = _clean(result.stderr)

    if result.returncode in ok_codes:
        logger.debug("%s.%s ok (exit %d, %d ms)", adapter, operation, result.returncode, elapsed_ms)
        return Receipt.success(
            adapter=adapter,
            operation=operation,
            output=stdout,
            return_code=result.returncode,
            duration_ms=elapsed_ms,
            metadata={"command": list(cmd), "stderr": stderr},
        )

    logger.debug(
        "%s.%s failed (exit %d): %s", adapter, operation, result.returncode, stderr or stdout
    )
    return Receipt.failure(
        adapter=adapter,
        operation=operation,
        error=stderr or stdout or f"Command exited with code {result.returncode}",
        error_kind=ErrorKind.COMMAND,
        return_code=result.returncode,
        duration_ms=elapsed_ms,
        metadata={"command": list(cmd), "stdout": stdout},
    )


def spawn_detached(
    cmd: Sequence[str],
    *,
    adapter: str = "shell",
    operation: str = "",
) -> Receipt:
    """Start a long-running process without waiting for it.

    Used for GUI-hosted daemons (Docker Desktop) that never exit.
    """
    operation = operation or (cmd[0] if cmd else "")
    logger.debug("Spawning: %s", " ".join(cmd))
    try:
        proc = subprocess.Popen(
            list(cmd),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        return Receipt.failure(
            adapter=adapter,
            operation=operation,
            error=f"Cannot start {cmd[0] if cmd else '?'}: {e}",
            metadata={"command": list(cmd)},
        )
    return Receipt.success(
        adapter=adapter,
        operation=operation,
        output=f"pid {proc.pid}",
        metadata={"command": list(cmd), "pid": proc.pid},
    )


def _clean(text: str | None) -> str:
    """Strip, drop stray NULs (UTF-16 console output), keep the tail."""
    if not text:
        return ""
    text = text.replace("\x00", "").strip()
    return text[-_OUTPUT_LIMIT:]
