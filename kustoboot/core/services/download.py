"""
Download manager — large installer fetch with strategy fallback.

Strategy chain, in order:

    1. background transfer — BITS on Windows, a detached ``curl`` elsewhere,
       polled at a fixed interval with throttled progress lines
    2. streamed fetch — plain ``urllib`` read loop

A destination that already holds a plausibly-sized file is accepted as
is, so a phase interrupted after its download can re-enter cheaply. Any
result smaller than the plausible minimum is a failure, whatever the
transfer mechanism reported.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import time
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from kustoboot.adapters.base import Runner
from kustoboot.adapters.shell.command import run_command
from kustoboot.core.config.settings import DeploymentConfig
from kustoboot.core.models.action import ErrorKind, Receipt
from kustoboot.core.models.download import DownloadJob, DownloadResult

logger = logging.getLogger(__name__)

# BITS reports an unknown total as UInt64.MaxValue
_BITS_UNKNOWN_TOTAL = 2**64 - 1
_CHUNK = 1024 * 1024


def _fmt_size(n: int | float) -> str:
    """Format byte count to human-readable string."""
    for unit in ("B", "KB", "MB", "GB"):
        if n < 1024:
            return f"{n:.1f} {unit}"
        n /= 1024
    return f"{n:.1f} TB"


def _fmt_eta(seconds: float) -> str:
    secs = int(seconds)
    if secs < 60:
        return f"{secs}s"
    if secs < 3600:
        return f"{secs // 60}m {secs % 60}s"
    return f"{secs // 3600}h {(secs % 3600) // 60}m"


def progress_line(transferred: int, total: int, elapsed: float) -> str:
    """Human progress line with throughput and ETA."""
    rate = transferred / elapsed if elapsed > 0 else 0.0
    if total > 0:
        pct = transferred * 100 / total
        eta = _fmt_eta((total - transferred) / rate) if rate > 0 else "?"
        return (
            f"Downloaded {_fmt_size(transferred)} / {_fmt_size(total)} ({pct:.1f}%) "
            f"at {_fmt_size(rate)}/s, ETA {eta}"
        )
    return f"Downloaded {_fmt_size(transferred)} at {_fmt_size(rate)}/s"


# ── Strategies ──────────────────────────────────────────────────


class TransferStrategy(ABC):
    """One way of moving ``job.source_url`` to ``job.destination``."""

    name: str = ""

    @abstractmethod
    def transfer(self, job: DownloadJob) -> Receipt:
        """Run the transfer to completion. Never raises."""


@dataclass
class TransferStatus:
    """Snapshot of a background transfer."""

    state: str                  # transferring, done, error
    bytes_transferred: int = 0
    bytes_total: int = 0
    error: str = ""


class TransferBackend(ABC):
    """A platform mechanism that transfers in the background."""

    name: str = ""

    @abstractmethod
    def start(self, url: str, destination: Path) -> Receipt:
        """Start the transfer. The receipt's output is the job handle."""

    @abstractmethod
    def poll(self, handle: str) -> TransferStatus: ...

    @abstractmethod
    def complete(self, handle: str) -> Receipt: ...

    @abstractmethod
    def cancel(self, handle: str) -> None: ...


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class BitsBackend(TransferBackend):
    """Background Intelligent Transfer Service, driven through PowerShell."""

    name = "bits"

    def __init__(self, runner: Runner | None = None):
        self._runner = runner or run_command

    def _ps(self, operation: str, script: str, timeout: float = 60) -> Receipt:
        return self._runner(
            [
                "powershell.exe",
                "-NoProfile",
                "-NonInteractive",
                "-ExecutionPolicy", "Bypass",
                "-Command",
                f"Import-Module BitsTransfer; {script}",
            ],
            adapter=self.name,
            operation=operation,
            timeout=timeout,
        )

    def start(self, url: str, destination: Path) -> Receipt:
        script = (
            f"(Start-BitsTransfer -Source {_ps_quote(url)} "
            f"-Destination {_ps_quote(str(destination))} "
            "-Asynchronous -Priority Foreground -DisplayName kustoboot).JobId.Guid"
        )
        receipt = self._ps("start", script)
        if receipt.ok and not receipt.output.strip():
            return Receipt.failure(self.name, "start", "BITS returned no job id")
        if receipt.ok:
            return receipt.model_copy(update={"output": receipt.output.strip().splitlines()[-1]})
        return receipt

    def poll(self, handle: str) -> TransferStatus:
        script = (
            f"$j = Get-BitsTransfer -JobId {_ps_quote(handle)}; "
            "@{JobState=\"$($j.JobState)\"; BytesTransferred=$j.BytesTransferred; "
            "BytesTotal=$j.BytesTotal; Error=\"$($j.ErrorDescription)\"} "
            "| ConvertTo-Json -Compress"
        )
        receipt = self._ps("poll", script, timeout=30)
        if not receipt.ok:
            return TransferStatus(state="error", error=receipt.error or "BITS poll failed")
        return parse_bits_status(receipt.output)

    def complete(self, handle: str) -> Receipt:
        return self._ps(
            "complete", f"Get-BitsTransfer -JobId {_ps_quote(handle)} | Complete-BitsTransfer"
        )

    def cancel(self, handle: str) -> None:
        self._ps("cancel", f"Get-BitsTransfer -JobId {_ps_quote(handle)} | Remove-BitsTransfer")


def parse_bits_status(output: str) -> TransferStatus:
    """Map the JSON emitted by ``BitsBackend.poll`` onto a TransferStatus."""
    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        return TransferStatus(state="error", error=f"Unparseable BITS status: {output[:200]}")

    state = str(data.get("JobState", ""))
    transferred = int(data.get("BytesTransferred") or 0)
    total = int(data.get("BytesTotal") or 0)
    if total == _BITS_UNKNOWN_TOTAL:
        total = 0

    if state in ("Transferred", "Acknowledged"):
        return TransferStatus("done", transferred, total)
    if state in ("Error", "Cancelled"):
        return TransferStatus("error", transferred, total, str(data.get("Error") or state))
    # Queued, Connecting, Transferring, Suspended, TransientError: BITS retries on its own
    return TransferStatus("transferring", transferred, total)


class CurlBackend(TransferBackend):
    """A detached ``curl`` process; progress is read from the file size."""

    name = "curl"

    def __init__(self) -> None:
        self._procs: dict[str, tuple[subprocess.Popen, Path]] = {}

    def start(self, url: str, destination: Path) -> Receipt:
        curl = shutil.which("curl")
        if curl is None:
            return Receipt.failure(self.name, "start", "curl not found")
        try:
            proc = subprocess.Popen(
                [curl, "-fsSL", "--retry", "3", "-o", str(destination), url],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            return Receipt.failure(self.name, "start", f"Cannot start curl: {e}")
        handle = str(proc.pid)
        self._procs[handle] = (proc, destination)
        return Receipt.success(self.name, "start", output=handle)

    def poll(self, handle: str) -> TransferStatus:
        proc, destination = self._procs[handle]
        size = destination.stat().st_size if destination.exists() else 0
        code = proc.poll()
        if code is None:
            return TransferStatus("transferring", size)
        if code == 0:
            return TransferStatus("done", size, size)
        stderr = proc.stderr.read().decode("utf-8", errors="replace") if proc.stderr else ""
        return TransferStatus("error", size, error=stderr.strip() or f"curl exited with {code}")

    def complete(self, handle: str) -> Receipt:
        proc, _ = self._procs.pop(handle)
        if proc.stderr:
            proc.stderr.close()
        return Receipt.success(self.name, "complete")

    def cancel(self, handle: str) -> None:
        entry = self._procs.pop(handle, None)
        if entry is None:
            return
        proc, _ = entry
        if proc.poll() is None:
            proc.kill()
            proc.wait(timeout=10)
        if proc.stderr:
            proc.stderr.close()


class BackgroundTransfer(TransferStrategy):
    """Drive a TransferBackend with a fixed-interval status poll."""

    def __init__(
        self,
        backend: TransferBackend,
        *,
        poll_interval: float = 2,
        progress_gate: float = 10,
        max_duration: float = 3600,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._backend = backend
        self._poll_interval = poll_interval
        self._progress_gate = progress_gate
        self._max_duration = max_duration
        self._clock = clock
        self._sleep = sleep
        self.name = f"background:{backend.name}"

    def transfer(self, job: DownloadJob) -> Receipt:
        started = self._backend.start(job.source_url, job.destination)
        if not started.ok:
            return started.as_kind(ErrorKind.DOWNLOAD)
        handle = started.output

        begin = self._clock()
        last_report = begin
        while True:
            status = self._backend.poll(handle)
            job.bytes_transferred = status.bytes_transferred
            job.bytes_total = status.bytes_total or job.bytes_total
            now = self._clock()

            if status.state == "done":
                completed = self._backend.complete(handle)
                if not completed.ok:
                    return completed.as_kind(ErrorKind.DOWNLOAD)
                return Receipt.success(self.name, "transfer", output=str(job.destination))

            if status.state == "error":
                self._backend.cancel(handle)
                return Receipt.failure(
                    self.name, "transfer", status.error or "transfer failed", ErrorKind.DOWNLOAD
                )

            if now - begin >= self._max_duration:
                self._backend.cancel(handle)
                return Receipt.failure(
                    self.name,
                    "transfer",
                    f"transfer did not finish within {_fmt_eta(self._max_duration)}",
                    ErrorKind.DOWNLOAD,
                )

            if now - last_report >= self._progress_gate:
                logger.info(progress_line(job.bytes_transferred, job.bytes_total, now - begin))
                last_report = now

            self._sleep(self._poll_interval)


class StreamedTransfer(TransferStrategy):
    """Synchronous chunked read with ``urllib``."""

    name = "streamed"

    def __init__(
        self,
        *,
        progress_gate: float = 10,
        timeout: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._progress_gate = progress_gate
        self._timeout = timeout
        self._clock = clock

    def transfer(self, job: DownloadJob) -> Receipt:
        req = urllib.request.Request(job.source_url, headers={"User-Agent": "kustoboot/1.0"})
        begin = self._clock()
        last_report = begin
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                job.bytes_total = int(resp.headers.get("Content-Length") or 0)
                with job.destination.open("wb") as out:
                    while True:
                        chunk = resp.read(_CHUNK)
                        if not chunk:
                            break
                        out.write(chunk)
                        job.bytes_transferred += len(chunk)
                        now = self._clock()
                        if now - last_report >= self._progress_gate:
                            logger.info(
                                progress_line(job.bytes_transferred, job.bytes_total, now - begin)
                            )
                            last_report = now
        except (urllib.error.URLError, OSError) as e:
            return Receipt.failure(self.name, "transfer", f"{e}", ErrorKind.DOWNLOAD)

        return Receipt.success(self.name, "transfer", output=str(job.destination))


# ── Manager ─────────────────────────────────────────────────────


def default_strategies(config: DeploymentConfig, windows: bool) -> list[TransferStrategy]:
    backend: TransferBackend = BitsBackend() if windows else CurlBackend()
    return [
        BackgroundTransfer(
            backend,
            poll_interval=config.download_poll_seconds,
            progress_gate=config.download_progress_gate_seconds,
            max_duration=config.download_max_seconds,
        ),
        StreamedTransfer(progress_gate=config.download_progress_gate_seconds),
    ]


class DownloadManager:
    """Fetch a file through an ordered strategy chain."""

    def __init__(self, strategies: Sequence[TransferStrategy]):
        self._strategies = list(strategies)

    @property
    def strategies(self) -> list[TransferStrategy]:
        return list(self._strategies)

    def fetch(self, url: str, destination: Path, minimum_size: int) -> DownloadResult:
        """Download ``url`` to ``destination``.

        Args:
            url: Source URL.
            destination: Target file path.
            minimum_size: Smallest plausible size in bytes. An existing
                file of at least this size is accepted without any
                network activity; a transfer result below it is a failure.

        Returns:
            DownloadResult. ``success`` is False only when every strategy
            in the chain failed.
        """
        existing = _size(destination)
        if existing > 0 and existing >= minimum_size:
            logger.info(
                "Using previously downloaded %s (%s)", destination.name, _fmt_size(existing)
            )
            return DownloadResult(success=True, bytes=0, file_size=existing, strategy="cached")

        destination.parent.mkdir(parents=True, exist_ok=True)
        errors: list[str] = []
        job = DownloadJob(source_url=url, destination=destination)

        for strategy in self._strategies:
            _remove_partial(destination)
            job.strategies_attempted.append(strategy.name)
            job.bytes_transferred = 0
            job.start_time = time.monotonic()
            logger.info("Downloading %s via %s", url, strategy.name)

            receipt = strategy.transfer(job)
            if not receipt.ok:
                logger.warning("Download via %s failed: %s", strategy.name, receipt.error)
                errors.append(f"{strategy.name}: {receipt.error}")
                continue

            size = _size(destination)
            if size < minimum_size:
                logger.warning(
                    "Download via %s produced %s, below the plausible minimum of %s",
                    strategy.name, _fmt_size(size), _fmt_size(minimum_size),
                )
                errors.append(f"{strategy.name}: file too small ({size} bytes)")
                continue

            elapsed = max(job.elapsed, 1e-6)
            logger.info(
                "Downloaded %s (%s) via %s in %s",
                destination.name, _fmt_size(size), strategy.name, _fmt_eta(elapsed),
            )
            return DownloadResult(
                success=True,
                bytes=size,
                file_size=size,
                average_throughput=size / elapsed,
                strategy=strategy.name,
            )

        _remove_partial(destination)
        return DownloadResult(
            success=False,
            strategy=",".join(job.strategies_attempted),
            error="; ".join(errors) or "no download strategy configured",
        )


def _size(path: Path) -> int:
    try:
        return path.stat().st_size if path.is_file() else 0
    except OSError:
        return 0


def _remove_partial(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Cannot remove partial download %s: %s", path, e)
