"""
Readiness waiter — bounded polling for asynchronous subsystems.

Every wait in the deployment (runtime daemon, container start, service
health, continuation task read-back) goes through ``wait_until``. The
bound is always finite; there is no way to ask for an unbounded wait.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


def _fmt_duration(seconds: float) -> str:
    seconds = max(int(seconds), 0)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def wait_until(
    predicate: Callable[[], bool],
    max_duration: float,
    poll_interval: float,
    *,
    description: str = "condition",
    status_every: int = 5,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll ``predicate`` until it returns True or ``max_duration`` elapses.

    The predicate is evaluated once immediately; a True result returns
    without sleeping. A predicate that raises counts as not ready.

    Progress is throttled: a DEBUG marker on every tick, an INFO line
    with elapsed/remaining time on every ``status_every``-th tick.

    Args:
        predicate: Readiness probe.
        max_duration: Upper bound in seconds. Must be finite and > 0.
        poll_interval: Seconds between probes. Must be > 0.
        description: What is being waited for, used in log lines.
        status_every: Emit a full status line every N ticks.
        clock: Monotonic clock (injectable for tests).
        sleep: Sleep function (injectable for tests).

    Returns:
        True if the predicate succeeded within the bound, False on timeout.

    Raises:
        ValueError: If the bound or the interval is not finite and positive.
    """
    if not math.isfinite(max_duration) or max_duration <= 0:
        raise ValueError(f"max_duration must be finite and positive, got {max_duration!r}")
    if not math.isfinite(poll_interval) or poll_interval <= 0:
        raise ValueError(f"poll_interval must be finite and positive, got {poll_interval!r}")

    start = clock()
    deadline = start + max_duration
    tick = 0

    while True:
        if _evaluate(predicate, description):
            if tick:
                logger.info("%s ready after %s", description, _fmt_duration(clock() - start))
            return True

        now = clock()
        remaining = deadline - now
        if remaining <= 0:
            logger.warning(
                "Timed out after %s waiting for %s", _fmt_duration(now - start), description
            )
            return False

        tick += 1
        if tick % max(status_every, 1) == 0:
            logger.info(
                "Still waiting for %s (elapsed %s, remaining %s)",
                description,
                _fmt_duration(now - start),
                _fmt_duration(remaining),
            )
        else:
            logger.debug("Waiting for %s .", description)

        sleep(min(poll_interval, remaining))


def _evaluate(predicate: Callable[[], bool], description: str) -> bool:
    try:
        return bool(predicate())
    except Exception as e:
        logger.debug("Probe for %s raised: %s", description, e)
        return False
