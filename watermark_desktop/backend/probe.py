"""TCP readiness checks for the export service."""

from __future__ import annotations

import socket
import time
from collections.abc import Callable

from watermark_desktop.errors import BackendCrashed, BackendUnreachableTimeout
from watermark_desktop.logger import get_logger

_logger = get_logger("probe")


def is_port_in_use(host: str, port: int, timeout: float = 1.0) -> bool:
    """Connect and immediately release. True if something accepts on host:port."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def wait_for_port(
    host: str,
    port: int,
    timeout: float = 60.0,
    interval: float = 0.5,
    exit_code: Callable[[], int | None] | None = None,
    probe: Callable[[str, int, float], bool] = is_port_in_use,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> float:
    """Block until host:port accepts connections.

    Args:
        exit_code: returns the child's exit code once it has exited, else None.
            Lets the wait end early when the process dies during startup.

    Returns:
        Seconds waited.

    Raises:
        BackendUnreachableTimeout: not reachable within ``timeout``.
        BackendCrashed: ``exit_code`` reported an exit first.
    """
    start = clock()
    deadline = start + timeout
    attempts = 0
    while True:
        if exit_code is not None:
            code = exit_code()
            if code is not None:
                raise BackendCrashed(f"Backend process exited with status {code} before it became ready.", code)
        attempts += 1
        if probe(host, port, min(interval, 1.0) if interval > 0 else 1.0):
            waited = clock() - start
            _logger.info("backend reachable at %s:%d after %.1fs (%d probes)", host, port, waited, attempts)
            return waited
        if clock() >= deadline:
            raise BackendUnreachableTimeout(
                f"Backend did not accept connections on {host}:{port} within {timeout:.0f} seconds."
            )
        sleep(interval)
