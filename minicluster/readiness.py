"""
Bounded polling used instead of fixed sleeps.
"""

import socket
import time
from typing import Callable

from .errors import ConvergenceTimeoutError


def wait_until(predicate: Callable[[], bool], timeout: float, description: str = "condition",
               initial_delay: float = 0.05, max_delay: float = 1.0, backoff: float = 2.0):
    """
    Poll predicate until it returns True, backing off between attempts.

    Raises:
        ConvergenceTimeoutError: the predicate was still false after timeout
    """
    deadline = time.monotonic() + timeout
    delay = initial_delay
    attempts = 0
    while True:
        attempts += 1
        if predicate():
            return attempts
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ConvergenceTimeoutError(
                f"timed out after {timeout:.1f}s ({attempts} attempts) waiting for {description}"
            )
        time.sleep(min(delay, remaining))
        delay = min(delay * backoff, max_delay)


def port_open(host: str, port: int, timeout: float = 0.5) -> bool:
    """True if something accepts TCP connections on host:port."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False
