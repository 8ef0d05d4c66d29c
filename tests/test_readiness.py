"""
Polling helpers.
"""

import socket
import time

import pytest

from minicluster import ConvergenceTimeoutError
from minicluster.readiness import port_open, wait_until


def test_wait_until_returns_attempts():
    results = iter([False, False, True])
    assert wait_until(lambda: next(results), timeout=5.0, initial_delay=0.01) == 3


def test_wait_until_times_out():
    start = time.monotonic()
    with pytest.raises(ConvergenceTimeoutError) as excinfo:
        wait_until(lambda: False, timeout=0.3, description="nothing", initial_delay=0.01)
    assert time.monotonic() - start < 2.0
    assert "nothing" in str(excinfo.value)


def test_wait_until_propagates_predicate_errors():
    def predicate():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        wait_until(predicate, timeout=1.0)


def test_port_open():
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    port = listener.getsockname()[1]
    try:
        assert port_open("127.0.0.1", port)
    finally:
        listener.close()
    assert not port_open("127.0.0.1", port)
