"""
Lifecycle wrapper around one store node process.
"""

import logging
import os
import subprocess
from enum import Enum
from typing import List, Optional

from .config import NodeConfig
from .errors import LaunchError, LifecycleError, ShutdownError
from .readiness import port_open, wait_until


class NodeState(Enum):
    """Node process states."""
    UNSTARTED = "UNSTARTED"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    TERMINATED = "TERMINATED"


_PACKAGE_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class Node:
    """
    One store process and the configuration it is (re)launched with.

    The same NodeConfig is reused on every restart so the node comes back
    with its data directory, peer list and TLS identity unchanged.
    Not safe for concurrent use.
    """

    def __init__(self, config: NodeConfig, command: List[str],
                 start_timeout: float = 10.0, stop_timeout: float = 5.0):
        self.config = config
        self.command = list(command)
        self.start_timeout = start_timeout
        self.stop_timeout = stop_timeout

        self.state = NodeState.UNSTARTED
        self.escalated = False
        self._process: Optional[subprocess.Popen] = None
        self.logger = logging.getLogger(f"minicluster.{config.name}")

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def index(self) -> int:
        return self.config.index

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def running(self) -> bool:
        return self.state == NodeState.RUNNING

    def start(self):
        """Launch the process and wait until it listens on both transports."""
        self._require(NodeState.UNSTARTED, "start")
        self._launch()
        self.state = NodeState.RUNNING

    def stop(self):
        """Gracefully stop the process, escalating to SIGKILL after the grace period."""
        self._require(NodeState.RUNNING, "stop")
        self._halt()
        self.state = NodeState.STOPPED
        self.logger.info(f"Stopped (escalated={self.escalated})")

    def restart(self):
        """Relaunch a stopped node with its original configuration."""
        self._require(NodeState.STOPPED, "restart")
        self._launch()
        self.state = NodeState.RUNNING
        self.logger.info("Restarted")

    def terminate(self):
        """Kill the process if alive; the node cannot be used afterwards."""
        if self.state == NodeState.TERMINATED:
            return
        if self._alive():
            self._halt()
        self.state = NodeState.TERMINATED
        self._process = None

    def _require(self, expected: NodeState, operation: str):
        if self.state != expected:
            raise LifecycleError(
                f"cannot {operation} {self.name}: state is {self.state.value}, "
                f"expected {expected.value}"
            )

    def _alive(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def _environment(self) -> dict:
        env = os.environ.copy()
        path = env.get("PYTHONPATH")
        env["PYTHONPATH"] = _PACKAGE_ROOT + (os.pathsep + path if path else "")
        return env

    def _launch(self):
        busy = [address for address, port in ((self.config.client_address, self.config.client_port),
                                              (self.config.peer_address, self.config.peer_port))
                if port_open(self.config.host, port)]
        if busy:
            raise LaunchError(f"cannot launch {self.name}: {', '.join(busy)} already in use")

        os.makedirs(self.config.data_dir, exist_ok=True)
        argv = self.command + self.config.to_args()
        self.logger.debug(f"Launching: {' '.join(argv)}")

        with open(self.config.log_file, "ab") as log:
            try:
                self._process = subprocess.Popen(
                    argv,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    env=self._environment(),
                )
            except OSError as e:
                self._process = None
                raise LaunchError(f"cannot launch {self.name}: {e}") from e

        try:
            wait_until(
                self._listening,
                timeout=self.start_timeout,
                description=f"{self.name} to listen on "
                            f"{self.config.client_address} and {self.config.peer_address}",
            )
        except Exception:
            self._reap()
            raise

        self.logger.info(f"Running as pid {self._process.pid} "
                         f"(client {self.config.client_address}, peer {self.config.peer_address})")

    def _listening(self) -> bool:
        code = self._process.poll()
        if code is not None:
            raise LaunchError(
                f"{self.name} exited with code {code} before listening; "
                f"see {self.config.log_file}"
            )
        if not (port_open(self.config.host, self.config.client_port) and
                port_open(self.config.host, self.config.peer_port)):
            return False
        # Open ports alone do not prove this process bound them
        return self._process.poll() is None

    def _halt(self):
        self.escalated = False
        self._process.terminate()
        try:
            self._process.wait(timeout=self.stop_timeout)
            return
        except subprocess.TimeoutExpired:
            self.logger.warning(
                f"pid {self._process.pid} ignored SIGTERM for {self.stop_timeout}s, sending SIGKILL"
            )
        self.escalated = True
        self._process.kill()
        try:
            self._process.wait(timeout=self.stop_timeout)
        except subprocess.TimeoutExpired as e:
            raise ShutdownError(f"{self.name} (pid {self._process.pid}) survived SIGKILL") from e

    def _reap(self):
        """Kill a process that failed to come up."""
        if not self._alive():
            return
        self._process.kill()
        try:
            self._process.wait(timeout=self.stop_timeout)
        except subprocess.TimeoutExpired:
            self.logger.error(f"pid {self._process.pid} survived SIGKILL after a failed launch")

    def __repr__(self) -> str:
        return f"Node({self.name}, {self.state.value}, pid={self.pid})"
