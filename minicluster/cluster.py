"""
Cluster orchestration: launches, tracks and tears down a local store cluster.
"""

import logging
import ssl
from typing import Callable, List, Optional, Tuple

from .config import Config, NodeConfig, TLSInfo, TransportRole, build_node_configs
from .errors import NodeIndexError, ShutdownError
from .node import Node, NodeState
from .readiness import wait_until
from .tls import TLSProvisioner
from .store.client import StoreClient, StoreClientError


class Cluster:
    """
    A set of store nodes started from one Config.

    The cluster holds exactly config.size node slots for its lifetime.
    Nodes can be stopped and restarted by index; a stopped slot stays in
    place and keeps its configuration.
    """

    def __init__(self, config: Config, nodes: List[Node], provisioner: TLSProvisioner):
        self.config = config
        self._nodes = nodes
        self._provisioner = provisioner
        self._shut_down = False
        self.logger = logging.getLogger("minicluster.cluster")

    @classmethod
    def start(cls, config: Config) -> "Cluster":
        """
        Provision and launch every node.

        Either every node is running when this returns, or the error is
        raised after all nodes launched so far have been terminated.
        """
        logger = logging.getLogger("minicluster.cluster")
        config.validate()

        provisioner = TLSProvisioner(config.root_dir)
        peer_tls = provisioner.resolve(config, TransportRole.PEER)
        client_tls = provisioner.resolve(config, TransportRole.CLIENT)

        node_configs = build_node_configs(config, peer_tls, client_tls)
        nodes = [
            Node(node_config, config.node_command,
                 start_timeout=config.start_timeout,
                 stop_timeout=config.stop_timeout)
            for node_config in node_configs
        ]
        cluster = cls(config, nodes, provisioner)
        if config.client_auto_tls:
            provisioner.client_credentials(TransportRole.CLIENT)

        logger.info(f"Starting {config.size}-node cluster in {config.root_dir} "
                    f"(root port {config.root_port})")
        try:
            for node in nodes:
                node.start()
        except Exception:
            logger.error("Cluster start failed, terminating launched nodes")
            try:
                cluster._terminate_all()
            except ShutdownError as e:
                logger.error(f"Unwinding the failed start left processes behind: {e}")
            raise

        logger.info(f"Cluster running: {', '.join(cluster.all_endpoints(True))}")
        return cluster

    @property
    def size(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> Tuple[Node, ...]:
        return tuple(self._nodes)

    def node(self, index: int) -> Node:
        if not isinstance(index, int) or not 0 <= index < len(self._nodes):
            raise NodeIndexError(f"node index {index} out of range [0, {len(self._nodes)})")
        return self._nodes[index]

    def node_config(self, index: int) -> NodeConfig:
        return self.node(index).config

    def all_endpoints(self, use_scheme: bool = False) -> List[str]:
        """Client addresses of running nodes, in index order."""
        endpoints = []
        for node in self._nodes:
            if node.state != NodeState.RUNNING:
                continue
            if use_scheme:
                endpoints.append(node.config.client_url)
            else:
                endpoints.append(node.config.client_address)
        return endpoints

    def stop(self, index: int):
        node = self.node(index)
        self.logger.info(f"Stopping {node.name}")
        node.stop()

    def restart(self, index: int):
        node = self.node(index)
        self.logger.info(f"Restarting {node.name}")
        node.restart()

    def shutdown(self):
        """Terminate every node. Data directories are left on disk."""
        if self._shut_down:
            return
        self._terminate_all()
        self._shut_down = True
        self.logger.info("Cluster shut down")

    def _terminate_all(self):
        failures = []
        for node in self._nodes:
            try:
                node.terminate()
            except ShutdownError as e:
                self.logger.error(f"Failed to terminate {node.name}: {e}")
                failures.append(str(e))
        if failures:
            raise ShutdownError("; ".join(failures))

    def client_tls_info(self) -> Optional[TLSInfo]:
        """The bundle a client uses to reach the cluster, or None for plaintext."""
        if self.config.client_auto_tls:
            return self._provisioner.client_credentials(TransportRole.CLIENT)
        if not self.config.client_tls_info.empty():
            return self.config.client_tls_info
        return None

    def client_ssl_context(self) -> Optional[ssl.SSLContext]:
        info = self.client_tls_info()
        return info.client_context() if info else None

    def client(self, use_scheme: bool = False, timeout: float = 3.0) -> StoreClient:
        """A store client bound to the currently running endpoints."""
        return StoreClient(
            self.all_endpoints(use_scheme),
            ssl_context=self.client_ssl_context(),
            timeout=timeout,
        )

    def wait_ready(self, check: Optional[Callable[["Cluster"], bool]] = None,
                   timeout: float = 10.0):
        """
        Poll until the cluster can serve clients.

        The default check pings every running node on its client transport.
        """
        check = check or _all_nodes_respond
        attempts = wait_until(lambda: check(self), timeout=timeout,
                              description="cluster readiness")
        self.logger.debug(f"Cluster ready after {attempts} checks")

    def __enter__(self) -> "Cluster":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()

    def __repr__(self) -> str:
        states = ", ".join(node.state.value for node in self._nodes)
        return f"Cluster(size={self.size}, nodes=[{states}])"


def _all_nodes_respond(cluster: Cluster) -> bool:
    context = cluster.client_ssl_context()
    for endpoint in cluster.all_endpoints():
        client = StoreClient([endpoint], ssl_context=context, timeout=1.0)
        try:
            if not client.ping():
                return False
        except StoreClientError:
            return False
        finally:
            client.close()
    return True


def start(config: Config) -> Cluster:
    """Start a cluster; see Cluster.start."""
    return Cluster.start(config)
