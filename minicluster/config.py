"""
Configuration for a local test cluster.
"""

import os
import ssl
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from enum import Enum

from .errors import ConfigurationError
from .ports import node_ports


DEFAULT_HOST = "127.0.0.1"


class TransportRole(Enum):
    """Transports a node listens on."""
    PEER = "peer"
    CLIENT = "client"


@dataclass(frozen=True)
class TLSInfo:
    """
    A certificate/key/CA bundle for one transport.

    An empty bundle means plaintext.
    """
    cert_file: str = ""
    key_file: str = ""
    trusted_ca_file: str = ""
    client_cert_auth: bool = False

    def empty(self) -> bool:
        return not (self.cert_file or self.key_file or self.trusted_ca_file)

    def server_context(self) -> ssl.SSLContext:
        """Context for the listening side of the transport."""
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(self.cert_file, self.key_file or None)
        if self.trusted_ca_file:
            context.load_verify_locations(self.trusted_ca_file)
        if self.client_cert_auth:
            context.verify_mode = ssl.CERT_REQUIRED
        return context

    def client_context(self) -> ssl.SSLContext:
        """Context for connecting to a server that uses this bundle's CA."""
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        if self.trusted_ca_file:
            context.load_verify_locations(self.trusted_ca_file)
        else:
            context.load_default_certs()
        if self.cert_file:
            context.load_cert_chain(self.cert_file, self.key_file or None)
        return context

    def to_args(self, role: TransportRole) -> List[str]:
        """Command line flags understood by a store node."""
        if self.empty():
            return []
        prefix = f"--{role.value}"
        args = [
            f"{prefix}-cert-file", self.cert_file,
            f"{prefix}-key-file", self.key_file,
            f"{prefix}-trusted-ca-file", self.trusted_ca_file,
        ]
        if self.client_cert_auth:
            args.append(f"{prefix}-client-cert-auth")
        return args


def default_node_command() -> List[str]:
    """Launch the bundled store node with the current interpreter."""
    return [sys.executable, "-m", "minicluster.store"]


@dataclass(frozen=True)
class Config:
    """Configuration for the entire cluster."""
    size: int = 3
    root_dir: str = ""
    root_port: int = 21300
    peer_tls_info: TLSInfo = field(default_factory=TLSInfo)
    client_tls_info: TLSInfo = field(default_factory=TLSInfo)
    peer_auto_tls: bool = False
    client_auto_tls: bool = False

    host: str = DEFAULT_HOST
    start_timeout: float = 10.0   # seconds for a node to open its listeners
    stop_timeout: float = 5.0     # seconds of grace before SIGKILL
    node_command: List[str] = field(default_factory=default_node_command)
    log_level: str = "INFO"

    def validate(self):
        """Raise ConfigurationError if the config cannot describe a cluster."""
        if self.size < 1:
            raise ConfigurationError(f"cluster size must be >= 1, got {self.size}")
        if not self.root_dir:
            raise ConfigurationError("root_dir is required")
        last_port = node_ports(self.root_port, self.size - 1)[1]
        if self.root_port < 1 or last_port > 65535:
            raise ConfigurationError(
                f"ports {self.root_port}-{last_port} are outside the valid range"
            )
        if self.peer_auto_tls and not self.peer_tls_info.empty():
            raise ConfigurationError("peer_auto_tls conflicts with peer_tls_info")
        if self.client_auto_tls and not self.client_tls_info.empty():
            raise ConfigurationError("client_auto_tls conflicts with client_tls_info")
        if not self.node_command:
            raise ConfigurationError("node_command must not be empty")

    def tls_info(self, role: TransportRole) -> TLSInfo:
        return self.peer_tls_info if role == TransportRole.PEER else self.client_tls_info

    def auto_tls(self, role: TransportRole) -> bool:
        return self.peer_auto_tls if role == TransportRole.PEER else self.client_auto_tls


def node_name(index: int) -> str:
    return f"node{index}"


@dataclass(frozen=True)
class NodeConfig:
    """Configuration for a single node, derived from Config."""
    index: int
    name: str
    data_dir: str
    log_file: str
    host: str
    client_port: int
    peer_port: int
    client_tls: TLSInfo
    peer_tls: TLSInfo
    peers: Dict[str, str]   # name -> host:peer_port, self included
    log_level: str = "INFO"

    @property
    def client_address(self) -> str:
        return f"{self.host}:{self.client_port}"

    @property
    def peer_address(self) -> str:
        return f"{self.host}:{self.peer_port}"

    @property
    def client_url(self) -> str:
        scheme = "http" if self.client_tls.empty() else "https"
        return f"{scheme}://{self.client_address}"

    @property
    def peer_url(self) -> str:
        scheme = "http" if self.peer_tls.empty() else "https"
        return f"{scheme}://{self.peer_address}"

    def to_args(self) -> List[str]:
        """Command line flags for launching the node process."""
        peers = ",".join(f"{name}={address}" for name, address in self.peers.items())
        args = [
            "--name", self.name,
            "--data-dir", self.data_dir,
            "--host", self.host,
            "--client-port", str(self.client_port),
            "--peer-port", str(self.peer_port),
            "--peers", peers,
            "--log-level", self.log_level,
        ]
        args += self.client_tls.to_args(TransportRole.CLIENT)
        args += self.peer_tls.to_args(TransportRole.PEER)
        return args


def build_node_configs(config: Config, peer_tls: List[TLSInfo],
                       client_tls: List[TLSInfo]) -> List[NodeConfig]:
    """Derive every node's configuration, each with the full peer list."""
    peers = {}
    for index in range(config.size):
        _, peer_port = node_ports(config.root_port, index)
        peers[node_name(index)] = f"{config.host}:{peer_port}"

    configs = []
    for index in range(config.size):
        name = node_name(index)
        client_port, peer_port = node_ports(config.root_port, index)
        configs.append(NodeConfig(
            index=index,
            name=name,
            data_dir=os.path.join(config.root_dir, name),
            log_file=os.path.join(config.root_dir, f"{name}.log"),
            host=config.host,
            client_port=client_port,
            peer_port=peer_port,
            client_tls=client_tls[index],
            peer_tls=peer_tls[index],
            peers=dict(peers),
            log_level=config.log_level,
        ))
    return configs
