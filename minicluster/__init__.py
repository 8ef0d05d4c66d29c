"""
minicluster
Provisions, drives and tears down a local multi-node key-value cluster for tests.
"""

__version__ = "1.0.0"
__author__ = "The minicluster Contributors"

from .config import Config, NodeConfig, TLSInfo, TransportRole
from .errors import (
    ClusterError,
    ConfigurationError,
    ProvisioningError,
    LaunchError,
    ConvergenceTimeoutError,
    NodeIndexError,
    LifecycleError,
    ShutdownError,
)
from .ports import PortAllocator, node_ports
from .tls import TLSProvisioner
from .node import Node, NodeState
from .cluster import Cluster, start

__all__ = [
    # Config
    'Config',
    'NodeConfig',
    'TLSInfo',
    'TransportRole',
    # Errors
    'ClusterError',
    'ConfigurationError',
    'ProvisioningError',
    'LaunchError',
    'ConvergenceTimeoutError',
    'NodeIndexError',
    'LifecycleError',
    'ShutdownError',
    # Resources
    'PortAllocator',
    'node_ports',
    'TLSProvisioner',
    # Lifecycle
    'Node',
    'NodeState',
    'Cluster',
    'start',
]
