"""
Port layout for cluster nodes.

Every node takes PORTS_PER_NODE consecutive ports starting at
root_port + PORTS_PER_NODE * index: the client port first, then the peer port.
"""

import threading
from typing import Optional, Tuple


PORTS_PER_NODE = 2


def node_ports(root_port: int, index: int) -> Tuple[int, int]:
    """Return (client_port, peer_port) for the node at index."""
    client_port = root_port + PORTS_PER_NODE * index
    return client_port, client_port + 1


def ports_needed(size: int) -> int:
    return PORTS_PER_NODE * size


class PortAllocator:
    """
    Hands out non-overlapping root ports to clusters created by one test run.

    Thread-safe; clusters may be created concurrently.
    """

    def __init__(self, base: int = 21300, stride: Optional[int] = 10):
        self.base = base
        self.stride = stride or 0
        self._next = base
        self._lock = threading.Lock()

    def allocate(self, size: int) -> int:
        """Reserve ports for a cluster of the given size; returns its root port."""
        width = max(self.stride, ports_needed(size))
        with self._lock:
            root_port = self._next
            self._next += width
        return root_port
