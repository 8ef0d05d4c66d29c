"""
Clients for store nodes.

TCPClient talks to one address. StoreClient takes the endpoint list a
cluster reports and fails over between endpoints on connection errors.
"""

import logging
import socket
import ssl
import threading
from typing import Any, Dict, List, Optional, Tuple

from .protocol import Protocol, Message, MessageType


class StoreClientError(Exception):
    """A request could not be completed against any endpoint."""


class TCPClient:
    """
    Connection to a single node transport.
    Used by StoreClient and by nodes talking to their peers.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 21300,
                 timeout: float = 10.0, node_id: str = "",
                 ssl_context: Optional[ssl.SSLContext] = None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.node_id = node_id
        self.ssl_context = ssl_context

        self._socket: Optional[socket.socket] = None
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self.was_connected = False

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def connect(self):
        """Open the connection; raises OSError (ssl.SSLError included) on failure."""
        sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        if self.ssl_context:
            try:
                sock = self.ssl_context.wrap_socket(sock, server_hostname=self.host)
            except (ssl.SSLError, OSError):
                sock.close()
                raise
        self._socket = sock
        self._buffer = bytearray()

    def disconnect(self):
        with self._lock:
            if self._socket:
                try:
                    self._socket.close()
                except OSError:
                    pass
                self._socket = None

    def send_message(self, message: Message) -> Message:
        """
        Send a message and wait for the response.

        Raises OSError when the connection fails; the client is left
        disconnected so the next call reconnects.
        """
        with self._lock:
            # A reused socket may have gone stale; callers can retry on a fresh one
            self.was_connected = self._socket is not None
            if self._socket is None:
                self.connect()
            try:
                Protocol.send_message(self._socket, message)
                response = Protocol.read_message(self._socket, self._buffer)
            except (OSError, ValueError):
                self._socket.close()
                self._socket = None
                raise
            if response is None:
                self._socket.close()
                self._socket = None
                raise ConnectionResetError(f"{self.address} closed the connection")
            return response

    def send_command(self, command: str, *args) -> Message:
        """
        Send a command and wait for response.

        Args:
            command: The command (e.g., "SET", "GET")
            *args: Command arguments
        """
        return self.send_message(Protocol.create_command(command, list(args), self.node_id))


def parse_endpoint(endpoint: str) -> Tuple[str, str, int]:
    """Split "[scheme://]host:port" into (scheme, host, port)."""
    scheme = ""
    address = endpoint
    if "://" in endpoint:
        scheme, address = endpoint.split("://", 1)
    host, sep, port = address.rstrip("/").rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"invalid endpoint {endpoint!r}")
    if scheme not in ("", "http", "https"):
        raise ValueError(f"unsupported scheme in endpoint {endpoint!r}")
    return scheme, host, int(port)


class StoreClient:
    """
    Client for a whole cluster.

    Endpoints may carry an http:// or https:// prefix. TLS is used whenever an
    ssl_context is given; https endpoints require one.
    """

    def __init__(self, endpoints: List[str], ssl_context: Optional[ssl.SSLContext] = None,
                 timeout: float = 3.0):
        if not endpoints:
            raise StoreClientError("no endpoints given")

        self.ssl_context = ssl_context
        self.timeout = timeout
        self._clients: List[TCPClient] = []
        for endpoint in endpoints:
            scheme, host, port = parse_endpoint(endpoint)
            if scheme == "https" and ssl_context is None:
                raise StoreClientError(f"{endpoint} needs an ssl_context")
            self._clients.append(TCPClient(host, port, timeout=timeout, ssl_context=ssl_context))
        self._current = 0
        self.logger = logging.getLogger("minicluster.client")

    @property
    def endpoints(self) -> List[str]:
        return [client.address for client in self._clients]

    def _call(self, command: str, *args) -> Any:
        errors = []
        for attempt in range(len(self._clients)):
            client = self._clients[(self._current + attempt) % len(self._clients)]
            try:
                try:
                    response = client.send_command(command, *args)
                except (OSError, ValueError):
                    if not client.was_connected:
                        raise
                    response = client.send_command(command, *args)
            except (OSError, ValueError) as e:
                self.logger.debug(f"{command} on {client.address} failed: {e}")
                errors.append(f"{client.address}: {e}")
                continue

            self._current = self._clients.index(client)
            if response.msg_type == MessageType.ERROR or not response.payload.get("success"):
                raise StoreClientError(f"{command} failed on {client.address}: "
                                       f"{response.payload.get('error')}")
            return response.payload.get("data")

        raise StoreClientError(f"{command} failed on every endpoint: {'; '.join(errors)}")

    def put(self, key: str, value: str) -> int:
        """Write a key; returns the version assigned to the write."""
        return self._call("SET", key, value)["version"]

    def get(self, key: str) -> Optional[str]:
        """Read a key; None when it does not exist."""
        data = self._call("GET", key)
        return data["value"] if data["found"] else None

    def keys(self, pattern: str = "*") -> List[str]:
        return self._call("KEYS", pattern)

    def ping(self) -> bool:
        return self._call("PING") == "PONG"

    def status(self) -> Dict[str, Any]:
        return self._call("STATUS")

    def close(self):
        for client in self._clients:
            client.disconnect()

    def __enter__(self) -> "StoreClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
