"""
TCP server for one transport of a store node, optionally wrapped in TLS.
"""

import logging
import socket
import ssl
import threading
from typing import Callable, Dict, Optional

from .protocol import Protocol, Message


class TCPServer:
    """
    Multi-threaded TCP server.

    One thread accepts connections; each connection is served by its own
    thread, which also performs the TLS handshake when a context is set.
    """

    def __init__(self, host: str, port: int, handler: Callable[[Message], Message],
                 ssl_context: Optional[ssl.SSLContext] = None, name: str = "server"):
        self.host = host
        self.port = port
        self.handler = handler
        self.ssl_context = ssl_context

        self._server_socket: Optional[socket.socket] = None
        self._running = False
        self._clients: Dict[str, socket.socket] = {}
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.logger = logging.getLogger(f"minicluster.store.{name}")

    def start(self):
        """Bind, listen and start accepting."""
        self._server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._server_socket.bind((self.host, self.port))
        self._server_socket.listen(128)
        self._server_socket.settimeout(1.0)  # Allow checking _running flag

        self._running = True
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._thread.start()

        tls = "TLS" if self.ssl_context else "plaintext"
        self.logger.info(f"Listening on {self.host}:{self.port} ({tls})")

    def _accept_loop(self):
        while self._running:
            try:
                client_socket, address = self._server_socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    self.logger.error(f"Accept error: {e}")
                continue

            client_thread = threading.Thread(
                target=self._handle_client,
                args=(client_socket, address),
                daemon=True
            )
            client_thread.start()

    def _handle_client(self, client_socket: socket.socket, address: tuple):
        client_id = f"{address[0]}:{address[1]}"
        client_socket.settimeout(30.0)

        if self.ssl_context:
            try:
                client_socket = self.ssl_context.wrap_socket(client_socket, server_side=True)
            except (ssl.SSLError, OSError) as e:
                # Readiness probes connect and hang up without a handshake.
                self.logger.debug(f"TLS handshake with {client_id} failed: {e}")
                client_socket.close()
                return

        with self._lock:
            self._clients[client_id] = client_socket

        buffer = bytearray()
        try:
            while self._running:
                try:
                    message = Protocol.read_message(client_socket, buffer)
                except socket.timeout:
                    continue
                except ValueError as e:
                    Protocol.send_message(client_socket, Protocol.create_response(False, error=str(e)))
                    continue
                if message is None:
                    break

                try:
                    response = self.handler(message)
                except Exception as e:
                    self.logger.exception(f"Handler failed for {message.msg_type.value} from {client_id}")
                    response = Protocol.create_response(False, error=str(e))
                if response:
                    Protocol.send_message(client_socket, response)
        except OSError as e:
            self.logger.debug(f"Connection {client_id} closed: {e}")
        finally:
            with self._lock:
                self._clients.pop(client_id, None)
            client_socket.close()

    def stop(self):
        """Stop accepting and close every open connection."""
        self._running = False

        with self._lock:
            for client_socket in self._clients.values():
                try:
                    client_socket.close()
                except OSError:
                    pass
            self._clients.clear()

        if self._server_socket:
            self._server_socket.close()

        if self._thread:
            self._thread.join(timeout=2.0)

        self.logger.info(f"Stopped listening on {self.host}:{self.port}")
