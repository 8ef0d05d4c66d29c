"""
Reference store node launched by the cluster harness.

Writes are applied locally, logged to the AOF and pushed to every peer.
On start a node replays its AOF and then pulls full copies from reachable
peers, so a restarted node catches up on writes it missed.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List

from ..config import TLSInfo
from .aof import AOFEntry, AOFPersistence
from .client import TCPClient
from .kv_store import KVStore
from .protocol import Protocol, Message, MessageType
from .server import TCPServer


@dataclass
class StoreConfig:
    """Configuration for a store node process."""
    name: str
    data_dir: str
    host: str = "127.0.0.1"
    client_port: int = 21300
    peer_port: int = 21301
    peers: Dict[str, str] = field(default_factory=dict)  # name -> host:peer_port
    client_tls: TLSInfo = field(default_factory=TLSInfo)
    peer_tls: TLSInfo = field(default_factory=TLSInfo)
    peer_timeout: float = 2.0


class StoreNode:
    """A single store node serving one client and one peer transport."""

    def __init__(self, config: StoreConfig):
        self.config = config
        self.name = config.name
        self.store = KVStore()
        self.aof = AOFPersistence(config.data_dir)
        self.logger = logging.getLogger(f"minicluster.store.{config.name}")

        client_context = None if config.client_tls.empty() else config.client_tls.server_context()
        peer_context = None if config.peer_tls.empty() else config.peer_tls.server_context()

        self.client_server = TCPServer(config.host, config.client_port,
                                       self._handle_client_message,
                                       ssl_context=client_context, name=f"{config.name}.client")
        self.peer_server = TCPServer(config.host, config.peer_port,
                                     self._handle_peer_message,
                                     ssl_context=peer_context, name=f"{config.name}.peer")

        outbound = None if config.peer_tls.empty() else config.peer_tls.client_context()
        self.peers: Dict[str, TCPClient] = {}
        for peer_name, address in config.peers.items():
            if peer_name == config.name:
                continue
            host, _, port = address.rpartition(":")
            self.peers[peer_name] = TCPClient(host, int(port), timeout=config.peer_timeout,
                                              node_id=config.name, ssl_context=outbound)
        self._write_lock = threading.Lock()

    def start(self):
        """Recover, catch up from peers, then serve clients."""
        self.logger.info(f"Starting node {self.name} with peers {sorted(self.peers)}")
        count = self.aof.replay(self._apply_aof_entry)
        self.logger.info(f"Replayed {count} AOF entries, {self.store.size()} keys")

        self.peer_server.start()
        self.sync_from_peers()
        self.client_server.start()
        self.logger.info(f"Node {self.name} started")

    def stop(self):
        self.logger.info(f"Stopping node {self.name}")
        self.client_server.stop()
        self.peer_server.stop()
        for peer in self.peers.values():
            peer.disconnect()
        self.aof.close()
        self.logger.info(f"Node {self.name} stopped")

    def _apply_aof_entry(self, entry: AOFEntry):
        self.store.apply(entry.key, entry.value, entry.version)

    def _apply_and_log(self, key: str, value: str, version: int) -> bool:
        with self._write_lock:
            if not self.store.apply(key, value, version):
                return False
            self.aof.append(key, value, version)
            return True

    def sync_from_peers(self) -> int:
        """Pull and merge every reachable peer's data; returns keys changed."""
        changed = 0
        for peer_name, peer in self.peers.items():
            try:
                response = self._send_to_peer(peer, Protocol.create_sync_request(self.name))
            except (OSError, ValueError) as e:
                self.logger.info(f"Peer {peer_name} unavailable for sync: {e}")
                continue
            if response.msg_type != MessageType.SYNC_RESPONSE:
                self.logger.warning(f"Unexpected sync reply from {peer_name}: {response.payload}")
                continue
            for key, (value, version) in response.payload.get("data", {}).items():
                if self._apply_and_log(key, value, version):
                    changed += 1
        if changed:
            self.logger.info(f"Caught up {changed} keys from peers")
        return changed

    def _send_to_peer(self, peer: TCPClient, message: Message) -> Message:
        """Send to a peer, reconnecting once if the pooled connection went stale."""
        try:
            return peer.send_message(message)
        except (OSError, ValueError):
            if not peer.was_connected:
                raise
        return peer.send_message(message)

    def replicate(self, key: str, value: str, version: int) -> List[str]:
        """Push a write to every peer; returns the names of peers that acknowledged."""
        acked = []
        message = Protocol.create_replicate(self.name, key, value, version)
        for peer_name, peer in self.peers.items():
            try:
                response = self._send_to_peer(peer, message)
            except (OSError, ValueError) as e:
                self.logger.warning(f"Replication of {key!r} to {peer_name} failed: {e}")
                continue
            if response.payload.get("success"):
                acked.append(peer_name)
        return acked

    def _handle_client_message(self, message: Message) -> Message:
        if message.msg_type != MessageType.COMMAND:
            return Protocol.create_response(False, error=f"unexpected {message.msg_type.value} on client port")

        cmd, args = Protocol.parse_command(message.payload)

        if cmd == "PING":
            return Protocol.create_response(True, data="PONG")
        elif cmd == "SET":
            if len(args) != 2:
                return Protocol.create_response(False, error="usage: SET key value")
            return self._handle_set(str(args[0]), str(args[1]))
        elif cmd == "GET":
            if len(args) != 1:
                return Protocol.create_response(False, error="usage: GET key")
            value, found = self.store.get(args[0])
            return Protocol.create_response(True, data={
                "found": found,
                "value": value,
                "version": self.store.get_version(args[0]),
            })
        elif cmd == "KEYS":
            pattern = args[0] if args else "*"
            return Protocol.create_response(True, data=self.store.keys(pattern))
        elif cmd == "STATUS":
            return Protocol.create_response(True, data=self._status())
        else:
            return Protocol.create_response(False, error=f"unknown command: {cmd}")

    def _handle_set(self, key: str, value: str) -> Message:
        with self._write_lock:
            version = self.store.set(key, value)
            self.aof.append(key, value, version)
        acked = self.replicate(key, value, version)
        return Protocol.create_response(True, data={"version": version, "replicas": acked})

    def _handle_peer_message(self, message: Message) -> Message:
        if message.msg_type == MessageType.REPLICATE:
            payload = message.payload
            applied = self._apply_and_log(payload["key"], payload["value"], int(payload["version"]))
            return Protocol.create_response(True, data={"applied": applied})
        elif message.msg_type == MessageType.SYNC_REQUEST:
            self.logger.debug(f"Sync requested by {message.sender_id}")
            return Protocol.create_sync_response(self.name, self.store.get_all_data())
        return Protocol.create_response(False, error=f"unexpected {message.msg_type.value} on peer port")

    def _status(self) -> Dict:
        return {
            "name": self.name,
            "keys": self.store.size(),
            "peers": sorted(self.peers),
            "aof_bytes": self.aof.get_size(),
            "client_tls": not self.config.client_tls.empty(),
            "peer_tls": not self.config.peer_tls.empty(),
        }
