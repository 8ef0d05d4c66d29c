"""
Line-delimited JSON protocol spoken on both the client and peer transports.
"""

import json
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field


class MessageType(Enum):
    """Protocol message types."""
    # Client commands
    COMMAND = "CMD"
    RESPONSE = "RSP"
    ERROR = "ERR"

    # Peer transport
    REPLICATE = "REP"
    SYNC_REQUEST = "SRQ"
    SYNC_RESPONSE = "SRS"


@dataclass
class Message:
    """
    Protocol message structure.

    Format: LENGTH:JSON_PAYLOAD\n
    """
    msg_type: MessageType
    payload: Dict[str, Any] = field(default_factory=dict)
    sender_id: str = ""

    def encode(self) -> bytes:
        """Encode message to bytes for transmission."""
        data = {
            "type": self.msg_type.value,
            "sender": self.sender_id,
            "payload": self.payload
        }
        json_str = json.dumps(data)
        msg = f"{len(json_str)}:{json_str}\n"
        return msg.encode("utf-8")

    @classmethod
    def decode(cls, data: bytes) -> 'Message':
        """Decode message from bytes."""
        text = data.decode("utf-8").strip()

        length, sep, body = text.partition(":")
        if not sep or not length.isdigit():
            raise ValueError(f"malformed frame: {text[:40]!r}")
        if int(length) != len(body):
            raise ValueError(f"frame length {length} does not match body length {len(body)}")

        parsed = json.loads(body)
        return cls(
            msg_type=MessageType(parsed["type"]),
            payload=parsed.get("payload", {}),
            sender_id=parsed.get("sender", "")
        )


class Protocol:
    """
    Helpers for building and moving messages.
    """

    BUFFER_SIZE = 65536

    @staticmethod
    def create_command(command: str, args: List[str], sender_id: str = "") -> Message:
        """Create a client command message."""
        return Message(
            msg_type=MessageType.COMMAND,
            payload={"cmd": command.upper(), "args": args},
            sender_id=sender_id
        )

    @staticmethod
    def create_response(success: bool, data: Any = None, error: str = None) -> Message:
        """Create a response message."""
        return Message(
            msg_type=MessageType.RESPONSE if success else MessageType.ERROR,
            payload={"success": success, "data": data, "error": error}
        )

    @staticmethod
    def create_replicate(sender_id: str, key: str, value: str, version: int) -> Message:
        """Push one write to a peer."""
        return Message(
            msg_type=MessageType.REPLICATE,
            payload={"key": key, "value": value, "version": version},
            sender_id=sender_id
        )

    @staticmethod
    def create_sync_request(sender_id: str) -> Message:
        return Message(msg_type=MessageType.SYNC_REQUEST, sender_id=sender_id)

    @staticmethod
    def create_sync_response(sender_id: str, data: Dict[str, Tuple[str, int]]) -> Message:
        return Message(
            msg_type=MessageType.SYNC_RESPONSE,
            payload={"data": {key: [value, version] for key, (value, version) in data.items()}},
            sender_id=sender_id
        )

    @staticmethod
    def parse_command(payload: Dict) -> tuple:
        """Parse a command payload into (command, args)."""
        return payload.get("cmd", ""), payload.get("args", [])

    @staticmethod
    def read_message(sock, buffer: bytearray) -> Optional[Message]:
        """
        Read one message from a socket.

        Bytes past the first frame stay in buffer for the next call.
        Returns None when the peer closed the connection.
        """
        while b"\n" not in buffer:
            chunk = sock.recv(Protocol.BUFFER_SIZE)
            if not chunk:
                return None
            buffer.extend(chunk)

        index = buffer.index(b"\n")
        line = bytes(buffer[:index])
        del buffer[:index + 1]
        return Message.decode(line)

    @staticmethod
    def send_message(sock, message: Message):
        """Send a message through a socket."""
        sock.sendall(message.encode())
