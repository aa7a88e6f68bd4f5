"""
Protocol Message

The only thing peers exchange: who sent it, what phase it belongs to and an
opaque payload (an encoded deck during shuffle rounds, key material during
the reveal).
"""
import base64
import binascii
from enum import Enum
from typing import Any, Dict


class MessageKind(str, Enum):
    ROUND = "round"
    REVEAL = "reveal"


class ProtocolMessage:
    """Single broadcast message"""
    def __init__(self, sender: int, kind: MessageKind, payload: bytes):
        self.sender = sender
        self.kind = MessageKind(kind)
        self.payload = bytes(payload)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sender": self.sender,
            "kind": self.kind.value,
            "payload": base64.b64encode(self.payload).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProtocolMessage":
        """Raises ValueError for anything that is not a well-formed message."""
        try:
            sender = data["sender"]
            kind = data["kind"]
            payload = base64.b64decode(data["payload"], validate=True)
        except (KeyError, TypeError, binascii.Error) as e:
            raise ValueError(f"malformed message: {e}") from e
        if not isinstance(sender, int) or isinstance(sender, bool):
            raise ValueError(f"malformed message: sender {sender!r} is not an integer")
        return cls(sender, MessageKind(kind), payload)

    def __eq__(self, other) -> bool:
        if not isinstance(other, ProtocolMessage):
            return NotImplemented
        return (self.sender, self.kind, self.payload) == (other.sender, other.kind, other.payload)

    def __hash__(self) -> int:
        return hash((self.sender, self.kind, self.payload))

    def __repr__(self) -> str:
        return f"ProtocolMessage(sender={self.sender}, kind={self.kind.value}, payload={len(self.payload)}B)"
