from abc import ABC, abstractmethod

from fairorder.model import ProtocolMessage

# ============================================================================
# Router capability
# ============================================================================

class Connection(ABC):
    """
    Duplex endpoint of one peer.

    `send` broadcasts to every registered connection, the sender included,
    without reordering messages from the same sender. `receive` blocks until
    the next message arrives; callers impose deadlines by cancelling.
    """

    @abstractmethod
    async def send(self, message: ProtocolMessage) -> None:
        """Raises TransportError if the message cannot be handed over."""

    @abstractmethod
    async def receive(self) -> ProtocolMessage:
        """Raises TransportError, or ConnectionClosedError at end of stream."""

    async def close(self) -> None:
        return None


class Router(ABC):
    """Registers peers; each registration yields a broadcast Connection"""

    @abstractmethod
    async def register(self) -> Connection:
        """Raises TransportError if the connection cannot be established."""
