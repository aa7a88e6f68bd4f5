from fairorder.model import ProtocolMessage

from .base import Connection


class ObservedConnection(Connection):
    """Prints every message passing through a connection"""

    def __init__(self, connection: Connection, label: str):
        self.connection = connection
        self.label = label

    async def send(self, message: ProtocolMessage) -> None:
        print(f"[{self.label}] --> {message!r}")
        await self.connection.send(message)

    async def receive(self) -> ProtocolMessage:
        message = await self.connection.receive()
        print(f"[{self.label}] <-- {message!r}")
        return message

    async def close(self) -> None:
        await self.connection.close()
