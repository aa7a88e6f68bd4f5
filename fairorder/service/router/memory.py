"""
In-memory Router - broadcast among local peers with simulated latency

Each recipient has its own delivery task, so one slow recipient never stalls
delivery to the others. A recipient sees messages in the order the router
accepted them: per-sender order holds, and a message sent in reaction to
another one never overtakes it.
"""
import asyncio
import itertools
import random
from typing import List, Optional

from fairorder.config import LATENCY_CONFIG
from fairorder.errors import ConnectionClosedError
from fairorder.model import ProtocolMessage

from .base import Connection, Router


class MemoryConnection(Connection):
    def __init__(self, router: "MemoryRouter", conn_id: int):
        self.conn_id = conn_id
        self.closed = False
        self._router = router
        self._pending: asyncio.Queue = asyncio.Queue()  # accepted, not yet delivered
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._delivery = asyncio.create_task(self._deliver())

    async def _deliver(self):
        while True:
            message = await self._pending.get()
            delay = self._router.sample_latency()
            if delay > 0:
                await asyncio.sleep(delay)
            self._inbox.put_nowait(message)

    async def send(self, message: ProtocolMessage) -> None:
        if self.closed:
            raise ConnectionClosedError(f"connection {self.conn_id} is closed")
        for recipient in await self._router.connections():
            recipient._pending.put_nowait(message)

    async def receive(self) -> ProtocolMessage:
        if self.closed:
            raise ConnectionClosedError(f"connection {self.conn_id} is closed")
        message = await self._inbox.get()
        if message is None:
            raise ConnectionClosedError(f"connection {self.conn_id} is closed")
        return message

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._router._unregister(self)
        self._delivery.cancel()
        await asyncio.gather(self._delivery, return_exceptions=True)
        # Wake up a pending receive
        self._inbox.put_nowait(None)


class MemoryRouter(Router):
    """
    Router for tests and local simulations.

    Latency per delivered message is drawn independently from a normal
    distribution with the given mean and standard deviation (seconds) and
    clipped at zero.
    """

    def __init__(self, mean: Optional[float] = None, stddev: Optional[float] = None, rng: Optional[random.Random] = None):
        self.mean = LATENCY_CONFIG["mean"] if mean is None else mean
        self.stddev = LATENCY_CONFIG["stddev"] if stddev is None else stddev
        self._rng = rng or random.SystemRandom()
        self._ids = itertools.count(1)
        self._connections: List[MemoryConnection] = []
        self._lock = asyncio.Lock()

    def sample_latency(self) -> float:
        if self.mean == 0 and self.stddev == 0:
            return 0.0
        return max(0.0, self._rng.gauss(self.mean, self.stddev))

    async def register(self) -> MemoryConnection:
        conn = MemoryConnection(self, next(self._ids))
        async with self._lock:
            self._connections.append(conn)
        return conn

    async def connections(self) -> List[MemoryConnection]:
        """Snapshot of registered connections"""
        async with self._lock:
            return list(self._connections)

    async def _unregister(self, conn: MemoryConnection) -> None:
        async with self._lock:
            if conn in self._connections:
                self._connections.remove(conn)

    async def close(self) -> None:
        for conn in await self.connections():
            await conn.close()
