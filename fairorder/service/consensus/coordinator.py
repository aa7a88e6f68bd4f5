import asyncio
from typing import List, Optional, Tuple

from fairorder.errors import ProtocolViolation
from fairorder.service.cipher import CommutativeCipher
from fairorder.service.router import Connection, ObservedConnection, Router
from fairorder.service.consensus.machine import OrderMachine


class ConsensusCoordinator:
    """Runs one order consensus among local peers sharing a router (Facade)"""

    def __init__(
        self,
        router: Router,
        cipher: Optional[CommutativeCipher] = None,
        debug: Optional[bool] = None
    ):
        self.router = router
        self.cipher = cipher
        self.debug = debug
        self.machines: List[OrderMachine] = []

    async def run(self, peer_count: int, timeout: Optional[float] = None) -> Tuple[int, ...]:
        """
        Register every peer, run all machines concurrently and return the
        gameplay order they agree on.

        The first failing peer's error is raised; the other peers are
        cancelled at that point.
        """
        # Everyone registers before peer 1 broadcasts the first round.
        connections: List[Connection] = []
        for i in range(peer_count):
            connection = await self.router.register()
            if self.debug:
                connection = ObservedConnection(connection, f"Conn #{i + 1}")
            connections.append(connection)

        self.machines = [
            OrderMachine(peer_count, i + 1, connection, cipher=self.cipher, debug=self.debug)
            for i, connection in enumerate(connections)
        ]
        tasks = [asyncio.create_task(machine.run(timeout)) for machine in self.machines]

        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            for connection in connections:
                await connection.close()

        for task in tasks:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()

        orders = [task.result() for task in tasks]
        if len(set(orders)) != 1:
            raise ProtocolViolation(f"peers disagree on the gameplay order: {orders}")
        return orders[0]
