"""
Peer Node - Joins a router, runs the order consensus and records the outcome
"""
import uuid
from typing import Optional, Tuple

from fairorder.config import PROTOCOL_CONFIG, NETWORK_CONFIG
from fairorder.errors import ConsensusError, TransportError
from fairorder.network import HttpRouter, check_router_health
from fairorder.order_logger import OrderLogger
from fairorder.service.cipher import CommutativeCipher, get_cipher
from fairorder.service.consensus.coordinator import ConsensusCoordinator
from fairorder.service.consensus.machine import OrderMachine
from fairorder.service.router import MemoryRouter, ObservedConnection, Router


class PeerNode:
    """One peer of a distributed run: registration, consensus, logging"""

    def __init__(
        self,
        router: Router,
        peer_count: int,
        self_index: int,
        cipher: Optional[CommutativeCipher] = None,
        debug: Optional[bool] = None,
        run_id: Optional[str] = None,
        log_dir: Optional[str] = None
    ):
        self.router = router
        self.peer_count = peer_count
        self.self_index = self_index
        self.cipher = cipher or get_cipher(PROTOCOL_CONFIG["cipher"])
        self.debug = PROTOCOL_CONFIG["debug"] if debug is None else debug
        self.run_id = run_id or str(uuid.uuid4())[:8]
        self.log_dir = log_dir

        self.machine: Optional[OrderMachine] = None
        self.logger: Optional[OrderLogger] = None

    # ========================================================================
    # Run
    # ========================================================================

    async def run(self, timeout: Optional[float] = None) -> Tuple[int, ...]:
        """
        Register, wait for the other peers when the router can tell, then
        run the consensus. Raises the terminal ConsensusError on failure.
        """
        timeout = PROTOCOL_CONFIG["run_timeout"] if timeout is None else timeout

        self.logger = OrderLogger(self.run_id, self.self_index, log_dir=self.log_dir)
        self.logger.log(f"Run started with {self.peer_count} peers, cipher {self.cipher.name}")

        connection = await self.router.register()
        if self.debug:
            connection = ObservedConnection(connection, f"Conn #{self.self_index}")

        try:
            if isinstance(self.router, HttpRouter):
                await self.router.wait_for_peers(self.peer_count)
                print(f"[Node] All {self.peer_count} peers registered")

            self.machine = OrderMachine(
                self.peer_count,
                self.self_index,
                connection,
                cipher=self.cipher,
                debug=self.debug,
                logger=self.logger
            )
            order = await self.machine.run(timeout)
        except TransportError as e:
            # Failures inside the machine are logged by the machine itself.
            if self.machine is None:
                self.logger.log_failure(e)
            raise
        finally:
            await connection.close()

        print(f"[Node] Peer #{self.self_index}: gameplay order {list(order)}")
        return order


async def join_network_run(
    peer_count: int,
    self_index: int,
    address: Optional[str] = None,
    timeout: Optional[float] = None,
    cipher: Optional[CommutativeCipher] = None
) -> Tuple[int, ...]:
    """Join a run hosted by a relay router"""
    address = address or NETWORK_CONFIG["router_address"]
    router = HttpRouter(address)
    try:
        if not await check_router_health(address, router.client):
            raise TransportError(f"relay router at {address} is not healthy")
        node = PeerNode(router, peer_count, self_index, cipher=cipher)
        return await node.run(timeout)
    finally:
        await router.aclose()


async def simulate_run(
    peer_count: int,
    mean: Optional[float] = None,
    stddev: Optional[float] = None,
    timeout: Optional[float] = None,
    cipher: Optional[CommutativeCipher] = None,
    debug: Optional[bool] = None
) -> Tuple[int, ...]:
    """Run every peer locally over an in-memory router"""
    router = MemoryRouter(mean, stddev)
    coordinator = ConsensusCoordinator(router, cipher=cipher, debug=debug)
    try:
        return await coordinator.run(peer_count, timeout)
    except ConsensusError as e:
        print(f"[Node] Simulation failed: {e}")
        raise
    finally:
        await router.close()
