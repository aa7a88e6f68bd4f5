"""
Network Communication Module - Relay router client and health checks
"""
import asyncio
from typing import Optional

import httpx

from fairorder.config import NETWORK_CONFIG
from fairorder.errors import ConnectionClosedError, TransportError
from fairorder.model import ProtocolMessage
from fairorder.service.router import Connection, Router


async def check_router_health(address: str, client: Optional[httpx.AsyncClient] = None) -> bool:
    """
    Check if a relay router is healthy and responding.

    Args:
        address: Router server URL
        client: Client to reuse (a short-lived one is created otherwise)

    Returns:
        True if healthy, False otherwise
    """
    try:
        if client is not None:
            response = await client.get(f"{address}/health")
        else:
            async with httpx.AsyncClient(timeout=5) as own_client:
                response = await own_client.get(f"{address}/health")
        response.raise_for_status()
        return response.json().get("status") == "ok"
    except (httpx.HTTPError, ValueError):
        return False


class HttpConnection(Connection):
    """Connection to a relay router; receive is a long-poll loop"""

    def __init__(self, router: "HttpRouter", conn_id: int):
        self.router = router
        self.conn_id = conn_id
        self.closed = False

    async def send(self, message: ProtocolMessage) -> None:
        await self.router._post("/send", {
            "conn_id": self.conn_id,
            "message": message.to_dict()
        })

    async def receive(self) -> ProtocolMessage:
        while True:
            data = await self.router._post("/receive", {
                "conn_id": self.conn_id,
                "wait": self.router.poll_wait
            })
            if data.get("message") is None:
                continue
            try:
                return ProtocolMessage.from_dict(data["message"])
            except ValueError as e:
                raise TransportError(f"router delivered a malformed message: {e}") from e

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self.router._post("/unregister", {"conn_id": self.conn_id})
        except TransportError as e:
            print(f"[Network] ⚠ Could not unregister connection {self.conn_id}: {e}")


class HttpRouter(Router):
    """Router backed by a relay server (see fairorder.http_server)"""

    def __init__(
        self,
        address: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        poll_wait: Optional[float] = None
    ):
        self.address = (address or NETWORK_CONFIG["router_address"]).rstrip("/")
        self.poll_wait = NETWORK_CONFIG["receive_poll_wait"] if poll_wait is None else poll_wait
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=NETWORK_CONFIG["connection_timeout"] + self.poll_wait
        )

    async def register(self) -> HttpConnection:
        data = await self._post("/register", {})
        print(f"[Network] Registered at {self.address} as connection {data['conn_id']}")
        return HttpConnection(self, data["conn_id"])

    async def connection_count(self) -> int:
        try:
            response = await self.client.get(f"{self.address}/health")
            response.raise_for_status()
            return response.json()["connections"]
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise TransportError(f"health check failed: {e}") from e

    async def wait_for_peers(self, peer_count: int, timeout: Optional[float] = None):
        """Block until at least `peer_count` connections are registered"""
        timeout = NETWORK_CONFIG["peer_wait_timeout"] if timeout is None else timeout
        interval = NETWORK_CONFIG["peer_wait_interval"]

        async def poll():
            while await self.connection_count() < peer_count:
                await asyncio.sleep(interval)

        try:
            await asyncio.wait_for(poll(), timeout)
        except asyncio.TimeoutError:
            raise TransportError(f"fewer than {peer_count} peers registered after {timeout}s") from None

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()

    async def _post(self, path: str, payload: dict) -> dict:
        try:
            response = await self.client.post(f"{self.address}{path}", json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise ConnectionClosedError(f"{path}: connection is not registered") from e
            raise TransportError(f"{path}: HTTP {e.response.status_code}: {e.response.text}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{path}: {e}") from e
        except ValueError as e:
            raise TransportError(f"{path}: invalid JSON response: {e}") from e
