"""
HTTP Relay Router - Broadcast hub for peers on different hosts
"""
import asyncio
import itertools
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException

from fairorder.config import NETWORK_CONFIG
from fairorder.model import ProtocolMessage


class RelayHub:
    """Registered connections and the messages waiting for each of them"""

    def __init__(self):
        self._queues: Dict[int, asyncio.Queue] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._queues)

    async def register(self) -> int:
        async with self._lock:
            conn_id = next(self._ids)
            self._queues[conn_id] = asyncio.Queue()
        print(f"[Router] Connection {conn_id} registered ({self.connection_count} total)")
        return conn_id

    async def unregister(self, conn_id: int) -> None:
        async with self._lock:
            if conn_id not in self._queues:
                raise KeyError(conn_id)
            del self._queues[conn_id]
        print(f"[Router] Connection {conn_id} unregistered")

    async def broadcast(self, conn_id: int, message: Dict[str, Any]) -> int:
        """Queue `message` for every connection, sender included"""
        async with self._lock:
            if conn_id not in self._queues:
                raise KeyError(conn_id)
            queues = list(self._queues.values())
        for queue in queues:
            queue.put_nowait(message)
        return len(queues)

    async def next_message(self, conn_id: int, wait: float) -> Optional[Dict[str, Any]]:
        """Next message for `conn_id`, or None if nothing arrived within `wait`"""
        async with self._lock:
            queue = self._queues.get(conn_id)
        if queue is None:
            raise KeyError(conn_id)
        try:
            return await asyncio.wait_for(queue.get(), wait)
        except asyncio.TimeoutError:
            return None


def create_app(hub: Optional[RelayHub] = None) -> FastAPI:
    """Build the relay app around `hub` (a fresh one by default)"""
    hub = hub if hub is not None else RelayHub()
    app = FastAPI(title="fairorder relay router")
    app.state.hub = hub

    def _conn_id(request: dict) -> int:
        conn_id = request.get("conn_id")
        if not isinstance(conn_id, int):
            raise HTTPException(status_code=400, detail="conn_id must be an integer")
        return conn_id

    @app.get("/health")
    async def health():
        return {"status": "ok", "connections": hub.connection_count}

    @app.post("/register")
    async def register():
        return {"conn_id": await hub.register()}

    @app.post("/unregister")
    async def unregister(request: dict):
        conn_id = _conn_id(request)
        try:
            await hub.unregister(conn_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"unknown connection {conn_id}")
        return {"status": "ok"}

    @app.post("/send")
    async def send(request: dict):
        """
        Broadcast one protocol message to all registered connections
        """
        conn_id = _conn_id(request)
        try:
            message = ProtocolMessage.from_dict(request.get("message") or {})
        except ValueError as e:
            print(f"[HTTP] ❌ Rejected message from connection {conn_id}: {e}")
            raise HTTPException(status_code=400, detail=str(e))

        try:
            delivered = await hub.broadcast(conn_id, message.to_dict())
        except KeyError:
            raise HTTPException(status_code=404, detail=f"unknown connection {conn_id}")
        return {"delivered": delivered}

    @app.post("/receive")
    async def receive(request: dict):
        """
        Long-poll for the next message; {"message": null} when the wait expires
        """
        conn_id = _conn_id(request)
        wait = request.get("wait", NETWORK_CONFIG["receive_poll_wait"])
        if not isinstance(wait, (int, float)) or wait < 0:
            raise HTTPException(status_code=400, detail="wait must be a non-negative number")
        wait = min(float(wait), NETWORK_CONFIG["max_receive_wait"])

        try:
            message = await hub.next_message(conn_id, wait)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"unknown connection {conn_id}")
        return {"message": message}

    return app


def run_router_server(host: Optional[str] = None, port: Optional[int] = None):
    """Serve a fresh relay router with uvicorn (blocking)"""
    host = host or NETWORK_CONFIG["router_host"]
    port = port or NETWORK_CONFIG["router_port"]
    print(f"[Router] Relay router listening on http://{host}:{port}")
    uvicorn.run(create_app(), host=host, port=port, log_level="warning")
