"""
Router Service - broadcast message delivery among peers

Structure:
- base.py: Router / Connection capability
- memory.py: in-memory realization with simulated latency
- observed.py: debug wrapper printing traffic

The network realization lives in fairorder.network (client) and
fairorder.http_server (relay).
"""

from .base import Connection, Router
from .memory import MemoryConnection, MemoryRouter
from .observed import ObservedConnection

__all__ = [
    'Connection',
    'Router',
    'MemoryConnection',
    'MemoryRouter',
    'ObservedConnection',
]
