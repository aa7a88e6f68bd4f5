"""
Protocol Models Package

Messages exchanged between peers and the per-peer round state.
"""

from .message import MessageKind, ProtocolMessage
from .round_state import RoundState

__all__ = ["MessageKind", "ProtocolMessage", "RoundState"]
