"""
Error taxonomy for order consensus runs.

`ConsensusError` and its subclasses are terminal outcomes of a run: the state
machine stops and reports exactly one of them. `CipherMisuseError` is a
contract violation of the commutative cipher (a bug in the caller, not a
remote peer's misbehaviour) and is never converted into a run failure.
"""
from typing import Optional


class FairOrderError(Exception):
    """Base class for all fairorder errors"""


class ConsensusError(FairOrderError):
    """A consensus run terminated without a gameplay order"""


class ConfigurationError(ConsensusError):
    """Invalid peer count, self index, cipher or missing connection"""


class ProtocolViolation(ConsensusError):
    """A peer sent something the protocol does not allow"""

    def __init__(self, message: str, peer: Optional[int] = None):
        self.peer = peer
        if peer is not None:
            message = f"peer #{peer}: {message}"
        super().__init__(message)


class ConsensusTimeout(ConsensusError):
    """The run deadline expired before a gameplay order was computed"""


class TransportError(ConsensusError):
    """The router could not deliver or receive a message"""


class ConnectionClosedError(TransportError):
    """End of stream: the connection was closed"""


class CipherMisuseError(RuntimeError):
    """Commutative cipher precondition violated"""


class PlaintextTooLongError(CipherMisuseError):
    """Input does not fit below the SRA modulus"""
