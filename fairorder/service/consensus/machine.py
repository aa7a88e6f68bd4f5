"""
Order Consensus State Machine - one instance per peer

Peers agree on a gameplay order nobody can predict or steer:

1. Shuffle rounds, in turn order 1..N. Peer 1 starts from the plaintext deck
   of ranks 0..N-1. On its turn each peer shuffles the deck, adds one
   encryption layer with a fresh key to every card and broadcasts it. Every
   peer (the sender too, via the echo) validates every round.
2. Reveal, in turn order 1..N. Once the deck has gone full circle, each peer
   discloses its key. A key must match the layer its owner added.
3. Every peer removes all layers, in any order, and reads the ranks: the rank
   at position i belongs to peer i+1, and peers play in ascending rank.

Any validation failure is terminal. The machine never retries.
"""
import asyncio
from enum import Enum
from typing import Dict, Optional, Tuple

from fairorder.config import PROTOCOL_CONFIG
from fairorder.errors import (
    ConfigurationError,
    ConsensusError,
    ConsensusTimeout,
    ProtocolViolation
)
from fairorder.model import MessageKind, ProtocolMessage, RoundState
from fairorder.order_logger import OrderLogger
from fairorder.service.cipher import CommutativeCipher, Key, get_cipher
from fairorder.service.router import Connection
from fairorder.service.consensus.deck import (
    ShuffleMessage,
    new_deck,
    shuffle_and_encrypt,
    decrypt_deck,
    derive_gameplay_order,
    encode_deck,
    decode_deck
)

# The lowest-indexed peer starts the first shuffle round.
INITIATOR = 1


class State(Enum):
    INIT = "init"
    AWAIT_ROUND = "await_round"
    REVEAL = "reveal"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = frozenset({State.DONE, State.FAILED})


class OrderMachine:
    """Drives one peer through a consensus run"""

    def __init__(
        self,
        peer_count: int,
        self_index: int,
        connection: Optional[Connection],
        cipher: Optional[CommutativeCipher] = None,
        debug: Optional[bool] = None,
        logger: Optional[OrderLogger] = None
    ):
        self.peer_count = peer_count
        self.self_index = self_index
        self.connection = connection
        self.cipher = cipher if cipher is not None else get_cipher(PROTOCOL_CONFIG["cipher"])
        self.debug = PROTOCOL_CONFIG["debug"] if debug is None else debug
        self.logger = logger

        self.state = State.INIT
        self.round: Optional[RoundState] = None
        self.order: Optional[Tuple[int, ...]] = None
        self.error: Optional[ConsensusError] = None
        self.transcript = []  # (state, sender, kind) per accepted message

        self._handlers = {
            State.INIT: self._init,
            State.AWAIT_ROUND: self._await_round,
            State.REVEAL: self._reveal,
        }

    # ========================================================================
    # Driving
    # ========================================================================

    async def run(self, timeout: Optional[float] = None) -> Tuple[int, ...]:
        """
        Run until DONE or FAILED.

        Returns the gameplay order, or raises the terminal error. With a
        timeout, the run is cancelled at the deadline and fails with
        ConsensusTimeout; nothing is sent after that.
        """
        if self.state is not State.INIT:
            raise RuntimeError(f"machine already ran (state {self.state.name})")

        try:
            if timeout is None:
                await self._drive()
            else:
                await asyncio.wait_for(self._drive(), timeout)
        except asyncio.TimeoutError:
            self._fail(ConsensusTimeout(
                f"no gameplay order after {timeout}s (stopped in {self.state.name})"
            ))
        except ConsensusError as e:
            self._fail(e)

        if self.error is not None:
            raise self.error
        return self.order

    async def _drive(self):
        while self.state not in TERMINAL_STATES:
            handler = self._handlers[self.state]
            self.state = await handler()

    def _fail(self, error: ConsensusError):
        self._log(f"failed in {self.state.name}: {error}")
        self.state = State.FAILED
        self.error = error
        if self.logger:
            self.logger.log_failure(error)

    # ========================================================================
    # States
    # ========================================================================

    async def _init(self) -> State:
        self._validate_config()
        self.round = RoundState(self.peer_count, self.self_index)
        if self.self_index == INITIATOR:
            await self._shuffle_and_broadcast(new_deck(self.peer_count))
        return State.AWAIT_ROUND

    async def _await_round(self) -> State:
        message = await self._receive()
        sender = self._expect(message, MessageKind.ROUND)

        try:
            deck = decode_deck(message.payload)
        except ValueError as e:
            raise ProtocolViolation(f"undecodable deck: {e}", peer=sender) from e
        layer = self._validate_round(sender, deck)

        self.round.complete_round(sender, layer, deck)
        self.transcript.append((State.AWAIT_ROUND, sender, MessageKind.ROUND))
        self._log(f"round {self.round.rounds_completed}/{self.peer_count} from #{sender} ok")
        if self.logger:
            self.logger.log_round(self.round.rounds_completed, sender, layer)

        if self.round.advance_turn() == INITIATOR:
            # Full circle: every peer has shuffled and encrypted once.
            return State.REVEAL
        if self.round.is_my_turn():
            await self._shuffle_and_broadcast(deck.copy())
        return State.AWAIT_ROUND

    async def _reveal(self) -> State:
        if self.round.is_my_turn() and self.self_index not in self.round.revealed:
            self._log(f"disclosing key {self.round.key.identifier.hex()[:16]}")
            await self._send(MessageKind.REVEAL, self.cipher.export_key(self.round.key))

        message = await self._receive()
        sender = self._expect(message, MessageKind.REVEAL)

        try:
            key = self.cipher.import_key(message.payload)
        except ValueError as e:
            raise ProtocolViolation(f"undecodable key: {e}", peer=sender) from e
        if key.identifier != self.round.digests[sender]:
            raise ProtocolViolation(
                "disclosed key does not match the layer added during its shuffle round",
                peer=sender
            )

        self.round.revealed[sender] = key
        self.transcript.append((State.REVEAL, sender, MessageKind.REVEAL))
        if self.logger:
            self.logger.log_reveal(sender, key.identifier)

        self.round.advance_turn()
        if len(self.round.revealed) < self.peer_count:
            return State.REVEAL

        self.order = self._derive_order(self.round.revealed)
        self._log(f"gameplay order: {list(self.order)}")
        if self.logger:
            self.logger.log_order(self.order)
        return State.DONE

    # ========================================================================
    # Validation
    # ========================================================================

    def _validate_config(self):
        min_peers = PROTOCOL_CONFIG["min_peers"]
        max_peers = PROTOCOL_CONFIG["max_peers"]
        if not isinstance(self.peer_count, int) or self.peer_count < min_peers:
            raise ConfigurationError(
                f"too few peers: got {self.peer_count}, want {min_peers} or more"
            )
        if self.peer_count > max_peers:
            raise ConfigurationError(
                f"too many peers: got {self.peer_count}, want at most {max_peers}"
            )
        if not isinstance(self.self_index, int) or not 1 <= self.self_index <= self.peer_count:
            raise ConfigurationError(
                f"invalid peer identification: {self.self_index} not in range [1,{self.peer_count}]"
            )
        if self.connection is None:
            raise ConfigurationError("connection is missing")
        if not isinstance(self.cipher, CommutativeCipher):
            raise ConfigurationError(f"not a commutative cipher: {self.cipher!r}")

    def _expect(self, message: ProtocolMessage, kind: MessageKind) -> int:
        """Sender of `message` if it is the turn holder's message of `kind`."""
        if message.sender != self.round.turn_index:
            raise ProtocolViolation(
                f"message from unexpected peer: got {message.sender}, want {self.round.turn_index}",
                peer=message.sender
            )
        if message.kind is not kind:
            raise ProtocolViolation(
                f"unexpected {message.kind.value} message in {self.state.name}",
                peer=message.sender
            )
        return message.sender

    def _validate_round(self, sender: int, deck: ShuffleMessage) -> bytes:
        """Checks a shuffle round and returns the layer `sender` added."""
        if len(deck) != self.peer_count:
            raise ProtocolViolation(
                f"deck has {len(deck)} cards, want {self.peer_count}", peer=sender
            )

        own_key = self.round.key
        if own_key is not None and own_key.identifier in self.round.layers:
            if not all(self.cipher.can_decrypt(card, own_key) for card in deck.cards):
                raise ProtocolViolation(
                    "deck no longer decrypts with our own key (corrupted)", peer=sender
                )

        layers = deck.layers()
        if layers is None:
            raise ProtocolViolation("cards carry different encryption layers", peer=sender)
        previous = self.round.layers
        added = layers - previous
        if not previous <= layers or len(added) != 1:
            raise ProtocolViolation(
                f"round must add exactly one encryption layer: had {len(previous)}, got {len(layers)}",
                peer=sender
            )

        if not all(self.cipher.is_valid_ciphertext(card) for card in deck.cards):
            raise ProtocolViolation("card is not a valid ciphertext", peer=sender)
        if deck.has_duplicates(self.cipher.distinct_nonces):
            raise ProtocolViolation("deck contains duplicated cards or nonces", peer=sender)

        if sender == self.self_index and deck != self.round.sent_deck:
            raise ProtocolViolation("echo of our own round differs from what was sent", peer=sender)

        return next(iter(added))

    def _derive_order(self, keys: Dict[int, Key]) -> Tuple[int, ...]:
        deck = decrypt_deck(self.round.last_deck.copy(), self.cipher, keys.values())
        return derive_gameplay_order(deck)

    # ========================================================================
    # I/O
    # ========================================================================

    async def _shuffle_and_broadcast(self, deck: ShuffleMessage):
        key = self.cipher.generate_key()
        self.round.key = key
        shuffle_and_encrypt(deck, self.cipher, key)
        self.round.sent_deck = deck.copy()
        self._log(f"shuffled and added layer {key.identifier.hex()[:16]}")
        await self._send(MessageKind.ROUND, encode_deck(deck))

    async def _send(self, kind: MessageKind, payload: bytes):
        message = ProtocolMessage(self.self_index, kind, payload)
        self._log(f"Out <- {message!r}")
        await self.connection.send(message)

    async def _receive(self) -> ProtocolMessage:
        message = await self.connection.receive()
        self._log(f"In -> {message!r}")
        return message

    def _log(self, message: str):
        if self.debug:
            print(f"[Player #{self.self_index}] {message}")
