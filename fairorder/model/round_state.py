"""
Protocol Round State

Per-peer bookkeeping for one consensus run. Owned and mutated only by that
peer's state machine.
"""
from typing import Any, Dict, Optional


class RoundState:
    """
    Tracks whose turn it is and what has been validated so far.

    `digests` maps each peer that completed a shuffle round to the identifier
    of the encryption layer it added; at reveal time a disclosed key must
    match it. `turn_index` cycles through 1..N.
    """
    def __init__(self, peer_count: int, self_index: int):
        self.peer_count = peer_count
        self.self_index = self_index
        self.turn_index = 1

        self.key: Optional[Any] = None
        self.digests: Dict[int, bytes] = {}
        self.revealed: Dict[int, Any] = {}

        self.last_deck: Optional[Any] = None  # last validated deck
        self.sent_deck: Optional[Any] = None  # what this peer broadcast
        self.rounds_completed = 0

    @property
    def layers(self) -> frozenset:
        return frozenset(self.digests.values())

    def is_my_turn(self) -> bool:
        return self.turn_index == self.self_index

    def advance_turn(self) -> int:
        self.turn_index = self.turn_index % self.peer_count + 1
        return self.turn_index

    def complete_round(self, sender: int, layer: bytes, deck) -> None:
        self.digests[sender] = layer
        self.last_deck = deck
        self.rounds_completed += 1
