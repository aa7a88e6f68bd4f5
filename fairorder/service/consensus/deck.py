import json
import secrets
from typing import Iterable, List, Optional, Tuple

from fairorder.errors import ProtocolViolation
from fairorder.service.cipher import (
    CipherMessage,
    CommutativeCipher,
    Key,
    serialize_card,
    deserialize_card
)

# Shuffles must not be predictable by other peers.
_random = secrets.SystemRandom()


class ShuffleMessage:
    """
    The deck circulated during shuffle rounds: one card per peer.

    Each card is a one-byte rank 0..N-1 carrying its own encryption layers,
    so shuffling moves every card together with the nonces needed to
    decrypt it.
    """
    def __init__(self, cards: List[CipherMessage]):
        self.cards = cards

    def __len__(self) -> int:
        return len(self.cards)

    def copy(self) -> "ShuffleMessage":
        return ShuffleMessage([card.copy() for card in self.cards])

    def layers(self) -> Optional[frozenset]:
        """Layer identifiers shared by every card, or None if cards disagree."""
        if not self.cards:
            return frozenset()
        first = self.cards[0].layers
        if any(card.layers != first for card in self.cards[1:]):
            return None
        return first

    def has_duplicates(self, distinct_nonces: bool = True) -> bool:
        """
        Identical cards, or (with `distinct_nonces`) one layer nonce used on
        two cards.
        """
        seen_cards = set()
        seen_nonces = set()
        for card in self.cards:
            fingerprint = (bytes(card.data), frozenset(card.nonces.items()))
            if fingerprint in seen_cards:
                return True
            seen_cards.add(fingerprint)
            if not distinct_nonces:
                continue
            for entry in card.nonces.items():
                if entry in seen_nonces:
                    return True
                seen_nonces.add(entry)
        return False

    def __eq__(self, other) -> bool:
        if not isinstance(other, ShuffleMessage):
            return NotImplemented
        return self.cards == other.cards

    __hash__ = None

    def __repr__(self) -> str:
        return f"ShuffleMessage(cards={len(self.cards)}, layers={len(self.cards[0].nonces) if self.cards else 0})"


def new_deck(peer_count: int) -> ShuffleMessage:
    """Plaintext deck: ranks 0..N-1 in order"""
    return ShuffleMessage([CipherMessage(bytes([rank])) for rank in range(peer_count)])


def shuffle_and_encrypt(deck: ShuffleMessage, cipher: CommutativeCipher, key: Key) -> ShuffleMessage:
    """Shuffle cards in place, then add `key`'s layer to every card"""
    _random.shuffle(deck.cards)
    for card in deck.cards:
        cipher.encrypt(card, key)
    return deck


def decrypt_deck(deck: ShuffleMessage, cipher: CommutativeCipher, keys: Iterable[Key]) -> ShuffleMessage:
    """Remove every key's layer from every card; any key order works"""
    keys = list(keys)
    for card in deck.cards:
        for key in keys:
            cipher.decrypt(card, key)
    return deck


def derive_gameplay_order(deck: ShuffleMessage) -> Tuple[int, ...]:
    """
    Gameplay order from a fully decrypted deck.

    The rank at position i belongs to peer i+1; peers play in ascending rank.
    """
    ranks = []
    for position, card in enumerate(deck.cards):
        if card.nonces or len(card.data) != 1:
            raise ProtocolViolation(f"card {position} did not decrypt to a single rank byte")
        ranks.append(card.data[0])

    if sorted(ranks) != list(range(len(ranks))):
        raise ProtocolViolation(f"decrypted ranks are not a permutation: {ranks}")

    return tuple(sorted(range(1, len(ranks) + 1), key=lambda peer: ranks[peer - 1]))


def encode_deck(deck: ShuffleMessage) -> bytes:
    return json.dumps(
        {"cards": [serialize_card(card) for card in deck.cards]},
        sort_keys=True,
        separators=(",", ":"),
    ).encode("utf-8")


def decode_deck(payload: bytes) -> ShuffleMessage:
    """Raises ValueError if the payload is not an encoded deck."""
    try:
        obj = json.loads(payload.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise ValueError(f"deck is not UTF-8: {e}") from e
    if not isinstance(obj, dict) or not isinstance(obj.get("cards"), list):
        raise ValueError("deck must be an object with a cards list")
    return ShuffleMessage([deserialize_card(card) for card in obj["cards"]])
