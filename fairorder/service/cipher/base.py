"""
Commutative Cipher capability.

A message encrypted under several keys can be decrypted with the same keys in
any order. Every message records, per key identifier, the nonce used for that
key's layer; a key may add at most one layer to a message and can only remove
a layer it added.
"""
import hashlib
import secrets
from abc import ABC, abstractmethod
from typing import Dict, Optional

from fairorder.errors import CipherMisuseError

IDENTIFIER_SIZE = 32  # BLAKE2b-256
NONCE_SIZE = 16


def key_digest(secret: bytes) -> bytes:
    """Identifier of a key: digest of its secret material, never the secret."""
    return hashlib.blake2b(secret, digest_size=IDENTIFIER_SIZE).digest()


class CipherMessage:
    """Bytes to be encrypted and/or decrypted, plus their layer nonces"""
    def __init__(self, data: bytes, nonces: Optional[Dict[bytes, bytes]] = None):
        self.data = bytearray(data)
        self.nonces: Dict[bytes, bytes] = dict(nonces or {})

    @property
    def layers(self) -> frozenset:
        return frozenset(self.nonces)

    def copy(self) -> "CipherMessage":
        return CipherMessage(bytes(self.data), self.nonces)

    def __eq__(self, other) -> bool:
        if not isinstance(other, CipherMessage):
            return NotImplemented
        return self.data == other.data and self.nonces == other.nonces

    __hash__ = None

    def __repr__(self) -> str:
        return f"CipherMessage(data={bytes(self.data).hex()}, layers={len(self.nonces)})"


class Key(ABC):
    """Secret key of one realization; exposes only a stable identifier"""

    @property
    @abstractmethod
    def identifier(self) -> bytes:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.identifier.hex()[:16]})"


class CommutativeCipher(ABC):
    """
    Capability shared by every realization.

    Subclasses implement the raw transform (`_apply` / `_invert`) and key
    handling; layer bookkeeping and the one-layer-per-key rule live here.
    """

    name = ""

    # False when the transform ignores the nonce; such a realization tags
    # every message with the same value per key.
    distinct_nonces = True

    @abstractmethod
    def generate_key(self) -> Key:
        ...

    @abstractmethod
    def export_key(self, key: Key) -> bytes:
        ...

    @abstractmethod
    def import_key(self, data: bytes) -> Key:
        """Raises ValueError for malformed key material."""

    @abstractmethod
    def _apply(self, message: CipherMessage, key: Key, nonce: bytes) -> None:
        ...

    @abstractmethod
    def _invert(self, message: CipherMessage, key: Key, nonce: bytes) -> None:
        ...

    def _new_nonce(self, key: Key) -> bytes:
        return secrets.token_bytes(NONCE_SIZE)

    def is_valid_ciphertext(self, message: CipherMessage) -> bool:
        """Whether `message` could have been produced by this realization."""
        return True

    def encrypt(self, message: CipherMessage, key: Key) -> CipherMessage:
        """Add `key`'s layer to `message` in place and return it."""
        if key.identifier in message.nonces:
            raise CipherMisuseError("attempt to encrypt twice with the same key")
        nonce = self._new_nonce(key)
        self._apply(message, key, nonce)
        message.nonces[key.identifier] = nonce
        return message

    def decrypt(self, message: CipherMessage, key: Key) -> CipherMessage:
        """Remove `key`'s layer from `message` in place and return it."""
        nonce = message.nonces.get(key.identifier)
        if nonce is None:
            raise CipherMisuseError("attempt to decrypt before encrypt")
        self._invert(message, key, nonce)
        del message.nonces[key.identifier]
        return message

    def can_decrypt(self, message: CipherMessage, key: Key) -> bool:
        return key.identifier in message.nonces
