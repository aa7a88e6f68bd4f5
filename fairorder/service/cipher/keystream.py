"""
Keystream realization: AES-128 in CTR mode.

XOR with independent keystreams commutes, so layers can be removed in any
order. A fresh random nonce per (key, message) keeps two encryptions of the
same plaintext unrelated.

Those nonces stay on a card through later shuffles, so whoever added a layer
can follow its cards to their final positions before any key is disclosed.
This realization does not hide the order from a dishonest peer; it suits
simulations and tests, while "sra" is the default.
"""
import secrets

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .base import CipherMessage, CommutativeCipher, Key, key_digest

KEY_SIZE = 16  # AES-128


class KeystreamKey(Key):
    def __init__(self, secret: bytes):
        self.secret = bytes(secret)
        self._identifier = key_digest(self.secret)

    @property
    def identifier(self) -> bytes:
        return self._identifier


class KeystreamCipher(CommutativeCipher):
    name = "keystream"

    def generate_key(self) -> KeystreamKey:
        return KeystreamKey(secrets.token_bytes(KEY_SIZE))

    def export_key(self, key: KeystreamKey) -> bytes:
        return key.secret

    def import_key(self, data: bytes) -> KeystreamKey:
        if len(data) != KEY_SIZE:
            raise ValueError(f"keystream key must be {KEY_SIZE} bytes, got {len(data)}")
        return KeystreamKey(data)

    def _xor_keystream(self, message: CipherMessage, key: KeystreamKey, nonce: bytes) -> None:
        ctr = Cipher(algorithms.AES(key.secret), modes.CTR(nonce)).encryptor()
        message.data[:] = ctr.update(bytes(message.data)) + ctr.finalize()

    _apply = _xor_keystream
    _invert = _xor_keystream
