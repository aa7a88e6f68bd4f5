"""
Commutative Cipher Service

Structure:
- base.py: CommutativeCipher capability, CipherMessage, Key
- keystream.py: AES-CTR realization
- sra.py: modular exponentiation realization (SRA mental poker)
- serialization.py: JSON/base64 encoding of layered messages
"""

from fairorder.errors import ConfigurationError

from .base import (
    IDENTIFIER_SIZE,
    NONCE_SIZE,
    CipherMessage,
    CommutativeCipher,
    Key,
    key_digest
)
from .keystream import KeystreamCipher, KeystreamKey
from .sra import SRACipher, SRAKey
from .serialization import (
    to_base64,
    from_base64,
    serialize_card,
    deserialize_card
)

CIPHERS = {
    KeystreamCipher.name: KeystreamCipher,
    SRACipher.name: SRACipher,
}


def get_cipher(name: str) -> CommutativeCipher:
    """Cipher realization by configured name."""
    try:
        return CIPHERS[name]()
    except KeyError:
        raise ConfigurationError(
            f"unknown cipher {name!r}: want one of {', '.join(sorted(CIPHERS))}"
        ) from None


__all__ = [
    'IDENTIFIER_SIZE',
    'NONCE_SIZE',
    'CipherMessage',
    'CommutativeCipher',
    'Key',
    'key_digest',
    'KeystreamCipher',
    'KeystreamKey',
    'SRACipher',
    'SRAKey',
    'to_base64',
    'from_base64',
    'serialize_card',
    'deserialize_card',
    'CIPHERS',
    'get_cipher',
]
