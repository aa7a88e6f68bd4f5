"""
Number-theoretic realization, as in Shamir, Rivest and Adleman's Mental Poker.

    E(m) = m^K mod P        D(c) = c^L mod P        K*L = 1 mod (P-1)

Exponentiation commutes, so layers can be removed in any order. All peers use
the same fixed, documented safe prime instead of generating one per run.

Plaintexts are squared before the first layer and every ciphertext lives in
the subgroup of quadratic residues, so the Legendre symbol of a card says
nothing about its plaintext. The nonce plays no part in the transform; each
key tags all its layers with one value derived from its identifier.

Shamir, A., Rivest, R. L., & Adleman, L. M. (1981). Mental poker.
http://people.csail.mit.edu/rivest/ShamirRivestAdleman-MentalPoker.pdf
"""
import hashlib
import math
import secrets
import struct

from fairorder.errors import CipherMisuseError, PlaintextTooLongError

from .base import NONCE_SIZE, CipherMessage, CommutativeCipher, Key, key_digest

# 2048-bit MODP Group 14, RFC 3526 section 3 (a safe prime).
# https://tools.ietf.org/html/rfc3526#section-3
PRIME_HEX = (
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD129024E088A67CC74"
    "020BBEA63B139B22514A08798E3404DDEF9519B3CD3A431B302B0A6DF25F1437"
    "4FE1356D6D51C245E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE45B3DC2007CB8A163BF05"
    "98DA48361C55D39A69163FA8FD24CF5F83655D23DCA3AD961C62F356208552BB"
    "9ED529077096966D670C354E4ABC9804F1746C08CA18217C32905E462E36CE3B"
    "E39E772C180E86039B2783A2EC07A28FB5C55DF06F4C52C9DE2BCBF695581718"
    "3995497CEA956AE515D2261898FA051015728E5A8AACAA68FFFFFFFFFFFFFFFF"
)
PRIME = int(PRIME_HEX, 16)
PRIME_SIZE = (PRIME.bit_length() + 7) // 8

# P is prime, so Phi(P) = P - 1.
TOTIENT = PRIME - 1

# Exponent size. K is kept to exactly this many bits because a small
# encryption exponent makes modular exponentiation much faster.
MIN_BIT_LEN = 160

# P is a safe prime, P = 2Q + 1: quadratic residues form the subgroup of order Q.
SUBGROUP_ORDER = (PRIME - 1) // 2

# P = 3 mod 4, so a residue a has the square roots +-a^((P+1)/4).
SQRT_EXPONENT = (PRIME + 1) // 4

# Prepended to plaintext before the first layer: keeps leading zero bytes
# and keeps the encoded plaintext away from 0.
FRAME = b"\x01"

LAYER_TAG_PERSON = b"fairorder-sra"


def _int_to_bytes(n: int) -> bytes:
    return n.to_bytes((n.bit_length() + 7) // 8, "big")


class SRAKey(Key):
    def __init__(self, k: int, l: int):
        self.k = k  # encryption exponent
        self.l = l  # decryption exponent
        self._identifier = key_digest(_pack_exponents(k, l))

    @property
    def identifier(self) -> bytes:
        return self._identifier


def _pack_exponents(k: int, l: int) -> bytes:
    out = b""
    for e in (k, l):
        raw = _int_to_bytes(e)
        out += struct.pack(">H", len(raw)) + raw
    return out


def _unpack_exponents(data: bytes):
    exponents = []
    offset = 0
    for _ in range(2):
        if len(data) < offset + 2:
            raise ValueError("truncated SRA key")
        (size,) = struct.unpack_from(">H", data, offset)
        offset += 2
        if size == 0 or len(data) < offset + size:
            raise ValueError("truncated SRA key")
        exponents.append(int.from_bytes(data[offset:offset + size], "big"))
        offset += size
    if offset != len(data):
        raise ValueError("trailing bytes after SRA key")
    return exponents


def layer_tag(identifier: bytes) -> bytes:
    """Nonce recorded for every layer of the key with `identifier`."""
    return hashlib.blake2b(identifier, digest_size=NONCE_SIZE, person=LAYER_TAG_PERSON).digest()


def encode_plaintext(framed: bytes) -> int:
    """
    Square the framed plaintext into the residue subgroup.

    Only values up to Q are accepted, so exactly one of the two square roots
    found when decoding is the original.
    """
    m = int.from_bytes(framed, "big")
    if m > SUBGROUP_ORDER:
        raise PlaintextTooLongError(
            f"plaintext is too long: {len(framed)} bytes does not fit below half the {PRIME_SIZE}-byte modulus"
        )
    return m * m % PRIME


def decode_plaintext(residue: int) -> bytes:
    root = pow(residue, SQRT_EXPONENT, PRIME)
    return _int_to_bytes(min(root, PRIME - root))


def generate_exponents():
    """Coprime pair (K, L) modulo P-1, both with at least MIN_BIT_LEN bits."""
    while True:
        # Highest bit set for exactly MIN_BIT_LEN bits; odd because P-1 is even.
        k = secrets.randbits(MIN_BIT_LEN) | (1 << (MIN_BIT_LEN - 1)) | 1
        if math.gcd(k, TOTIENT) != 1:
            continue
        l = pow(k, -1, TOTIENT)
        if l.bit_length() < MIN_BIT_LEN:
            continue
        return k, l


class SRACipher(CommutativeCipher):
    name = "sra"
    distinct_nonces = False

    def generate_key(self) -> SRAKey:
        return SRAKey(*generate_exponents())

    def export_key(self, key: SRAKey) -> bytes:
        return _pack_exponents(key.k, key.l)

    def import_key(self, data: bytes) -> SRAKey:
        k, l = _unpack_exponents(data)
        if not 1 < k < TOTIENT or not 1 < l < TOTIENT or (k * l) % TOTIENT != 1:
            raise ValueError("SRA exponents are not an inverse pair modulo P-1")
        return SRAKey(k, l)

    def _new_nonce(self, key: SRAKey) -> bytes:
        return layer_tag(key.identifier)

    def is_valid_ciphertext(self, message: CipherMessage) -> bool:
        if not message.nonces:
            return True
        if any(nonce != layer_tag(identifier) for identifier, nonce in message.nonces.items()):
            return False
        if not message.data or message.data[0] == 0:
            return False
        c = int.from_bytes(message.data, "big")
        return 0 < c < PRIME and pow(c, SUBGROUP_ORDER, PRIME) == 1

    def _apply(self, message: CipherMessage, key: SRAKey, nonce: bytes) -> None:
        if message.nonces:
            m = int.from_bytes(message.data, "big")
            if not 0 < m < PRIME:
                raise CipherMisuseError("ciphertext is invalid")
        else:
            m = encode_plaintext(FRAME + bytes(message.data))
        message.data[:] = _int_to_bytes(pow(m, key.k, PRIME))

    def _invert(self, message: CipherMessage, key: SRAKey, nonce: bytes) -> None:
        c = int.from_bytes(message.data, "big")
        if not 0 < c < PRIME:
            raise CipherMisuseError("ciphertext is invalid")
        residue = pow(c, key.l, PRIME)
        if len(message.nonces) > 1:
            message.data[:] = _int_to_bytes(residue)
            return
        # Last layer: undo the squaring and drop the frame.
        plain = decode_plaintext(residue)
        if plain[:1] == FRAME:
            plain = plain[1:]
        message.data[:] = plain
