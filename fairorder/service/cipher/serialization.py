import base64
import binascii
from typing import Any, Dict

from .base import IDENTIFIER_SIZE, NONCE_SIZE, CipherMessage

# ============================================================================
# Serialization (JSON-friendly, base64 for binary fields)
# ============================================================================

def to_base64(data: bytes) -> str:
    return base64.b64encode(bytes(data)).decode("ascii")


def from_base64(b64_str: str) -> bytes:
    """
    Decode a base64 string, rejecting anything that is not strict base64.
    """
    try:
        return base64.b64decode(b64_str, validate=True)
    except (binascii.Error, TypeError) as e:
        raise ValueError(f"invalid base64: {e}") from e


def serialize_card(card: CipherMessage) -> Dict[str, Any]:
    """
    Serialize one layered message to a dict.

    Layer identifiers become hex keys, nonces and data base64 strings.
    """
    return {
        "data": to_base64(card.data),
        "nonces": {
            identifier.hex(): to_base64(nonce)
            for identifier, nonce in sorted(card.nonces.items())
        },
    }


def deserialize_card(obj: Dict[str, Any]) -> CipherMessage:
    """
    Deserialize one layered message; raises ValueError if malformed.
    """
    if not isinstance(obj, dict) or not isinstance(obj.get("nonces"), dict):
        raise ValueError("card must be an object with data and nonces")
    data = from_base64(obj.get("data"))

    nonces = {}
    for hex_id, b64_nonce in obj["nonces"].items():
        identifier = bytes.fromhex(hex_id)
        nonce = from_base64(b64_nonce)
        if len(identifier) != IDENTIFIER_SIZE or len(nonce) != NONCE_SIZE:
            raise ValueError("bad layer identifier or nonce size")
        nonces[identifier] = nonce

    return CipherMessage(data, nonces)
