import hashlib
import json
import re
from typing import Sequence

import bech32
from coincurve import PrivateKey, PublicKeyXOnly

from gitsmith.domain.exceptions import InvalidKeyException

NPUB_PREFIX = "npub"
NSEC_PREFIX = "nsec"
HEX_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


def _encode_bech32(hrp: str, data: bytes) -> str:
    return bech32.bech32_encode(hrp, bech32.convertbits(data, 8, 5))


def _decode_bech32(expected_hrp: str, value: str) -> bytes:
    hrp, words = bech32.bech32_decode(value)
    if hrp != expected_hrp or words is None:
        raise ValueError(f"Not a valid {expected_hrp} string.")
    data = bech32.convertbits(words, 5, 8, False)
    if data is None or len(data) != 32:
        raise ValueError(f"{expected_hrp} payload must be 32 bytes.")
    return bytes(data)


def encode_npub(public_key_hex: str) -> str:
    return _encode_bech32(NPUB_PREFIX, bytes.fromhex(public_key_hex))


def decode_npub(npub: str) -> str:
    """Returns the hex public key for an npub. Raises ValueError on bad input."""
    return _decode_bech32(NPUB_PREFIX, npub).hex()


def compute_message_id(pubkey: str, created_at: int, kind: int, tags: Sequence[Sequence[str]], content: str) -> str:
    """
    Hashes the canonical serialization of a message.

    The id only depends on (pubkey, created_at, kind, tags, content), so two
    messages built from the same fields share an id.
    """
    payload = [0, pubkey, created_at, kind, [list(tag) for tag in tags], content]
    serialized = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def verify_signature(pubkey: str, message_id: str, sig: str) -> bool:
    try:
        return PublicKeyXOnly(bytes.fromhex(pubkey)).verify(bytes.fromhex(sig), bytes.fromhex(message_id))
    except ValueError:
        return False


class Keypair:
    """
    A secp256k1 signing identity.
    Signatures are BIP-340 Schnorr without auxiliary randomness, so signing is deterministic.
    """

    def __init__(self, secret: bytes):
        try:
            self._private_key = PrivateKey(secret)
        except ValueError as e:
            raise InvalidKeyException() from e

    @classmethod
    def parse(cls, value: str) -> "Keypair":
        """
        Parses an nsec bech32 string or a 64-character hex string.

        Raises:
            InvalidKeyException: if the value is neither.
        """
        value = (value or "").strip()
        if value.lower().startswith(NSEC_PREFIX + "1"):
            try:
                return cls(_decode_bech32(NSEC_PREFIX, value))
            except ValueError as e:
                raise InvalidKeyException() from e
        if HEX_KEY_PATTERN.match(value):
            return cls(bytes.fromhex(value))
        raise InvalidKeyException()

    @property
    def secret_bytes(self) -> bytes:
        return self._private_key.secret

    @property
    def public_key(self) -> str:
        return self._private_key.public_key_xonly.format().hex()

    @property
    def npub(self) -> str:
        return encode_npub(self.public_key)

    @property
    def nsec(self) -> str:
        return _encode_bech32(NSEC_PREFIX, self.secret_bytes)

    def sign(self, message_id: str) -> str:
        return self._private_key.sign_schnorr(bytes.fromhex(message_id), None).hex()

    def __repr__(self) -> str:
        return f"Keypair(npub={self.npub!r})"
