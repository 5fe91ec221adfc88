"""NIP-01 event hashing and BIP-340 signing for zap receipts.

The event id is SHA-256 over the canonical serialization
[0, pubkey, created_at, kind, tags, content] (compact JSON, UTF-8, no
ASCII escaping). Signatures use fixed all-zero auxiliary randomness so
that the same inputs and key always reproduce the same signature.

Key parsing (hex or nsec) goes through nostr_sdk; Schnorr signing and
verification go through coincurve (libsecp256k1).
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass

from coincurve import PrivateKey, PublicKeyXOnly
from nostr_sdk import Keys

log = logging.getLogger(__name__)

_AUX_RANDOMNESS = bytes(32)


class SigningError(Exception):
    """Raised when a key cannot be parsed or an event id cannot be signed."""


@dataclass(frozen=True)
class KeyPair:
    """Receipt issuer keys as 64-char hex strings."""

    privkey: str
    pubkey: str

    def __repr__(self) -> str:
        return f"KeyPair(pubkey={self.pubkey!r})"


def derive_keypair(secret: str) -> KeyPair:
    """Parse a hex or nsec secret key and derive its x-only public key."""
    try:
        keys = Keys.parse(secret.strip())
    except Exception as exc:
        raise SigningError(f"Invalid nostr secret key: {exc}") from exc
    return KeyPair(
        privkey=keys.secret_key().to_hex(),
        pubkey=keys.public_key().to_hex(),
    )


def serialize_event(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: list[list[str]],
    content: str,
) -> str:
    """Canonical NIP-01 serialization used for the event id."""
    return json.dumps(
        [0, pubkey, created_at, kind, tags, content],
        ensure_ascii=False,
        separators=(",", ":"),
    )


def event_id(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: list[list[str]],
    content: str,
) -> str:
    """Content address of an event: hex SHA-256 of its canonical form."""
    serialized = serialize_event(pubkey, created_at, kind, tags, content)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def sign_event_id(privkey: str, event_id_hex: str) -> str:
    """BIP-340 signature over a 32-byte event id. Returns 128-char hex."""
    try:
        digest = bytes.fromhex(event_id_hex)
        signature = PrivateKey(bytes.fromhex(privkey)).sign_schnorr(
            digest, _AUX_RANDOMNESS
        )
    except ValueError as exc:
        raise SigningError(f"Failed to sign event {event_id_hex[:16]}: {exc}") from exc
    return signature.hex()


def verify_event_signature(pubkey: str, event_id_hex: str, sig: str) -> bool:
    """Check a BIP-340 signature against an x-only pubkey. Never raises."""
    try:
        return PublicKeyXOnly(bytes.fromhex(pubkey)).verify(
            bytes.fromhex(sig), bytes.fromhex(event_id_hex)
        )
    except (ValueError, TypeError):
        log.debug("Malformed signature input for event %s", event_id_hex[:16])
        return False
