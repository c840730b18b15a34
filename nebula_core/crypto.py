"""
nebula_core/crypto.py — Cryptographic primitives for the notary.

Uses the `cryptography` library exclusively. No custom crypto.
- SHA-256 for document digests
- Ed25519 for signing/verification
- did:key generation for self-certifying account identifiers

All functions are deterministic and have no side effects.
"""

from __future__ import annotations

import hashlib

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

def sha256_hex(data: bytes) -> str:
    """Compute SHA-256 hash and return as lowercase hex string."""
    return hashlib.sha256(data).hexdigest()


# ---------------------------------------------------------------------------
# Key management
# ---------------------------------------------------------------------------

def generate_keypair() -> tuple[Ed25519PrivateKey, Ed25519PublicKey]:
    """Generate a new Ed25519 keypair."""
    private_key = Ed25519PrivateKey.generate()
    return private_key, private_key.public_key()


def public_key_to_raw(key: Ed25519PublicKey) -> bytes:
    """Extract raw 32-byte public key."""
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def public_key_from_hex(data: str) -> Ed25519PublicKey:
    return Ed25519PublicKey.from_public_bytes(bytes.fromhex(data))


# ---------------------------------------------------------------------------
# Signing and verification
# ---------------------------------------------------------------------------

def sign_bytes(private_key: Ed25519PrivateKey, data: bytes) -> str:
    """Sign data with Ed25519 private key. Returns hex-encoded signature."""
    return private_key.sign(data).hex()


def verify_signature(
    public_key: Ed25519PublicKey, data: bytes, signature_hex: str
) -> bool:
    """Verify Ed25519 signature. Returns True if valid, False otherwise."""
    try:
        public_key.verify(bytes.fromhex(signature_hex), data)
        return True
    except (InvalidSignature, ValueError):
        return False


# ---------------------------------------------------------------------------
# did:key account identifiers
# ---------------------------------------------------------------------------

# Multicodec prefix for Ed25519 public key
_ED25519_MULTICODEC_PREFIX = b"\xed\x01"

_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def public_key_to_did_key(key: Ed25519PublicKey) -> str:
    """Generate a did:key identifier from an Ed25519 public key.

    Format: did:key:z{base58btc(multicodec_prefix + raw_public_key)}

    Reference: https://w3c-ccg.github.io/did-method-key/
    """
    encoded = _base58btc_encode(_ED25519_MULTICODEC_PREFIX + public_key_to_raw(key))
    return f"did:key:z{encoded}"


def _base58btc_encode(data: bytes) -> str:
    n = int.from_bytes(data, "big")

    result = []
    while n > 0:
        n, remainder = divmod(n, 58)
        result.append(_BASE58_ALPHABET[remainder])

    # leading zeros
    for byte in data:
        if byte == 0:
            result.append(_BASE58_ALPHABET[0])
        else:
            break

    return "".join(reversed(result))
