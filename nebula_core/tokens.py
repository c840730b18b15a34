"""Tag and version token generation.

A tag is 20 random bytes rendered in the repository's base 32 alphabet
(digits plus upper case letters without E, I, O and U), giving a 32
character identifier.  A version token is a dotted version string
prefixed with ``v``.

No external dependency required.
"""

from __future__ import annotations

import os
import re

TAG_SIZE_BYTES = 20

_BASE32_ALPHABET = "0123456789ABCDFGHJKLMNPQRSTVWXYZ"

_VERSION_PATTERN = re.compile(r"^v[1-9][0-9]*(\.[1-9][0-9]*)*$")


def new_tag(size: int = TAG_SIZE_BYTES) -> str:
    """Generate a fresh random tag."""
    return base32_encode(os.urandom(size))


def new_version(levels: tuple[int, ...] = (1,)) -> str:
    """Build a version token, ``v1`` by default."""
    if not levels or any(level < 1 for level in levels):
        raise ValueError(f"Version levels must be positive, got {levels!r}")
    return "v" + ".".join(str(level) for level in levels)


def is_version(token: str) -> bool:
    return bool(_VERSION_PATTERN.match(token))


def base32_encode(data: bytes) -> str:
    """Encode bytes five bits at a time, most significant bits first."""
    bits = 0
    buffer = 0
    chars = []
    for byte in data:
        buffer = (buffer << 8) | byte
        bits += 8
        while bits >= 5:
            bits -= 5
            chars.append(_BASE32_ALPHABET[(buffer >> bits) & 0x1F])
    if bits:
        chars.append(_BASE32_ALPHABET[(buffer << (5 - bits)) & 0x1F])
    return "".join(chars)
