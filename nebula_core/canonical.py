"""
nebula_core/canonical.py — Canonical document formatting

Produces the deterministic string form of a document used for signing
and for the credential header.  Two clients formatting the same logical
document MUST produce byte-identical output, otherwise the repository
cannot verify the signature.

Format: RFC 8785 JSON Canonicalization Scheme (JCS).
Strings are escaped by json.dumps; only key ordering, float formatting
and negative zero need custom handling.

Reference: https://www.rfc-editor.org/rfc/rfc8785
"""

from __future__ import annotations

import json
import math
from typing import Any


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def canonicalize(obj: Any) -> bytes:
    """Serialize a JSON-compatible Python object to canonical UTF-8 bytes.

    Raises:
        ValueError: If input contains NaN, Infinity or an out-of-range int.
        TypeError: If input contains non-JSON types.
    """
    return _canonicalize_value(obj).encode("utf-8")


def canonical_text(obj: Any) -> str:
    """Canonical form as a str (what goes on the wire)."""
    return _canonicalize_value(obj)


# ---------------------------------------------------------------------------
# RFC 8785
# ---------------------------------------------------------------------------

def _canonicalize_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        # bool is a subclass of int
        return "true" if value else "false"
    if isinstance(value, int):
        return _serialize_integer(value)
    if isinstance(value, float):
        return _serialize_float(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (list, tuple)):
        items = ",".join(_canonicalize_value(item) for item in value)
        return f"[{items}]"
    if isinstance(value, dict):
        return _serialize_object(value)
    raise TypeError(
        f"Cannot canonicalize type {type(value).__name__}. "
        f"Only JSON-compatible types are allowed."
    )


def _serialize_integer(n: int) -> str:
    if abs(n) > 2**53:
        raise ValueError(
            f"Integer {n} exceeds IEEE 754 double precision range (2^53)."
        )
    return str(n)


def _serialize_float(f: float) -> str:
    """Serialize a float per ECMAScript Number.prototype.toString()."""
    if math.isnan(f) or math.isinf(f):
        raise ValueError(
            f"Cannot canonicalize {f}: NaN and Infinity are not valid JSON"
        )
    if f == 0.0:
        return "0"  # +0.0 and -0.0
    if f.is_integer() and abs(f) < 1e21:
        return str(int(f))

    s = repr(f)
    if "e" not in s and "E" not in s:
        return s

    mantissa, exp_str = s.lower().split("e")
    exp_num = int(exp_str)
    if -7 < exp_num < 0:
        # repr switches to exponents at 1e-5, ECMAScript only below 1e-6
        neg = "-" if mantissa.startswith("-") else ""
        digits = mantissa.lstrip("-").replace(".", "").rstrip("0")
        return f"{neg}0.{'0' * (-exp_num - 1)}{digits}"
    if "." in mantissa:
        int_part, frac_part = mantissa.split(".")
        frac_part = frac_part.rstrip("0")
        mantissa = f"{int_part}.{frac_part}" if frac_part else int_part
    sign = "-" if exp_num < 0 else "+"
    return f"{mantissa}e{sign}{abs(exp_num)}"


def _serialize_object(obj: dict) -> str:
    """Keys sorted by UTF-16 code units (RFC 8785 §3.2.3)."""
    for k in obj.keys():
        if not isinstance(k, str):
            raise TypeError(f"Dict key must be string, got {type(k).__name__}: {k!r}")

    pairs = []
    for key in sorted(obj.keys(), key=_utf16_sort_key):
        k_str = json.dumps(key, ensure_ascii=False)
        v_str = _canonicalize_value(obj[key])
        pairs.append(f"{k_str}:{v_str}")
    return "{" + ",".join(pairs) + "}"


def _utf16_sort_key(s: str) -> list[int]:
    encoded = s.encode("utf-16-be")
    return [
        int.from_bytes(encoded[i : i + 2], "big")
        for i in range(0, len(encoded), 2)
    ]
