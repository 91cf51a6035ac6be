"""
Binary / text conversions and canonical JSON for the Liberdus client.

Every other module goes through these helpers so that hex, base64 and
UTF-8 handling is identical everywhere, and so that the bytes fed into
hashing and signing are produced by exactly one serialiser.

Canonical JSON rules (must match the network's verifier byte-for-byte):
  - object keys sorted, no whitespace
  - non-ASCII characters emitted verbatim
  - big integers emitted as ``{"dataType":"bi","value":"<hex>"}``
  - object members whose value is ``None`` are omitted
  - integral numbers carry no fractional part

Usage:
    from liberdus_core.codec import BigInt, stringify, parse
    stringify({"b": 1, "a": BigInt(255)})
    # '{"a":{"dataType":"bi","value":"ff"},"b":1}'
"""

from __future__ import annotations

import base64
import binascii
import json
import math
import re
from typing import Any

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")
_USERNAME_STRIP_RE = re.compile(r"[^a-z0-9_]")

SHORT_ADDRESS_LEN = 40
LONG_ADDRESS_LEN = 64


class BigInt(int):
    """An integer that travels on the wire as a tagged big-integer object."""

    def __repr__(self) -> str:
        return f"BigInt({int(self)})"


# ===================================================================
#  Hex / base64 / UTF-8
# ===================================================================

def strip_0x(value: str) -> str:
    return value[2:] if value[:2] in ("0x", "0X") else value


def is_hex(value: str) -> bool:
    return bool(_HEX_RE.match(value))


def hex_to_bytes(value: str) -> bytes:
    """Decode hex text (``0x`` prefix optional). Raises ValueError."""
    value = strip_0x(value)
    if not is_hex(value) or len(value) % 2:
        raise ValueError(f"invalid hex string of length {len(value)}")
    return bytes.fromhex(value)


def bytes_to_hex(data: bytes) -> str:
    return data.hex()


def bytes_to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def base64_to_bytes(value: str) -> bytes:
    """Decode standard base64. Raises ValueError on malformed input."""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, TypeError) as exc:
        raise ValueError(f"invalid base64: {exc}") from exc


def utf8_to_bytes(text: str) -> bytes:
    return text.encode("utf-8")


def bytes_to_utf8(data: bytes) -> str:
    return data.decode("utf-8")


# ===================================================================
#  Canonical JSON
# ===================================================================

def _format_number(value: float | int) -> str:
    if isinstance(value, int):
        return str(value)
    if not math.isfinite(value):
        return "null"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def _bigint_json(value: int) -> str:
    sign = "-" if value < 0 else ""
    return '{"dataType":"bi","value":"%s%x"}' % (sign, abs(value))


def _encode(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, BigInt):
        return _bigint_json(value)
    if isinstance(value, (int, float)):
        return _format_number(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, dict):
        parts = []
        for key in sorted(value):
            if not isinstance(key, str):
                raise TypeError(f"object keys must be str, got {type(key).__name__}")
            member = value[key]
            if member is None:
                continue
            parts.append(f"{json.dumps(key, ensure_ascii=False)}:{_encode(member)}")
        return "{" + ",".join(parts) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_encode(item) for item in value) + "]"
    raise TypeError(f"cannot canonically serialise {type(value).__name__}")


def stringify(value: Any) -> str:
    """Deterministic JSON text for *value*. Raises TypeError on unsupported types."""
    return _encode(value)


def _object_hook(obj: dict) -> Any:
    if obj.get("dataType") == "bi" and isinstance(obj.get("value"), str) and len(obj) == 2:
        return BigInt(int(obj["value"], 16))
    return obj


def parse(text: str | bytes) -> Any:
    """Inverse of :func:`stringify`; tagged big integers become :class:`BigInt`."""
    return json.loads(text, object_hook=_object_hook)


# ===================================================================
#  Addresses and usernames
# ===================================================================

def normalize_address(address: str) -> str:
    """Short (40 hex) lower-case form of a short, long or 0x-prefixed address."""
    addr = strip_0x(address.strip()).lower()
    if len(addr) == LONG_ADDRESS_LEN:
        addr = addr[:SHORT_ADDRESS_LEN]
    return addr


def long_address(address: str) -> str:
    """Gateway account id: the short address right-padded with zeros to 64 hex."""
    return normalize_address(address).ljust(LONG_ADDRESS_LEN, "0")


def is_valid_address(address: str) -> bool:
    addr = strip_0x(address.strip())
    return len(addr) == SHORT_ADDRESS_LEN and is_hex(addr)


def normalize_username(username: str) -> str:
    return _USERNAME_STRIP_RE.sub("", username.strip().lower())
