"""
Precision constants and helpers for Liberdus amounts.

All LIB amounts travel on the ledger as big integers of the smallest unit
(wei), with 18 decimal places:

    1 LIB = 10**18 wei

Conversions are done on decimal text, never through ``float``, so that an
amount typed by the user is exactly the amount that gets signed.
"""

from __future__ import annotations

import re

from liberdus_core.codec import BigInt

# Number of decimal places for LIB amounts.
WEI_DIGITS: int = 18

# Smallest representable unit — 1 wei = 10**-18 LIB.
WEI: int = 10 ** WEI_DIGITS

_DECIMAL_RE = re.compile(r"^(\d*)(?:\.(\d*))?$")


def to_wei(value: str | int) -> BigInt:
    """Convert decimal LIB text to an integer wei amount.

    >>> to_wei("1.5")
    BigInt(1500000000000000000)
    >>> to_wei("0.000000000000000001")
    BigInt(1)
    """
    if isinstance(value, int):
        return BigInt(value * WEI)
    text = value.strip().replace(",", "")
    match = _DECIMAL_RE.match(text)
    if not text or match is None or text == ".":
        raise ValueError(f"Invalid amount: {value!r}")
    whole, frac = match.group(1) or "0", match.group(2) or ""
    if len(frac) > WEI_DIGITS:
        raise ValueError(f"Amount has more than {WEI_DIGITS} decimal places")
    return BigInt(int(whole) * WEI + int(frac.ljust(WEI_DIGITS, "0") or "0"))


def from_wei(value: int) -> str:
    """Render an integer wei amount as exact decimal LIB text."""
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(int(value)), WEI)
    frac_text = str(frac).rjust(WEI_DIGITS, "0").rstrip("0")
    return f"{sign}{whole}.{frac_text}" if frac_text else f"{sign}{whole}"


def format_amount(value: int, symbol: str = "LIB") -> str:
    """Return a human-readable amount string."""
    return f"{from_wei(value)} {symbol}"
