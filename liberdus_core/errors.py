"""
Error taxonomy for the Liberdus client core.

Crypto and serialisation errors are deterministic: retrying with the same
input reproduces them.  Network and key-resolution errors are transient and
are retried by the next poll cycle rather than by an explicit backoff.
"""

from __future__ import annotations


class LiberdusError(Exception):
    """Base class for all client-core errors."""

    transient = False


class KeyImportError(LiberdusError, ValueError):
    """Malformed or out-of-range secret key."""


class SerializationError(LiberdusError, ValueError):
    """Transaction fields cannot be canonically serialised."""


class SigningError(LiberdusError):
    """The curve library failed to produce a signature."""


class DecryptionError(LiberdusError):
    """Authentication failure or malformed ciphertext.

    *part* names the envelope field that failed (``message`` or
    ``sender_info``).
    """

    def __init__(self, message: str = "", part: str = "message"):
        super().__init__(message)
        self.part = part


class NetworkError(LiberdusError):
    """A gateway request failed or returned an unusable response."""

    transient = True


class KeyResolutionError(LiberdusError):
    """A counterparty's public key could not be resolved."""

    transient = True


def is_transient(exc: BaseException) -> bool:
    """True when *exc* should be left to the next poll cycle."""
    return isinstance(exc, LiberdusError) and exc.transient
