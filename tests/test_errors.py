"""
Tests for liberdus_core.errors — taxonomy and transience.
"""

import pytest

from liberdus_core.errors import (
    DecryptionError,
    KeyImportError,
    KeyResolutionError,
    LiberdusError,
    NetworkError,
    SerializationError,
    SigningError,
    is_transient,
)


@pytest.mark.parametrize("exc_type", [NetworkError, KeyResolutionError])
def test_transient(exc_type):
    assert is_transient(exc_type("x"))


@pytest.mark.parametrize(
    "exc_type", [KeyImportError, SerializationError, SigningError, DecryptionError],
)
def test_deterministic(exc_type):
    exc = exc_type("x")
    assert isinstance(exc, LiberdusError)
    assert not is_transient(exc)


def test_foreign_exceptions_not_transient():
    assert not is_transient(RuntimeError("x"))
    assert not is_transient(TimeoutError())


def test_decryption_error_part():
    assert DecryptionError("bad").part == "message"
    assert DecryptionError("bad", part="sender_info").part == "sender_info"
