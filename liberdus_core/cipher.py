"""
Symmetric encryption for message bodies and exported account data.

Message keys come from an ECDH exchange on secp256k1: the 32-byte key is
the x-coordinate of the shared point (bytes ``[1:33]`` of its compressed
encoding).  Payloads are sealed with XChaCha20-Poly1305 and carried as
``base64(nonce24 || ciphertext || tag16)``.

Export files use a password key made of 100 000 iterations of BLAKE2b-256
over the UTF-8 password.  The iteration count is part of the file format.
"""

from __future__ import annotations

import logging
import os

from Crypto.Cipher import ChaCha20_Poly1305
from ecdsa import ECDH, SECP256k1
from ecdsa.ecdh import InvalidCurveError, InvalidSharedSecretError
from ecdsa.errors import MalformedPointError

from liberdus_core.codec import (
    base64_to_bytes,
    bytes_to_base64,
    bytes_to_utf8,
    utf8_to_bytes,
)
from liberdus_core.crypto_utils import blake2b_256

logger = logging.getLogger("liberdus_cipher")

NONCE_SIZE = 24
TAG_SIZE = 16
KEY_SIZE = 32
PASSWORD_KDF_ITERATIONS = 100_000


def derive_shared_key(my_secret: bytes, their_public: bytes) -> bytes:
    """
    ECDH shared key between *my_secret* and *their_public*.

    Symmetric: ``derive_shared_key(a, B) == derive_shared_key(b, A)``.
    Raises ValueError for a malformed or off-curve public key.
    """
    ecdh = ECDH(curve=SECP256k1)
    try:
        ecdh.load_private_key_bytes(my_secret)
        ecdh.load_received_public_key_bytes(their_public)
        shared = ecdh.generate_sharedsecret_bytes()
    except (MalformedPointError, InvalidCurveError, InvalidSharedSecretError) as exc:
        raise ValueError(f"ECDH failed: {exc}") from exc
    return shared.rjust(KEY_SIZE, b"\x00")


def encrypt(key: bytes, plaintext: str) -> str:
    """Seal UTF-8 *plaintext* under *key* with a fresh random nonce."""
    nonce = os.urandom(NONCE_SIZE)
    cipher = ChaCha20_Poly1305.new(key=key, nonce=nonce)
    ciphertext, tag = cipher.encrypt_and_digest(utf8_to_bytes(plaintext))
    return bytes_to_base64(nonce + ciphertext + tag)


def decrypt(key: bytes, sealed: str) -> str | None:
    """
    Open a value produced by :func:`encrypt`.

    Returns ``None`` when the input is malformed or fails authentication;
    callers must render that as "undecryptable", never as empty text.
    """
    try:
        combined = base64_to_bytes(sealed)
    except (ValueError, TypeError):
        logger.debug("Decryption input is not valid base64")
        return None
    if len(combined) < NONCE_SIZE + TAG_SIZE:
        logger.debug(f"Decryption input too short ({len(combined)} bytes)")
        return None
    nonce = combined[:NONCE_SIZE]
    ciphertext = combined[NONCE_SIZE:-TAG_SIZE]
    tag = combined[-TAG_SIZE:]
    try:
        cipher = ChaCha20_Poly1305.new(key=key, nonce=nonce)
        plaintext = cipher.decrypt_and_verify(ciphertext, tag)
        return bytes_to_utf8(plaintext)
    except (ValueError, KeyError, UnicodeDecodeError):
        logger.debug("Decryption failed: authentication failed or corrupted data")
        return None


def derive_password_key(password: str) -> bytes:
    """32-byte key from 100 000 rounds of BLAKE2b-256 over the password."""
    key = utf8_to_bytes(password)
    for _ in range(PASSWORD_KDF_ITERATIONS):
        key = blake2b_256(key)
    return key


def encrypt_data(data: str, password: str) -> str:
    """Encrypt export text with a password; an empty password returns *data*."""
    if not password:
        return data
    return encrypt(derive_password_key(password), data)


def decrypt_data(data: str, password: str) -> str | None:
    """Inverse of :func:`encrypt_data`; ``None`` on a wrong password."""
    if not password:
        return data
    return decrypt(derive_password_key(password), data)
