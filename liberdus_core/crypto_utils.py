"""
Cryptographic primitives for the Liberdus client.

Covers:
  - keyed / unkeyed BLAKE2b-256 and Keccak-256
  - secp256k1 key-pair generation and address derivation
  - the "ledger message" hash applied to a transaction id before signing
  - deterministic (RFC 6979), low-s, recoverable ECDSA signatures

Addresses are the last 20 bytes of ``keccak256(pubkey[1:])`` rendered as
lower-case hex without a prefix.
"""

from __future__ import annotations

import hashlib
import os

from Crypto.Hash import keccak
from ecdsa import SECP256k1, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError
from ecdsa.util import sigdecode_string, sigencode_strings_canonize

from liberdus_core.codec import bytes_to_hex, hex_to_bytes, strip_0x, utf8_to_bytes
from liberdus_core.errors import SigningError

# Fixed application hash key; namespaces tx ids, username hashes and chat ids.
APP_HASH_KEY = bytes.fromhex(
    "69fa4195670576c0160d660c3be36556ff8d504725be8a59b5a96509e0c994bc"
)

LEDGER_MESSAGE_PREFIX = "\x19Ethereum Signed Message:\n"

CURVE_ORDER = SECP256k1.order


# ===================================================================
#  Hashes
# ===================================================================

def keccak256(data: bytes) -> bytes:
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def blake2b_256(data: bytes, key: bytes | None = None) -> bytes:
    """BLAKE2b with a 32-byte digest, optionally keyed."""
    if key:
        return hashlib.blake2b(data, digest_size=32, key=key).digest()
    return hashlib.blake2b(data, digest_size=32).digest()


def app_hash_hex(data: bytes) -> str:
    """BLAKE2b-256 keyed with the application key, as hex."""
    return bytes_to_hex(blake2b_256(data, APP_HASH_KEY))


def ledger_message_hash(content_hash_hex: str) -> bytes:
    """
    Second hash applied to a transaction id before it is signed.

    Layout: ``keccak(prefix ++ str(len(msg)) ++ msg)`` where *msg* is the
    UTF-8 text of the hex transaction id.  The remote verifier checks
    exactly this construction.
    """
    message = utf8_to_bytes(content_hash_hex)
    return keccak256(
        utf8_to_bytes(LEDGER_MESSAGE_PREFIX)
        + utf8_to_bytes(str(len(message)))
        + message
    )


# ===================================================================
#  Keys and addresses
# ===================================================================

def secret_is_valid(secret: bytes) -> bool:
    return len(secret) == 32 and 0 < int.from_bytes(secret, "big") < CURVE_ORDER


def public_key_from_secret(secret: bytes) -> bytes:
    """65-byte uncompressed public key (``0x04 || X || Y``)."""
    sk = SigningKey.from_string(secret, curve=SECP256k1)
    return b"\x04" + sk.get_verifying_key().to_string()


def generate_keypair() -> tuple[bytes, bytes]:
    """Return a fresh ``(secret, uncompressed_public_key)`` pair."""
    while True:
        secret = os.urandom(32)
        if secret_is_valid(secret):
            return secret, public_key_from_secret(secret)


def derive_address(public_key: bytes) -> str:
    """Ledger address of a 65-byte uncompressed (or 64-byte raw) public key."""
    raw = public_key[1:] if len(public_key) == 65 else public_key
    return bytes_to_hex(keccak256(raw)[-20:])


# ===================================================================
#  Recoverable ECDSA
# ===================================================================

def sign_recoverable(secret: bytes, digest: bytes) -> tuple[int, int, int]:
    """
    Sign a 32-byte digest; return ``(r, s, recovery_id)``.

    The nonce is derived per RFC 6979 (SHA-256) and *s* is normalised to
    the lower half of the curve order, so the output is deterministic.
    """
    try:
        sk = SigningKey.from_string(secret, curve=SECP256k1)
        r_bytes, s_bytes = sk.sign_digest_deterministic(
            digest,
            hashfunc=hashlib.sha256,
            sigencode=sigencode_strings_canonize,
        )
        own = sk.get_verifying_key().to_string()
        candidates = VerifyingKey.from_public_key_recovery_with_digest(
            r_bytes + s_bytes,
            digest,
            SECP256k1,
            hashfunc=hashlib.sha256,
            sigdecode=sigdecode_string,
        )
    except (ValueError, MalformedPointError) as exc:
        raise SigningError(f"secp256k1 signing failed: {exc}") from exc

    for recovery_id, vk in enumerate(candidates):
        if vk.to_string() == own:
            return (
                int.from_bytes(r_bytes, "big"),
                int.from_bytes(s_bytes, "big"),
                recovery_id,
            )
    raise SigningError("could not determine signature recovery id")


def flat_signature(r: int, s: int, recovery_id: int) -> str:
    """``0x`` + 32-byte r + 32-byte s + 1-byte (27 + recovery id), hex."""
    return f"0x{r:064x}{s:064x}{27 + recovery_id:02x}"


def split_flat_signature(sig: str) -> tuple[bytes, int]:
    """Inverse of :func:`flat_signature`: ``(r || s, recovery_id)``."""
    raw = hex_to_bytes(sig)
    if len(raw) != 65:
        raise ValueError(f"signature must be 65 bytes, got {len(raw)}")
    v = raw[64]
    recovery_id = v - 27 if v >= 27 else v
    if recovery_id not in (0, 1):
        raise ValueError(f"invalid recovery byte {v}")
    return raw[:64], recovery_id


def recover_public_key(digest: bytes, sig: str) -> bytes:
    """Recover the 65-byte public key that produced *sig* over *digest*."""
    rs, recovery_id = split_flat_signature(sig)
    candidates = VerifyingKey.from_public_key_recovery_with_digest(
        rs,
        digest,
        SECP256k1,
        hashfunc=hashlib.sha256,
        sigdecode=sigdecode_string,
    )
    if recovery_id >= len(candidates):
        raise ValueError("recovery id does not match any candidate key")
    return b"\x04" + candidates[recovery_id].to_string()


def recover_address(content_hash_hex: str, sig: str) -> str:
    """Address that signed the transaction id *content_hash_hex*."""
    digest = ledger_message_hash(strip_0x(content_hash_hex))
    return derive_address(recover_public_key(digest, sig))
