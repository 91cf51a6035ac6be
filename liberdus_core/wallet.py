"""
Wallet management for the Liberdus client.

A wallet wraps a secp256k1 key-pair bound to one username on one network
and provides:
  - Key generation and secret-key import (with validation)
  - Address derivation
  - Transaction signing (content hash + ledger-message hash + recoverable ECDSA)
  - Password-protected export / import of the account data record
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from liberdus_core.cipher import decrypt_data, encrypt_data
from liberdus_core.codec import (
    bytes_to_hex,
    is_hex,
    long_address,
    parse,
    strip_0x,
    stringify,
)
from liberdus_core.crypto_utils import (
    derive_address,
    flat_signature,
    generate_keypair,
    ledger_message_hash,
    public_key_from_secret,
    recover_address,
    secret_is_valid,
    sign_recoverable,
)
from liberdus_core.errors import DecryptionError, KeyImportError
from liberdus_core.transaction import Transaction

logger = logging.getLogger("liberdus_wallet")

CURVE_SECP256K1 = "secp256k1"


@dataclass
class Identity:
    """One account on one network.  The secret never leaves the device."""
    network_id: str
    username: str
    address: str
    public_key: str
    secret_key: str
    curve_type: str = CURVE_SECP256K1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Identity:
        return cls(
            network_id=data["network_id"],
            username=data["username"],
            address=data["address"],
            public_key=data["public_key"],
            secret_key=data["secret_key"],
            curve_type=data.get("curve_type", CURVE_SECP256K1),
        )


def validate_secret_hex(secret_hex: str) -> str:
    """
    Normalise user-supplied secret key text to 64 lower-case hex chars.

    Raises KeyImportError with a message suitable for showing to the user.
    """
    key = strip_0x(secret_hex.strip())
    if not is_hex(key):
        raise KeyImportError("Invalid characters - only 0-9 and a-f allowed")
    if len(key) != 64:
        raise KeyImportError("Invalid length - must be 64 hex characters")
    key = key.lower()
    if not secret_is_valid(bytes.fromhex(key)):
        raise KeyImportError("Invalid key - not a valid secp256k1 scalar")
    return key


class Wallet:
    """User-facing wallet that manages the account key-pair for signing."""

    def __init__(
        self,
        private_key: bytes,
        public_key: bytes | None = None,
        username: str = "",
        network_id: str = "",
    ):
        self.private_key = private_key
        self.public_key = public_key or public_key_from_secret(private_key)
        self.address = derive_address(self.public_key)
        self.username = username
        self.network_id = network_id
        self.key_type = CURVE_SECP256K1

    # ---- factory methods ----

    @classmethod
    def generate(cls, username: str = "", network_id: str = "") -> Wallet:
        """Generate a brand-new wallet with a random secret."""
        priv, pub = generate_keypair()
        return cls(priv, pub, username=username, network_id=network_id)

    @classmethod
    def import_secret(cls, secret_hex: str, username: str = "", network_id: str = "") -> Wallet:
        """
        Rebuild a wallet from a hex secret key.

        Accepts an optional ``0x`` prefix and surrounding whitespace.
        Importing the same secret always yields the same address.
        """
        key = validate_secret_hex(secret_hex)
        return cls(bytes.fromhex(key), username=username, network_id=network_id)

    @classmethod
    def from_identity(cls, identity: Identity) -> Wallet:
        wallet = cls.import_secret(identity.secret_key, identity.username, identity.network_id)
        if wallet.address != identity.address:
            raise KeyImportError("Stored address does not match the secret key")
        return wallet

    # ---- accessors ----

    @property
    def public_key_hex(self) -> str:
        return bytes_to_hex(self.public_key)

    @property
    def secret_hex(self) -> str:
        return bytes_to_hex(self.private_key)

    @property
    def long_address(self) -> str:
        return long_address(self.address)

    def identity(self) -> Identity:
        return Identity(
            network_id=self.network_id,
            username=self.username,
            address=self.address,
            public_key=self.public_key_hex,
            secret_key=self.secret_hex,
            curve_type=self.key_type,
        )

    # ---- signing ----

    def sign_transaction(self, tx: Transaction) -> str:
        """
        Sign a transaction in-place and return its transaction id.

        The id is the content hash of the canonical transaction; what gets
        signed is the ledger-message hash of that id.  Signing the same
        transaction twice gives identical ids and signatures.
        """
        tx_id = tx.hash_for_signing()
        r, s, recovery_id = sign_recoverable(self.private_key, ledger_message_hash(tx_id))
        tx.apply_signature(self.long_address, flat_signature(r, s, recovery_id))
        logger.debug(f"Signed {tx.tx_type} tx {tx_id[:16]}...")
        return tx_id

    # ---- export / import ----

    @staticmethod
    def export_data(data: dict[str, Any], password: str = "") -> str:
        """
        Serialise an account data record for export.

        With a password the canonical JSON is encrypted (XChaCha20-Poly1305
        under the iterated-BLAKE2b password key) and returned as base64.
        """
        return encrypt_data(stringify(data), password)

    @staticmethod
    def import_data(text: str, password: str = "") -> dict[str, Any]:
        """Inverse of :meth:`export_data`. Plain JSON is recognised by ``{``."""
        if "{" not in text:
            if not password.strip():
                raise KeyImportError("Password required for encrypted data")
            plain = decrypt_data(text.strip(), password.strip())
            if plain is None:
                raise DecryptionError("Import failed. Please check file and password.")
            text = plain
        data = parse(text)
        if not isinstance(data, dict):
            raise KeyImportError("Imported data is not an account record")
        return data

    def __repr__(self) -> str:
        return f"Wallet({self.username or '?'}:{self.address})"


def verify_transaction(tx: Transaction) -> bool:
    """True when ``tx.sign`` was produced by the key owning ``tx.sign['owner']``."""
    if not tx.sign:
        return False
    try:
        signer = recover_address(tx.hash_for_signing(), tx.sign["sig"])
    except (ValueError, KeyError):
        return False
    return long_address(signer) == long_address(tx.sign.get("owner", ""))

