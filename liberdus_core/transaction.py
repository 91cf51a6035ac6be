"""
Ledger transactions for the Liberdus client.

A transaction is serialised with the canonical JSON encoder from
:mod:`liberdus_core.codec`; the application-keyed BLAKE2b hash of those
bytes is the transaction id.  The signature (``sign`` member) is attached
afterwards and never takes part in the hash.

Supported types:
  - ``message``  — chat message carrying an encrypted envelope and a toll
  - ``transfer`` — LIB transfer with a network fee
  - ``register`` — username (alias) registration
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from liberdus_core.codec import (
    BigInt,
    is_hex,
    long_address,
    normalize_username,
    stringify,
    utf8_to_bytes,
)
from liberdus_core.crypto_utils import app_hash_hex
from liberdus_core.errors import SerializationError

# Network marker carried by message and transfer transactions.
NETWORK_MARKER = "0" * 64

TX_MESSAGE = "message"
TX_TRANSFER = "transfer"
TX_REGISTER = "register"

# dataclass attribute -> wire field name
_WIRE_NAMES = {
    "tx_type": "type",
    "from_addr": "from",
    "to": "to",
    "amount": "amount",
    "chat_id": "chatId",
    "message": "message",
    "alias": "alias",
    "alias_hash": "aliasHash",
    "public_key": "publicKey",
    "memo": "memo",
    "timestamp": "timestamp",
    "network": "network",
    "fee": "fee",
}

_BIG_FIELDS = ("amount", "fee")
_ADDRESS_FIELDS = ("from_addr", "to")
_TEXT_FIELDS = ("chat_id", "message", "alias", "alias_hash", "public_key", "memo", "network")


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Transaction:
    tx_type: str
    from_addr: str
    timestamp: int
    to: str | None = None
    amount: BigInt | None = None
    fee: BigInt | None = None
    chat_id: str | None = None
    message: str | None = None
    alias: str | None = None
    alias_hash: str | None = None
    public_key: str | None = None
    memo: str | None = None
    network: str | None = NETWORK_MARKER
    sign: dict | None = None

    # ---- serialisation ----

    def _validate(self) -> None:
        if not isinstance(self.tx_type, str) or not self.tx_type:
            raise SerializationError("type must be a non-empty string")
        if isinstance(self.timestamp, bool) or not isinstance(self.timestamp, int):
            raise SerializationError("timestamp must be an integer (ms)")
        for name in _ADDRESS_FIELDS:
            value = getattr(self, name)
            if value is None and name == "to":
                continue
            if not isinstance(value, str) or not is_hex(value) or not value:
                raise SerializationError(f"{name} must be a hex address")
        for name in _BIG_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, BigInt):
                raise SerializationError(f"{name} must be a BigInt, got {type(value).__name__}")
        for name in _TEXT_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise SerializationError(f"{name} must be a string")

    def to_dict(self, include_signature: bool = True) -> dict[str, Any]:
        """Wire representation; absent optional fields are omitted."""
        out: dict[str, Any] = {}
        for attr, wire in _WIRE_NAMES.items():
            value = getattr(self, attr)
            if value is not None:
                out[wire] = value
        if include_signature and self.sign is not None:
            out["sign"] = dict(self.sign)
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transaction:
        kwargs = {attr: data.get(wire) for attr, wire in _WIRE_NAMES.items()}
        for name in _BIG_FIELDS:
            if kwargs[name] is not None:
                kwargs[name] = BigInt(kwargs[name])
        tx = cls(**kwargs)
        tx.sign = dict(data["sign"]) if data.get("sign") else None
        return tx

    def serialize_for_signing(self) -> bytes:
        """Canonical bytes of every field except the signature."""
        self._validate()
        try:
            return utf8_to_bytes(stringify(self.to_dict(include_signature=False)))
        except (TypeError, ValueError) as exc:
            raise SerializationError(str(exc)) from exc

    def hash_for_signing(self) -> str:
        """Transaction id: application-keyed BLAKE2b-256 of the canonical bytes."""
        return app_hash_hex(self.serialize_for_signing())

    def apply_signature(self, owner: str, sig: str) -> None:
        self.sign = {"owner": owner, "sig": sig}

    def to_json(self) -> str:
        return stringify(self.to_dict())

    @property
    def is_signed(self) -> bool:
        return bool(self.sign)


def canonicalize(tx: Transaction) -> bytes:
    return tx.serialize_for_signing()


def content_hash(tx: Transaction) -> str:
    return tx.hash_for_signing()


# ===================================================================
#  Factories
# ===================================================================

def chat_id(address_a: str, address_b: str) -> str:
    """Channel id shared by two accounts, independent of argument order."""
    joined = "".join(sorted([long_address(address_a), long_address(address_b)]))
    return app_hash_hex(utf8_to_bytes(joined))


def username_hash(username: str) -> str:
    return app_hash_hex(utf8_to_bytes(normalize_username(username)))


def create_message(
    from_addr: str,
    to: str,
    payload: dict[str, Any],
    toll: int = 1,
    timestamp: int | None = None,
) -> Transaction:
    """Build an unsigned chat message transaction carrying *payload*."""
    try:
        message = stringify(payload)
    except TypeError as exc:
        raise SerializationError(f"message payload: {exc}") from exc
    return Transaction(
        tx_type=TX_MESSAGE,
        from_addr=long_address(from_addr),
        to=long_address(to),
        amount=BigInt(toll),
        chat_id=chat_id(from_addr, to),
        message=message,
        timestamp=timestamp if timestamp is not None else now_ms(),
    )


def create_transfer(
    from_addr: str,
    to: str,
    amount: int,
    fee: int = 1,
    timestamp: int | None = None,
) -> Transaction:
    """Build an unsigned LIB transfer (amount and fee in wei)."""
    if amount <= 0:
        raise SerializationError("transfer amount must be positive")
    return Transaction(
        tx_type=TX_TRANSFER,
        from_addr=long_address(from_addr),
        to=long_address(to),
        amount=BigInt(amount),
        fee=BigInt(fee),
        timestamp=timestamp if timestamp is not None else now_ms(),
    )


def create_register(
    alias: str,
    from_addr: str,
    public_key: str,
    timestamp: int | None = None,
) -> Transaction:
    """Build an unsigned username registration."""
    return Transaction(
        tx_type=TX_REGISTER,
        from_addr=long_address(from_addr),
        alias=alias,
        alias_hash=username_hash(alias),
        public_key=public_key,
        network=None,
        timestamp=timestamp if timestamp is not None else now_ms(),
    )
