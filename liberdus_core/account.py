"""
Session management for the Liberdus client.

A ``Session`` is the explicit context for one signed-in account: the
wallet that signs and decrypts, and the ``AccountData`` record that the
sync engine merges into.  The application shell owns it and passes it to
the sync engine; nothing in the core keeps the current account in module
globals.
"""

from __future__ import annotations

from liberdus_core.cipher import derive_shared_key
from liberdus_core.codec import hex_to_bytes, normalize_address, normalize_username
from liberdus_core.envelope import SenderProfile
from liberdus_core.models import AccountData
from liberdus_core.transaction import now_ms
from liberdus_core.wallet import Wallet


class Session:
    """Signed-in account: wallet + local conversation state."""

    def __init__(self, wallet: Wallet, data: AccountData | None = None):
        self.wallet = wallet
        self.data = data or AccountData(account=wallet.identity(), timestamp=now_ms())
        if normalize_address(self.data.account.address) != wallet.address:
            raise ValueError("account data belongs to a different address")

    @classmethod
    def create(cls, username: str, network_id: str) -> Session:
        """New account with a fresh key-pair."""
        return cls(Wallet.generate(normalize_username(username), network_id))

    @classmethod
    def import_secret(cls, secret_hex: str, username: str, network_id: str) -> Session:
        return cls(Wallet.import_secret(secret_hex, normalize_username(username), network_id))

    @classmethod
    def from_data(cls, data: AccountData) -> Session:
        return cls(Wallet.from_identity(data.account), data)

    # ---- accessors ----

    @property
    def address(self) -> str:
        return self.wallet.address

    @property
    def username(self) -> str:
        return self.wallet.username

    @property
    def network_id(self) -> str:
        return self.wallet.network_id

    @property
    def storage_key(self) -> str:
        return self.data.storage_key

    def is_self(self, address: str) -> bool:
        return normalize_address(address) == self.address

    def profile(self) -> SenderProfile:
        """Contact card attached to outbound messages."""
        return SenderProfile(username=self.username, **{
            k: v for k, v in self.data.profile.items()
            if k in ("name", "email", "phone", "linkedin", "x") and v
        })

    def shared_key(self, their_public_hex: str) -> bytes:
        """ECDH message key with a counterparty. Raises ValueError on a bad key."""
        return derive_shared_key(self.wallet.private_key, hex_to_bytes(their_public_hex))

    def __repr__(self) -> str:
        return f"Session({self.username}@{self.network_id[:8]}:{self.address})"
