"""
Liberdus client core - keys, signed transactions, encrypted chat and sync.

Key features:
- secp256k1 key management with recoverable, ledger-compatible signatures
- Canonical transaction serialisation with keyed BLAKE2b transaction ids
- ECDH + XChaCha20-Poly1305 end-to-end encrypted message envelopes
- Incremental, idempotent chat synchronisation against a gateway
- SQLite persistence of identities and conversation state
"""

__version__ = "0.4.0"
__all__ = [
    "codec",
    "precision",
    "errors",
    "crypto_utils",
    "transaction",
    "wallet",
    "cipher",
    "envelope",
    "models",
    "gateway",
    "account",
    "sync",
    "storage",
    "config",
    "logging_config",
]
