"""
SQLite-based persistence for Liberdus client state.

Two tables:

  - ``identities``    (network, username) -> serialised :class:`Identity`
  - ``account_data``  ``"{username}_{network_id}"`` -> serialised
                      :class:`AccountData` (contacts, chats, cursors)

Values are stored as canonical JSON produced by
:func:`liberdus_core.codec.stringify`, so big integers survive a reload.
Storage is only ever written from the application shell; the sync engine
mutates the in-memory ``AccountData``.

Usage:
    store = AccountStore("data/liberdus.db")
    store.save_identity(session.wallet.identity())
    store.save_account_data(session.data)
    data = store.load_account_data("alice", netid)
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from liberdus_core.codec import normalize_username, parse, stringify
from liberdus_core.models import AccountData
from liberdus_core.wallet import Identity

logger = logging.getLogger("liberdus_storage")


class AccountStore:
    """Thin SQLite wrapper for persisting identities and account data."""

    def __init__(self, db_path: str = "data/liberdus.db"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_tables()
        self._ensure_schema_version()
        logger.info(f"Storage opened: {db_path}")

    # ── schema ───────────────────────────────────────────────────

    def _create_tables(self) -> None:
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS identities (
                network  TEXT NOT NULL,
                username TEXT NOT NULL,
                address  TEXT NOT NULL,
                body     TEXT NOT NULL,
                PRIMARY KEY (network, username)
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS account_data (
                key        TEXT PRIMARY KEY,
                body       TEXT NOT NULL,
                updated_at INTEGER NOT NULL DEFAULT 0
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL
            )
        """)
        c.commit()

    CURRENT_SCHEMA_VERSION = 1

    def _ensure_schema_version(self) -> None:
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                (self.CURRENT_SCHEMA_VERSION,),
            )
            self._conn.commit()
        elif row["version"] > self.CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema v{row['version']} is newer than this software "
                f"(v{self.CURRENT_SCHEMA_VERSION}).  Upgrade the Liberdus client."
            )

    @property
    def schema_version(self) -> int:
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        return int(row["version"])

    # ── identities ───────────────────────────────────────────────

    def save_identity(self, identity: Identity) -> None:
        self._conn.execute(
            """INSERT OR REPLACE INTO identities (network, username, address, body)
               VALUES (?, ?, ?, ?)""",
            (
                identity.network_id,
                normalize_username(identity.username),
                identity.address,
                stringify(identity.to_dict()),
            ),
        )
        self._conn.commit()

    def load_identity(self, username: str, network_id: str) -> Identity | None:
        row = self._conn.execute(
            "SELECT body FROM identities WHERE network = ? AND username = ?",
            (network_id, normalize_username(username)),
        ).fetchone()
        return Identity.from_dict(parse(row["body"])) if row else None

    def list_usernames(self, network_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT username FROM identities WHERE network = ? ORDER BY username",
            (network_id,),
        ).fetchall()
        return [r["username"] for r in rows]

    # ── account data ─────────────────────────────────────────────

    def save_account_data(self, data: AccountData) -> None:
        self._conn.execute(
            """INSERT OR REPLACE INTO account_data (key, body, updated_at)
               VALUES (?, ?, ?)""",
            (data.storage_key, stringify(data.to_dict()), data.timestamp),
        )
        self._conn.commit()
        logger.debug(f"Saved account data {data.storage_key}")

    def load_account_data(self, username: str, network_id: str) -> AccountData | None:
        row = self._conn.execute(
            "SELECT body FROM account_data WHERE key = ?",
            (f"{normalize_username(username)}_{network_id}",),
        ).fetchone()
        return AccountData.from_dict(parse(row["body"])) if row else None

    def remove_account(self, username: str, network_id: str) -> bool:
        """Delete identity and account data; True if anything was removed."""
        name = normalize_username(username)
        cur_a = self._conn.execute(
            "DELETE FROM identities WHERE network = ? AND username = ?",
            (network_id, name),
        )
        cur_b = self._conn.execute(
            "DELETE FROM account_data WHERE key = ?", (f"{name}_{network_id}",),
        )
        self._conn.commit()
        removed = cur_a.rowcount + cur_b.rowcount > 0
        if removed:
            logger.info(f"Removed account {name} on {network_id[:8]}")
        return removed

    # ── lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
