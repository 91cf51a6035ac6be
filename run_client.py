#!/usr/bin/env python3
"""
Liberdus Client Runner — command-line shell around the client core:
  - create / import accounts (secret key or exported backup)
  - send encrypted chat messages and LIB transfers
  - poll for new messages, once or continuously
  - export account data, optionally password-protected

Usage:
    python run_client.py --config liberdus.toml create alice
    python run_client.py send alice bob "hello"
    python run_client.py transfer alice bob 1.5
    python run_client.py poll alice --watch

Environment variables (alternative to flags):
    LIBERDUS_NETID, LIBERDUS_GATEWAYS, LIBERDUS_DB_PATH, LIBERDUS_SECRET,
    LIBERDUS_PASSWORD
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from liberdus_core.account import Session  # noqa: E402
from liberdus_core.codec import is_valid_address, normalize_address, normalize_username  # noqa: E402
from liberdus_core.config import LiberdusConfig, load_config  # noqa: E402
from liberdus_core.errors import LiberdusError  # noqa: E402
from liberdus_core.gateway import GatewayClient, InjectResult  # noqa: E402
from liberdus_core.logging_config import setup_logging  # noqa: E402
from liberdus_core.models import AccountData  # noqa: E402
from liberdus_core.precision import format_amount, to_wei  # noqa: E402
from liberdus_core.storage import AccountStore  # noqa: E402
from liberdus_core.sync import ChatSyncManager  # noqa: E402
from liberdus_core.transaction import now_ms  # noqa: E402
from liberdus_core.wallet import Wallet  # noqa: E402

logger = logging.getLogger("liberdus_client")


class CommandError(Exception):
    """User-facing failure of a CLI command."""


# ===================================================================
#  Helpers
# ===================================================================

def _load_session(store: AccountStore, username: str, netid: str) -> Session:
    data = store.load_account_data(username, netid)
    if data is not None:
        return Session.from_data(data)
    identity = store.load_identity(username, netid)
    if identity is None:
        raise CommandError(f"No account '{username}' on network {netid[:8]}")
    return Session(Wallet.from_identity(identity))


def _save_session(store: AccountStore, session: Session) -> None:
    session.data.timestamp = now_ms()
    store.save_identity(session.wallet.identity())
    store.save_account_data(session.data)


async def _resolve_recipient(gateway: GatewayClient, target: str) -> str:
    """Accept either an address or a registered username."""
    if is_valid_address(target):
        return normalize_address(target)
    address = await gateway.lookup_address(normalize_username(target))
    if address is None:
        raise CommandError(f"Username '{target}' is not registered")
    return address


def _report(result: InjectResult, what: str) -> None:
    if result.success:
        print(f"  ✓ {what} accepted: {result.txid}")
    else:
        raise CommandError(f"{what} rejected: {result.reason or 'unknown error'}")


def _print_messages(session: Session, since: dict[str, int]) -> None:
    for address, contact in session.data.contacts.items():
        for msg in contact.messages[since.get(address, 0):]:
            arrow = "→" if msg.is_outbound else "←"
            print(f"  {arrow} {contact.display_name}: {msg.body}")


# ===================================================================
#  Commands
# ===================================================================

async def cmd_create(args, cfg: LiberdusConfig, store: AccountStore) -> None:
    netid = cfg.network.netid
    username = normalize_username(args.username)
    if len(username) < 3:
        raise CommandError("Username must be at least 3 characters (a-z, 0-9, _)")
    session = Session.create(username, netid)
    async with GatewayClient(cfg.network.gateways, cfg.sync.request_timeout_seconds) as gw:
        availability = await gw.check_username(username, session.address)
        if availability == "taken":
            raise CommandError(f"Username '{username}' is already taken")
        if not args.no_register:
            sync = ChatSyncManager(session, gw, cfg.sync)
            _report(await sync.register_alias(), "Registration")
    _save_session(store, session)
    print(f"  Created {username}: {session.address}")


async def cmd_import(args, cfg: LiberdusConfig, store: AccountStore) -> None:
    netid = cfg.network.netid
    if args.file:
        text = Path(args.file).read_text(encoding="utf-8")
        session = Session.from_data(AccountData.from_dict(Wallet.import_data(text, args.password)))
    else:
        secret = args.secret or os.environ.get("LIBERDUS_SECRET", "")
        if not secret:
            raise CommandError("Provide --secret, LIBERDUS_SECRET or --file")
        session = Session.import_secret(secret, args.username, netid)
        async with GatewayClient(cfg.network.gateways, cfg.sync.request_timeout_seconds) as gw:
            availability = await gw.check_username(session.username, session.address)
        if availability == "taken":
            raise CommandError(f"Username '{session.username}' belongs to another address")
    _save_session(store, session)
    print(f"  Imported {session.username}: {session.address}")


async def cmd_send(args, cfg: LiberdusConfig, store: AccountStore) -> None:
    session = _load_session(store, normalize_username(args.username), cfg.network.netid)
    async with GatewayClient(cfg.network.gateways, cfg.sync.request_timeout_seconds) as gw:
        to = await _resolve_recipient(gw, args.to)
        sync = ChatSyncManager(session, gw, cfg.sync)
        result = await sync.send_message(to, args.text)
    _save_session(store, session)
    _report(result, "Message")


async def cmd_transfer(args, cfg: LiberdusConfig, store: AccountStore) -> None:
    session = _load_session(store, normalize_username(args.username), cfg.network.netid)
    amount = to_wei(args.amount)
    async with GatewayClient(cfg.network.gateways, cfg.sync.request_timeout_seconds) as gw:
        to = await _resolve_recipient(gw, args.to)
        sync = ChatSyncManager(session, gw, cfg.sync)
        result = await sync.send_transfer(to, amount)
    _report(result, f"Transfer of {format_amount(amount)}")


async def cmd_poll(args, cfg: LiberdusConfig, store: AccountStore) -> None:
    session = _load_session(store, normalize_username(args.username), cfg.network.netid)
    async with GatewayClient(cfg.network.gateways, cfg.sync.request_timeout_seconds) as gw:
        sync = ChatSyncManager(session, gw, cfg.sync)
        while True:
            before = {a: len(c.messages) for a, c in session.data.contacts.items()}
            added = await sync.poll_all(force=True)
            if added:
                _print_messages(session, before)
                _save_session(store, session)
            if not args.watch:
                break
            await asyncio.sleep(cfg.sync.poll_interval_seconds)
    print(f"  {session.data.unread} unread message(s)")


async def cmd_export(args, cfg: LiberdusConfig, store: AccountStore) -> None:
    session = _load_session(store, normalize_username(args.username), cfg.network.netid)
    text = Wallet.export_data(session.data.to_dict(), args.password)
    if args.out:
        Path(args.out).write_text(text, encoding="utf-8")
        print(f"  Exported {session.storage_key} to {args.out}")
    else:
        print(text)


COMMANDS = {
    "create": cmd_create,
    "import": cmd_import,
    "send": cmd_send,
    "transfer": cmd_transfer,
    "poll": cmd_poll,
    "export": cmd_export,
}


# ===================================================================
#  Entry point
# ===================================================================

def parse_args(argv: list[str] | None = None):
    p = argparse.ArgumentParser(description="Liberdus Client")
    p.add_argument("--config", default=None, help="Path to liberdus.toml config file")
    p.add_argument("--log-level", default=None, help="Override logging level")
    sub = p.add_subparsers(dest="command", required=True)

    c = sub.add_parser("create", help="Create and register a new account")
    c.add_argument("username")
    c.add_argument("--no-register", action="store_true",
                   help="Only create the key-pair locally")

    i = sub.add_parser("import", help="Import a secret key or exported backup")
    i.add_argument("username")
    i.add_argument("--secret", default=None, help="64-hex secret key")
    i.add_argument("--file", default=None, help="Exported account file")
    i.add_argument("--password", default=os.environ.get("LIBERDUS_PASSWORD", ""))

    s = sub.add_parser("send", help="Send an encrypted chat message")
    s.add_argument("username")
    s.add_argument("to", help="Recipient username or address")
    s.add_argument("text")

    t = sub.add_parser("transfer", help="Transfer LIB")
    t.add_argument("username")
    t.add_argument("to", help="Recipient username or address")
    t.add_argument("amount", help="Amount in LIB, e.g. 1.5")

    q = sub.add_parser("poll", help="Fetch new messages")
    q.add_argument("username")
    q.add_argument("--watch", action="store_true", help="Keep polling until Ctrl-C")

    e = sub.add_parser("export", help="Export account data")
    e.add_argument("username")
    e.add_argument("--password", default=os.environ.get("LIBERDUS_PASSWORD", ""))
    e.add_argument("--out", default=None, help="Write to file instead of stdout")

    return p.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    # Load config (TOML + env overrides)
    cfg = load_config(args.config)
    if args.log_level:
        cfg.logging.level = args.log_level.upper()
    try:
        setup_logging(
            level=cfg.logging.level, fmt=cfg.logging.format,
            log_file=cfg.logging.file, areas=cfg.logging.areas,
        )
    except ValueError as exc:
        print(f"  ✗ Logging configuration: {exc}", file=sys.stderr)
        return 2

    with AccountStore(cfg.storage.path) as store:
        try:
            await COMMANDS[args.command](args, cfg, store)
        except (CommandError, LiberdusError, ValueError) as exc:
            logger.debug("Command failed", exc_info=True)
            print(f"  ✗ {exc}", file=sys.stderr)
            return 1
    return 0


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt):
        sys.exit(asyncio.run(main()))


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        sys.exit(asyncio.run(main()))
