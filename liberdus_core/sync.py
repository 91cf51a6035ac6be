"""
Chat synchronisation for the Liberdus client.

Turns raw ledger rows fetched from the gateway into the local, ordered,
de-duplicated conversation model:

1. **Activity listing** — ``GET /account/{me}/chats/{cursor}`` names the
   counterparties with new activity and their channel ids.

2. **Per-contact fetch** — each channel is fetched from that contact's own
   cursor.  Contacts are fetched concurrently; a failure for one contact
   never aborts the others.

3. **Merge** — rows sent by the local account are skipped, envelopes are
   decrypted with the ECDH key of the counterparty (its public key is
   looked up once and cached on the contact), and a message is appended
   only if the contact has no messages yet or its ``sent_timestamp`` is
   strictly newer than the last stored message.  Re-delivered rows are
   therefore applied at most once.

4. **Bookkeeping** — the contact cursor advances to the newest row seen
   (never backwards, and never past a row whose sender key could not be
   resolved), unread counts grow by the number of appended messages and
   the chat summary entry moves to its place in the activity order.

Merges for the same contact are serialised by a per-contact lock; a global
in-progress flag keeps top-level poll cycles from overlapping.

Per-contact states: IDLE -> FETCHING -> MERGING -> IDLE.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from liberdus_core.codec import normalize_address, parse
from liberdus_core.envelope import (
    FAILED_PROFILE_USERNAME,
    EncryptedEnvelope,
    OpenedMessage,
    build_envelope,
    open_envelope,
)
from liberdus_core.errors import KeyResolutionError, NetworkError, is_transient
from liberdus_core.models import Contact, DeliveryStatus, Direction, Message
from liberdus_core.transaction import (
    chat_id,
    create_message,
    create_register,
    create_transfer,
    now_ms,
)

if TYPE_CHECKING:
    from liberdus_core.account import Session
    from liberdus_core.config import SyncConfig
    from liberdus_core.gateway import GatewayClient, InjectResult

logger = logging.getLogger("liberdus_sync")

# Seconds between automatic poll cycles.
POLL_INTERVAL = 10.0

# A poll requested sooner than this after the previous one is dropped.
MIN_POLL_GAP = 1.0

# Seconds between polls of the contact whose conversation view is open.
VIEW_POLL_INTERVAL = 2.0


class ContactSyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"


@dataclass
class ContactSyncResult:
    """Outcome of one :meth:`ChatSyncManager.sync_contact` call."""
    address: str
    added: int = 0
    skipped_self: int = 0
    skipped_malformed: int = 0
    unresolved: int = 0
    cursor: int = 0


# ─── Row helpers ─────────────────────────────────────────────────────────


def _row_timestamp(row: dict[str, Any]) -> int:
    value = row.get("timestamp", 0)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def extract_envelope(row: dict[str, Any]) -> EncryptedEnvelope:
    """
    Pull the encrypted envelope out of a raw ledger row.

    ``row["message"]`` is the serialised message transaction; its own
    ``message`` member is the serialised envelope.  A row whose message
    already is the envelope is accepted as well.  Raises ValueError.
    """
    raw = row.get("message")
    outer = parse(raw) if isinstance(raw, str) else raw
    if not isinstance(outer, dict):
        raise ValueError("row message is not an object")
    if "encrypted" in outer or "encryptionMethod" in outer:
        return EncryptedEnvelope.from_dict(outer)
    inner = outer.get("message")
    inner = parse(inner) if isinstance(inner, str) else inner
    if not isinstance(inner, dict):
        raise ValueError("transaction carries no envelope")
    return EncryptedEnvelope.from_dict(inner)


# ═════════════════════════════════════════════════════════════════════════
#  PollScheduler — repeating timer with explicit last-run state
# ═════════════════════════════════════════════════════════════════════════


class PollScheduler:
    """
    Runs *callback* every *interval* seconds until stopped.

    ``last_run`` and ``min_gap`` live here rather than on the callable, so
    callers can ask :meth:`due` whether a fresh run is allowed yet.
    Stopping never interrupts a run in progress: :meth:`stop` waits for it
    to finish and then no further runs are scheduled.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[Any]],
        interval: float = POLL_INTERVAL,
        min_gap: float = MIN_POLL_GAP,
        clock: Callable[[], float] = time.monotonic,
        name: str = "poll",
    ):
        self.callback = callback
        self.interval = interval
        self.min_gap = min_gap
        self.clock = clock
        self.name = name
        self.last_run: float | None = None
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._wake = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def due(self) -> bool:
        """True when at least ``min_gap`` seconds passed since the last run."""
        return self.last_run is None or self.clock() - self.last_run >= self.min_gap

    def mark_run(self) -> None:
        self.last_run = self.clock()

    async def start(self) -> None:
        if self.running or self.interval <= 0:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name=f"{self.name}-scheduler")
        logger.debug(f"Scheduler {self.name} started ({self.interval}s)")

    async def stop(self) -> None:
        """Stop scheduling; an in-flight run is allowed to complete."""
        self._stop_event.set()
        self._wake.set()
        task, self._task = self._task, None
        if task is not None:
            await task
        logger.debug(f"Scheduler {self.name} stopped")

    async def set_interval(self, seconds: float) -> None:
        """Change the cadence; ``0`` stops polling."""
        self.interval = seconds
        if seconds <= 0:
            await self.stop()
        elif self.running:
            self._wake.set()
        else:
            await self.start()

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.callback()
            except Exception:
                logger.exception(f"Scheduler {self.name} callback error")
            if self._stop_event.is_set():
                break
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass


# ═════════════════════════════════════════════════════════════════════════
#  ChatSyncManager
# ═════════════════════════════════════════════════════════════════════════


class ChatSyncManager:
    """
    Polls the gateway and merges new messages into the session's data.

    Lifecycle:
        1. ``await manager.start()`` begins periodic polling.
        2. ``await manager.open_view(addr)`` polls one contact faster while
           its conversation is on screen; ``close_view`` stops that and
           forces a full poll.
        3. ``await manager.stop()`` during shutdown.

    Outbound messages go through :meth:`send_message`, which appends the
    message locally as soon as the gateway accepts the transaction.
    """

    def __init__(
        self,
        session: Session,
        gateway: GatewayClient,
        config: SyncConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.gateway = gateway
        self.config = config
        interval = config.poll_interval_seconds if config else POLL_INTERVAL
        min_gap = config.min_poll_gap_seconds if config else MIN_POLL_GAP
        self._view_interval = config.view_poll_interval_seconds if config else VIEW_POLL_INTERVAL
        self._clock = clock

        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._states: dict[str, ContactSyncState] = {}
        self._poll_in_progress = False
        self.scheduler = PollScheduler(
            self._scheduled_poll, interval=interval, min_gap=min_gap, clock=clock, name="chats",
        )
        self._views: dict[str, PollScheduler] = {}

    @property
    def data(self):
        return self.session.data

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        await self.scheduler.start()
        logger.info(f"ChatSyncManager started for {self.session.username or self.session.address}")

    async def stop(self) -> None:
        for address in list(self._views):
            await self._stop_view(address)
        await self.scheduler.stop()
        logger.info("ChatSyncManager stopped")

    async def open_view(self, address: str) -> None:
        """Conversation with *address* is on screen: mark read, poll it often."""
        addr = normalize_address(address)
        self.data.mark_read(addr)
        if addr in self._views:
            return
        view = PollScheduler(
            lambda: self._scheduled_contact_sync(addr),
            interval=self._view_interval,
            min_gap=0.0,
            clock=self._clock,
            name=f"view-{addr[:8]}",
        )
        self._views[addr] = view
        await view.start()

    async def close_view(self, address: str) -> int:
        """Stop polling the closed conversation, then force a full poll."""
        addr = normalize_address(address)
        await self._stop_view(addr)
        return await self.poll_all(force=True)

    async def _stop_view(self, addr: str) -> None:
        view = self._views.pop(addr, None)
        if view is not None:
            await view.stop()

    # ── Poll cycle ───────────────────────────────────────────────────

    async def _scheduled_poll(self) -> None:
        await self.poll_all()

    async def _scheduled_contact_sync(self, addr: str) -> None:
        try:
            await self.sync_contact(addr)
        except NetworkError as exc:
            logger.warning(f"View poll for {addr[:8]} failed: {exc}")
        self.data.mark_read(addr)

    async def poll_all(self, force: bool = False) -> int:
        """
        Run one poll cycle; return the number of messages appended.

        Dropped (returns 0) while another cycle is running, or when the
        previous cycle finished less than ``min_gap`` seconds ago unless
        *force* is set.
        """
        if self._poll_in_progress:
            logger.debug("Poll already in progress, skipping request")
            return 0
        if not force and not self.scheduler.due():
            logger.debug("Poll requested too soon after the previous one, skipping")
            return 0

        self._poll_in_progress = True
        try:
            since = self.data.chat_cursor
            try:
                senders = await self.gateway.get_chats(self.session.address, since)
            except NetworkError as exc:
                logger.warning(f"Could not list chats since {since}: {exc}")
                return 0
            if not senders:
                return 0

            addresses = [normalize_address(s) for s in senders]
            results = await asyncio.gather(
                *(self._sync_sender(addr, channel)
                  for addr, channel in zip(addresses, senders.values())),
                return_exceptions=True,
            )

            added = 0
            complete = True
            newest = since
            for addr, res in zip(addresses, results):
                if isinstance(res, BaseException):
                    if is_transient(res):
                        logger.warning(f"Sync for {addr[:8]} failed, retrying next poll: {res}")
                        complete = False
                        continue
                    raise res
                added += res.added
                newest = max(newest, res.cursor)
                if res.unresolved:
                    complete = False

            # Only move the listing cursor when every contact caught up.
            if complete:
                self.data.chat_cursor = max(self.data.chat_cursor, newest)
            self.data.recompute_unread()
            if added:
                logger.info(f"Poll appended {added} message(s) from {len(senders)} chat(s)")
            return added
        finally:
            self._poll_in_progress = False
            self.scheduler.mark_run()

    async def _sync_sender(self, addr: str, channel: str) -> ContactSyncResult:
        if self.session.is_self(addr):
            return ContactSyncResult(address=addr)
        return await self.sync_contact(addr, channel)

    # ── Per-contact sync ─────────────────────────────────────────────

    def contact_state(self, address: str) -> ContactSyncState:
        return self._states.get(normalize_address(address), ContactSyncState.IDLE)

    async def sync_contact(self, address: str, channel: str | None = None) -> ContactSyncResult:
        """Fetch and merge everything newer than the contact's cursor."""
        addr = normalize_address(address)
        channel = channel or chat_id(self.session.address, addr)
        async with self._locks[addr]:
            existing = self.data.get_contact(addr)
            cursor = existing.chat_cursor if existing else 0
            self._states[addr] = ContactSyncState.FETCHING
            try:
                rows = await self.gateway.get_messages(channel, cursor)
                if not rows:
                    return ContactSyncResult(address=addr, cursor=cursor)
                self._states[addr] = ContactSyncState.MERGING
                contact = self.data.ensure_contact(addr)
                return await self._merge_rows(contact, rows)
            finally:
                self._states[addr] = ContactSyncState.IDLE

    async def _resolve_public_key(self, contact: Contact) -> str:
        """Cached public key of *contact*, looked up once on a cache miss."""
        if contact.public_key:
            return contact.public_key
        try:
            public_key = await self.gateway.get_public_key(contact.address)
        except NetworkError as exc:
            raise KeyResolutionError(f"public key lookup for {contact.address} failed") from exc
        if not public_key:
            raise KeyResolutionError(f"no public key found for {contact.address}")
        contact.public_key = public_key
        return public_key

    async def _open_row(
        self, contact: Contact, envelope: EncryptedEnvelope,
    ) -> OpenedMessage:
        key = None
        if envelope.encrypted:
            public_key = await self._resolve_public_key(contact)
            try:
                key = self.session.shared_key(public_key)
            except ValueError as exc:
                logger.warning(f"Public key of {contact.address[:8]} is unusable: {exc}")
        return open_envelope(envelope, key)

    async def _merge_rows(self, contact: Contact, rows: list[dict[str, Any]]) -> ContactSyncResult:
        result = ContactSyncResult(address=contact.address)
        newest = contact.chat_cursor
        unresolved_at: list[int] = []
        unresolved_sent: list[int] = []
        key_error: KeyResolutionError | None = None
        opened: list[tuple[int, OpenedMessage]] = []

        for row in rows:
            ts = _row_timestamp(row)
            newest = max(newest, ts)
            if self.session.is_self(str(row.get("from", ""))):
                result.skipped_self += 1
                continue
            try:
                envelope = extract_envelope(row)
            except ValueError as exc:
                logger.warning(f"Skipping malformed row from {contact.address[:8]} at {ts}: {exc}")
                result.skipped_malformed += 1
                continue
            if key_error is not None and envelope.encrypted:
                unresolved_at.append(ts)
                unresolved_sent.append(envelope.sent_timestamp)
                continue
            try:
                opened.append((ts, await self._open_row(contact, envelope)))
            except KeyResolutionError as exc:
                logger.info(f"Skipping message at {ts}: {exc}")
                key_error = exc
                unresolved_at.append(ts)
                unresolved_sent.append(envelope.sent_timestamp)

        # Messages sent after an unresolved one wait for its retry.
        deferred_at: list[int] = []
        if unresolved_sent:
            first_unresolved = min(unresolved_sent)
            deferred_at = [ts for ts, item in opened if item.sent_timestamp >= first_unresolved]
            opened = [(ts, item) for ts, item in opened if item.sent_timestamp < first_unresolved]

        # Deliveries can arrive out of order; apply oldest first.
        opened.sort(key=lambda pair: pair[1].sent_timestamp)
        for _, item in opened:
            self._apply_profile(contact, item)
            last = contact.last_message
            if last is None or item.sent_timestamp > last.sent_timestamp:
                contact.messages.append(Message(
                    body=item.body,
                    timestamp=now_ms(),
                    sent_timestamp=item.sent_timestamp,
                    direction=Direction.INBOUND,
                    delivery_status=DeliveryStatus.RECEIVED,
                    readable=item.body_readable,
                ))
                result.added += 1

        if unresolved_at:
            newest = min(newest, min(unresolved_at + deferred_at) - 1)
        contact.chat_cursor = max(contact.chat_cursor, newest)
        result.unresolved = len(unresolved_at)
        result.cursor = contact.chat_cursor

        if result.added:
            contact.unread += result.added
            self.data.touch_chat(contact.address, contact.messages[-1].timestamp)
            self.data.recompute_unread()
        return result

    @staticmethod
    def _apply_profile(contact: Contact, item: OpenedMessage) -> None:
        profile = item.sender_profile
        if profile is None:
            return
        contact.sender_info = profile.to_dict()
        if not contact.username and profile.username and profile.username != FAILED_PROFILE_USERNAME:
            contact.username = profile.username

    # ── Outbound ─────────────────────────────────────────────────────

    async def send_message(self, address: str, text: str) -> InjectResult:
        """
        Encrypt, sign and submit a chat message.

        On acceptance the message is appended locally right away with
        ``direction=outbound``; it does not wait for a poll round trip.
        Raises KeyResolutionError when the recipient has no public key and
        NetworkError when the gateway cannot be reached.
        """
        addr = normalize_address(address)
        if self.session.is_self(addr):
            raise ValueError("cannot send a message to yourself")
        async with self._locks[addr]:
            contact = self.data.ensure_contact(addr)
            public_key = await self._resolve_public_key(contact)
            envelope = build_envelope(text, self.session.profile(), self.session.shared_key(public_key))
            tx = create_message(self.session.address, addr, envelope.to_dict(), toll=contact.toll)
            tx_id = self.session.wallet.sign_transaction(tx)
            result = await self.gateway.inject(tx, tx_id)
            if not result.success:
                logger.warning(f"Message to {addr[:8]} rejected: {result.reason or 'unknown error'}")
                return result
            sent_at = now_ms()
            contact.messages.append(Message(
                body=text,
                timestamp=sent_at,
                sent_timestamp=envelope.sent_timestamp,
                direction=Direction.OUTBOUND,
                delivery_status=DeliveryStatus.SENT,
            ))
            self.data.touch_chat(addr, sent_at)
            logger.info(f"Sent message {tx_id[:16]}... to {addr[:8]}")
            return result

    async def send_transfer(self, address: str, amount: int, fee: int | None = None) -> InjectResult:
        """Sign and submit a LIB transfer (amounts in wei)."""
        if fee is None:
            fee = self.config.transfer_fee if self.config else 1
        tx = create_transfer(self.session.address, address, amount, fee=fee)
        tx_id = self.session.wallet.sign_transaction(tx)
        result = await self.gateway.inject(tx, tx_id)
        if not result.success:
            logger.warning(f"Transfer {tx_id[:16]}... rejected: {result.reason or 'unknown error'}")
        return result

    async def register_alias(self) -> InjectResult:
        """Register the session's username for its address."""
        tx = create_register(
            self.session.username, self.session.address, self.session.wallet.public_key_hex,
        )
        tx_id = self.session.wallet.sign_transaction(tx)
        return await self.gateway.inject(tx, tx_id)

    # ── Status ───────────────────────────────────────────────────────

    def status(self) -> dict:
        return {
            "polling": self.scheduler.running,
            "syncing": self._poll_in_progress,
            "last_poll": self.scheduler.last_run,
            "chat_cursor": self.data.chat_cursor,
            "unread": self.data.unread,
            "open_views": sorted(self._views),
            "contacts": {
                addr: {
                    "state": self.contact_state(addr).value,
                    "cursor": c.chat_cursor,
                    "messages": len(c.messages),
                    "unread": c.unread,
                }
                for addr, c in self.data.contacts.items()
            },
        }
