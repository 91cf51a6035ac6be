"""
Local conversation model: contacts, messages and the chat summary list.

``AccountData`` is the aggregate persisted per (username, network) under
the key ``"{username}_{network_id}"``.  Invariants kept here:

  - at most one ``ChatSummary`` per address
  - ``chats`` ordered by ``timestamp`` descending (most recent first)
  - ``unread`` equals the sum of the contacts' unread counts
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from liberdus_core.codec import BigInt, normalize_address
from liberdus_core.wallet import Identity


class Direction(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    RECEIVED = "received"


@dataclass
class Message:
    body: str
    timestamp: int           # local receipt / send time (ms)
    sent_timestamp: int      # sender's clock (ms)
    direction: Direction = Direction.INBOUND
    delivery_status: DeliveryStatus = DeliveryStatus.RECEIVED
    readable: bool = True    # False when the body is a decryption placeholder

    @property
    def is_outbound(self) -> bool:
        return self.direction is Direction.OUTBOUND

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.body,
            "timestamp": self.timestamp,
            "sent_timestamp": self.sent_timestamp,
            "my": self.is_outbound,
            "status": self.delivery_status.value,
            "readable": self.readable,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        outbound = bool(data.get("my", False))
        default_status = DeliveryStatus.SENT if outbound else DeliveryStatus.RECEIVED
        return cls(
            body=data.get("message", ""),
            timestamp=int(data.get("timestamp", 0)),
            sent_timestamp=int(data.get("sent_timestamp", 0)),
            direction=Direction.OUTBOUND if outbound else Direction.INBOUND,
            delivery_status=DeliveryStatus(data.get("status", default_status.value)),
            readable=bool(data.get("readable", True)),
        )


@dataclass
class Contact:
    address: str
    username: str | None = None
    name: str | None = None
    public_key: str | None = None
    sender_info: dict[str, Any] | None = None
    messages: list[Message] = field(default_factory=list)
    unread: int = 0
    toll: BigInt = field(default_factory=lambda: BigInt(1))
    chat_cursor: int = 0

    @property
    def display_name(self) -> str:
        return self.name or self.username or f"{self.address[:8]}...{self.address[-6:]}"

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "username": self.username,
            "name": self.name,
            "public": self.public_key,
            "senderInfo": self.sender_info,
            "messages": [m.to_dict() for m in self.messages],
            "unread": self.unread,
            "toll": BigInt(self.toll),
            "chatTimestamp": self.chat_cursor,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Contact:
        return cls(
            address=normalize_address(data["address"]),
            username=data.get("username"),
            name=data.get("name"),
            public_key=data.get("public"),
            sender_info=data.get("senderInfo"),
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            unread=int(data.get("unread", 0)),
            toll=BigInt(data.get("toll", 1)),
            chat_cursor=int(data.get("chatTimestamp", 0)),
        )


@dataclass
class ChatSummary:
    address: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "timestamp": self.timestamp}


@dataclass
class AccountData:
    """Everything the client keeps for one account on one network."""
    account: Identity
    contacts: dict[str, Contact] = field(default_factory=dict)
    chats: list[ChatSummary] = field(default_factory=list)
    unread: int = 0
    chat_cursor: int = 0
    profile: dict[str, str] = field(default_factory=dict)
    settings: dict[str, Any] = field(
        default_factory=lambda: {"encrypt": True, "toll": BigInt(1)}
    )
    timestamp: int = 0

    @property
    def storage_key(self) -> str:
        return f"{self.account.username}_{self.account.network_id}"

    # ---- contacts ----

    def ensure_contact(self, address: str) -> Contact:
        addr = normalize_address(address)
        contact = self.contacts.get(addr)
        if contact is None:
            contact = Contact(address=addr, toll=BigInt(self.settings.get("toll", 1)))
            self.contacts[addr] = contact
        return contact

    def get_contact(self, address: str) -> Contact | None:
        return self.contacts.get(normalize_address(address))

    # ---- chat summary list ----

    def touch_chat(self, address: str, timestamp: int) -> ChatSummary:
        """Move *address* to its place in the activity-ordered chat list."""
        addr = normalize_address(address)
        self.chats = [c for c in self.chats if c.address != addr]
        entry = ChatSummary(addr, timestamp)
        for index, existing in enumerate(self.chats):
            if existing.timestamp < timestamp:
                self.chats.insert(index, entry)
                break
        else:
            self.chats.append(entry)
        return entry

    # ---- unread ----

    def recompute_unread(self) -> int:
        self.unread = sum(c.unread for c in self.contacts.values())
        return self.unread

    def mark_read(self, address: str) -> None:
        contact = self.get_contact(address)
        if contact is not None:
            contact.unread = 0
        self.recompute_unread()

    # ---- serialisation ----

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "account": self.account.to_dict(),
            "contacts": {addr: c.to_dict() for addr, c in self.contacts.items()},
            "chats": [c.to_dict() for c in self.chats],
            "state": {"unread": self.unread, "chatTimestamp": self.chat_cursor},
            "profile": dict(self.profile),
            "settings": dict(self.settings),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountData:
        contacts = {}
        for raw in data.get("contacts", {}).values():
            contact = Contact.from_dict(raw)
            contacts[contact.address] = contact
        state = data.get("state", {})
        return cls(
            account=Identity.from_dict(data["account"]),
            contacts=contacts,
            chats=[ChatSummary(normalize_address(c["address"]), int(c["timestamp"]))
                   for c in data.get("chats", [])],
            unread=int(state.get("unread", 0)),
            chat_cursor=int(state.get("chatTimestamp", 0)),
            profile=dict(data.get("profile", {})),
            settings=dict(data.get("settings", {"encrypt": True, "toll": BigInt(1)})),
            timestamp=int(data.get("timestamp", 0)),
        )
