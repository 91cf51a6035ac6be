"""
Encrypted message envelopes.

An envelope is the ``message`` payload of a chat transaction.  On the wire:

    {
      "message":          base64 ciphertext of the body,
      "senderInfo":       base64 ciphertext of the sender profile (optional),
      "encrypted":        true,
      "encryptionMethod": "xchacha20poly1305",
      "sent_timestamp":   sender's clock in ms
    }

Opening an envelope never raises on crypto failure: the body is replaced
by a visible placeholder and the failure is reported on the result, so a
message that cannot be read still shows up in the conversation.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from liberdus_core.cipher import decrypt, encrypt
from liberdus_core.codec import parse, stringify
from liberdus_core.errors import DecryptionError
from liberdus_core.transaction import now_ms

logger = logging.getLogger("liberdus_envelope")

METHOD_XCHACHA = "xchacha20poly1305"

DECRYPTION_FAILED_TEXT = "Decryption failed"
UNSUPPORTED_TEXT = "Unsupported encryption"
FAILED_PROFILE_USERNAME = "decryption_failed"


@dataclass
class SenderProfile:
    """Contact card a sender attaches to every message."""
    username: str = ""
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    linkedin: str | None = None
    x: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SenderProfile:
        known = {k: data[k] for k in cls.__dataclass_fields__ if isinstance(data.get(k), str)}
        return cls(**known)


@dataclass
class EncryptedEnvelope:
    message: str
    sent_timestamp: int
    sender_info: str | dict | None = None
    encrypted: bool = True
    encryption_method: str | None = METHOD_XCHACHA

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "message": self.message,
            "encrypted": self.encrypted,
            "sent_timestamp": self.sent_timestamp,
        }
        if self.sender_info is not None:
            out["senderInfo"] = self.sender_info
        if self.encryption_method is not None:
            out["encryptionMethod"] = self.encryption_method
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EncryptedEnvelope:
        """Parse a wire envelope. Raises ValueError when required fields are missing."""
        message = data.get("message")
        if not isinstance(message, str):
            raise ValueError("envelope has no message text")
        sent = data.get("sent_timestamp", 0)
        if isinstance(sent, bool) or not isinstance(sent, (int, float)):
            raise ValueError("envelope sent_timestamp must be a number")
        return cls(
            message=message,
            sent_timestamp=int(sent),
            sender_info=data.get("senderInfo"),
            encrypted=bool(data.get("encrypted", False)),
            encryption_method=data.get("encryptionMethod"),
        )


@dataclass
class OpenedMessage:
    """Logical content of an envelope after decryption."""
    body: str
    sent_timestamp: int
    sender_profile: SenderProfile | None = None
    errors: list[DecryptionError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def body_readable(self) -> bool:
        return not any(e.part == "message" for e in self.errors)


def _failure(part: str, reason: str) -> DecryptionError:
    return DecryptionError(f"{part}: {reason}", part=part)


def build_envelope(
    plaintext: str,
    profile: SenderProfile | None,
    shared_key: bytes,
    now: int | None = None,
) -> EncryptedEnvelope:
    """Encrypt *plaintext* and the sender profile independently under *shared_key*."""
    sender_info = None
    if profile is not None:
        sender_info = encrypt(shared_key, stringify(profile.to_dict()))
    return EncryptedEnvelope(
        message=encrypt(shared_key, plaintext),
        sender_info=sender_info,
        encrypted=True,
        encryption_method=METHOD_XCHACHA,
        sent_timestamp=now if now is not None else now_ms(),
    )


def open_envelope(envelope: EncryptedEnvelope, shared_key: bytes | None) -> OpenedMessage:
    """
    Decrypt *envelope*; substitute placeholders for the parts that fail.

    *shared_key* may be ``None`` for unencrypted envelopes.
    """
    if not envelope.encrypted:
        profile = None
        if isinstance(envelope.sender_info, dict):
            profile = SenderProfile.from_dict(envelope.sender_info)
        return OpenedMessage(envelope.message, envelope.sent_timestamp, profile)

    if envelope.encryption_method != METHOD_XCHACHA:
        logger.warning(f"Unknown encryption method: {envelope.encryption_method!r}")
        return OpenedMessage(
            UNSUPPORTED_TEXT,
            envelope.sent_timestamp,
            errors=[_failure("message", f"unsupported method {envelope.encryption_method!r}")],
        )

    errors: list[DecryptionError] = []
    body = decrypt(shared_key, envelope.message) if shared_key else None
    if body is None:
        logger.warning("Message body could not be decrypted")
        body = DECRYPTION_FAILED_TEXT
        errors.append(_failure("message", "authentication failed or corrupted data"))

    profile = None
    if envelope.sender_info is not None:
        profile_text = decrypt(shared_key, envelope.sender_info) if shared_key else None
        try:
            if profile_text is None:
                raise ValueError("authentication failed or corrupted data")
            raw = parse(profile_text)
            if not isinstance(raw, dict):
                raise ValueError("sender profile is not an object")
            profile = SenderProfile.from_dict(raw)
        except ValueError as exc:
            logger.warning(f"Sender profile could not be decrypted: {exc}")
            profile = SenderProfile(username=FAILED_PROFILE_USERNAME)
            errors.append(_failure("sender_info", str(exc)))

    return OpenedMessage(body, envelope.sent_timestamp, profile, errors)
