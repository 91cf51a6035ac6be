"""
Test suite for liberdus_core.envelope — building and opening envelopes.

Covers:
  - Wire field names
  - Successful open with the ECDH key of either side
  - Placeholder substitution for a failed body or sender profile
  - Unsupported methods and unencrypted passthrough
"""

import pytest

from liberdus_core.cipher import derive_shared_key, encrypt
from liberdus_core.envelope import (
    DECRYPTION_FAILED_TEXT,
    FAILED_PROFILE_USERNAME,
    METHOD_XCHACHA,
    UNSUPPORTED_TEXT,
    EncryptedEnvelope,
    SenderProfile,
    build_envelope,
    open_envelope,
)


@pytest.fixture
def shared(alice_wallet, bob_wallet):
    return derive_shared_key(alice_wallet.private_key, bob_wallet.public_key)


class TestBuild:

    def test_wire_fields(self, shared):
        env = build_envelope("hi", SenderProfile(username="alice"), shared, now=1234)
        wire = env.to_dict()
        assert set(wire) == {"message", "senderInfo", "encrypted", "encryptionMethod", "sent_timestamp"}
        assert wire["encrypted"] is True
        assert wire["encryptionMethod"] == METHOD_XCHACHA
        assert wire["sent_timestamp"] == 1234

    def test_without_profile(self, shared):
        wire = build_envelope("hi", None, shared, now=1).to_dict()
        assert "senderInfo" not in wire

    def test_from_dict_round_trip(self, shared):
        env = build_envelope("hi", SenderProfile(username="alice"), shared, now=5)
        assert EncryptedEnvelope.from_dict(env.to_dict()) == env

    def test_from_dict_requires_message(self):
        with pytest.raises(ValueError):
            EncryptedEnvelope.from_dict({"encrypted": True, "sent_timestamp": 1})

    def test_from_dict_rejects_bad_timestamp(self):
        with pytest.raises(ValueError):
            EncryptedEnvelope.from_dict({"message": "x", "sent_timestamp": "soon"})


class TestOpen:

    def test_recipient_reads_message(self, alice_wallet, bob_wallet, shared):
        profile = SenderProfile(username="alice", name="Alice", email="a@example.com")
        env = build_envelope("héllo bob", profile, shared, now=42)
        bob_key = derive_shared_key(bob_wallet.private_key, alice_wallet.public_key)
        opened = open_envelope(env, bob_key)
        assert opened.ok
        assert opened.body == "héllo bob"
        assert opened.sent_timestamp == 42
        assert opened.sender_profile == profile

    def test_wrong_key_gives_placeholder(self, shared, carol_wallet, bob_wallet):
        env = build_envelope("secret", SenderProfile(username="alice"), shared, now=1)
        wrong = derive_shared_key(carol_wallet.private_key, bob_wallet.public_key)
        opened = open_envelope(env, wrong)
        assert opened.body == DECRYPTION_FAILED_TEXT
        assert not opened.body_readable
        assert opened.sender_profile.username == FAILED_PROFILE_USERNAME
        assert {e.part for e in opened.errors} == {"message", "sender_info"}

    def test_profile_failure_keeps_body(self, shared):
        env = build_envelope("still readable", SenderProfile(username="alice"), shared, now=1)
        env.sender_info = encrypt(bytes(32), '{"username":"mallory"}')
        opened = open_envelope(env, shared)
        assert opened.body == "still readable"
        assert opened.body_readable
        assert not opened.ok
        assert opened.sender_profile.username == FAILED_PROFILE_USERNAME

    def test_no_key_gives_placeholder(self, shared):
        env = build_envelope("secret", None, shared, now=1)
        opened = open_envelope(env, None)
        assert opened.body == DECRYPTION_FAILED_TEXT
        assert not opened.body_readable

    def test_unsupported_method(self, shared):
        env = build_envelope("secret", None, shared, now=1)
        env.encryption_method = "rot13"
        opened = open_envelope(env, shared)
        assert opened.body == UNSUPPORTED_TEXT
        assert not opened.ok

    def test_unencrypted_passthrough(self):
        env = EncryptedEnvelope.from_dict({
            "message": "plain text",
            "encrypted": False,
            "sent_timestamp": 9,
            "senderInfo": {"username": "bob"},
        })
        opened = open_envelope(env, None)
        assert opened.ok
        assert opened.body == "plain text"
        assert opened.sender_profile.username == "bob"


class TestSenderProfile:

    def test_to_dict_drops_empty(self):
        assert SenderProfile(username="a", name="A").to_dict() == {"username": "a", "name": "A"}

    def test_from_dict_ignores_unknown(self):
        p = SenderProfile.from_dict({"username": "a", "avatar": "x", "phone": 5})
        assert p == SenderProfile(username="a")
