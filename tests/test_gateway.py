"""
Tests for liberdus_core.gateway against an in-process aiohttp server.

Covers:
  - Username lookup / availability
  - Public key lookup
  - Chat listing and message fetch URLs (long addresses, cursors)
  - Transaction injection body format
  - NetworkError on HTTP errors, bad JSON and unreachable gateways
"""

from __future__ import annotations

import contextlib

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from liberdus_core.codec import long_address, parse
from liberdus_core.errors import NetworkError
from liberdus_core.gateway import GatewayClient
from liberdus_core.transaction import create_transfer, username_hash

from tests.conftest import ALICE_ADDRESS, BOB_ADDRESS

PUBKEY = "04" + "22" * 64


# ─── Helpers ────────────────────────────────────────────────────────

class _FakeLedger:
    """Request log + canned state behind the fake gateway routes."""

    def __init__(self):
        self.usernames = {username_hash("alice"): long_address(ALICE_ADDRESS)}
        self.accounts = {long_address(BOB_ADDRESS): {"publicKey": PUBKEY}}
        self.chats = {BOB_ADDRESS: "channel-1"}
        self.messages = {"channel-1": [{"timestamp": 5, "from": long_address(BOB_ADDRESS), "message": "{}"}]}
        self.requests: list[str] = []
        self.injected: list[dict] = []
        self.inject_result = {"success": True, "reason": ""}


def _build_app(ledger: _FakeLedger) -> web.Application:
    async def address(request):
        ledger.requests.append(request.path)
        if request.match_info["hash"] == "empty":
            return web.Response(text="")
        found = ledger.usernames.get(request.match_info["hash"])
        return web.json_response({"address": found} if found else {"error": "No account"})

    async def account(request):
        ledger.requests.append(request.path)
        return web.json_response({"account": ledger.accounts.get(request.match_info["id"])})

    async def chats(request):
        ledger.requests.append(request.path)
        return web.json_response({"chats": ledger.chats})

    async def messages(request):
        ledger.requests.append(request.path)
        return web.json_response({"messages": ledger.messages.get(request.match_info["channel"], [])})

    async def inject(request):
        body = parse(await request.text())
        ledger.injected.append(parse(body["tx"]))
        return web.json_response({"result": ledger.inject_result})

    async def broken(request):
        return web.Response(status=500, text="boom")

    async def garbage(request):
        return web.Response(text="<html>not json</html>")

    app = web.Application()
    app.router.add_get("/address/{hash}", address)
    app.router.add_get("/account/{id}", account)
    app.router.add_get("/account/{id}/chats/{since}", chats)
    app.router.add_get("/messages/broken/{since}", broken)
    app.router.add_get("/messages/garbage/{since}", garbage)
    app.router.add_get("/messages/{channel}/{since}", messages)
    app.router.add_post("/inject", inject)
    return app


@contextlib.asynccontextmanager
async def _running_gateway(ledger: _FakeLedger):
    server = TestServer(_build_app(ledger))
    await server.start_server()
    try:
        async with GatewayClient([str(server.make_url("/")).rstrip("/")], timeout=5.0) as gw:
            yield gw
    finally:
        await server.close()


# ═══════════════════════════════════════════════════════════════════
#  Lookups
# ═══════════════════════════════════════════════════════════════════

class TestLookups:
    @pytest.mark.asyncio
    async def test_lookup_registered_username(self):
        async with _running_gateway(_FakeLedger()) as gw:
            assert await gw.lookup_address("Alice") == ALICE_ADDRESS

    @pytest.mark.asyncio
    async def test_lookup_free_username(self):
        async with _running_gateway(_FakeLedger()) as gw:
            assert await gw.lookup_address("nobody") is None

    @pytest.mark.asyncio
    async def test_check_username(self):
        async with _running_gateway(_FakeLedger()) as gw:
            assert await gw.check_username("alice", ALICE_ADDRESS) == "mine"
            assert await gw.check_username("alice", BOB_ADDRESS) == "taken"
            assert await gw.check_username("nobody") == "available"

    @pytest.mark.asyncio
    async def test_public_key(self):
        ledger = _FakeLedger()
        async with _running_gateway(ledger) as gw:
            assert await gw.get_public_key(BOB_ADDRESS) == PUBKEY
            assert await gw.get_public_key(ALICE_ADDRESS) is None
        assert f"/account/{long_address(BOB_ADDRESS)}" in ledger.requests


class TestChatEndpoints:
    @pytest.mark.asyncio
    async def test_get_chats(self):
        ledger = _FakeLedger()
        async with _running_gateway(ledger) as gw:
            chats = await gw.get_chats(ALICE_ADDRESS, 1234)
        assert chats == {BOB_ADDRESS: "channel-1"}
        assert f"/account/{long_address(ALICE_ADDRESS)}/chats/1234" in ledger.requests

    @pytest.mark.asyncio
    async def test_get_messages(self):
        ledger = _FakeLedger()
        async with _running_gateway(ledger) as gw:
            rows = await gw.get_messages("channel-1", 7)
            assert await gw.get_messages("unknown", 0) == []
        assert rows[0]["timestamp"] == 5
        assert "/messages/channel-1/7" in ledger.requests


class TestInject:
    @pytest.mark.asyncio
    async def test_inject_signed_transaction(self, alice_wallet):
        ledger = _FakeLedger()
        tx = create_transfer(alice_wallet.address, BOB_ADDRESS, 10, timestamp=1)
        tx_id = alice_wallet.sign_transaction(tx)
        async with _running_gateway(ledger) as gw:
            result = await gw.inject(tx, tx_id)
        assert result.success
        assert result.txid == tx_id
        assert ledger.injected[0]["sign"]["owner"] == alice_wallet.long_address
        assert ledger.injected[0]["amount"] == 10

    @pytest.mark.asyncio
    async def test_inject_rejected(self, alice_wallet):
        ledger = _FakeLedger()
        ledger.inject_result = {"success": False, "reason": "Insufficient balance"}
        tx = create_transfer(alice_wallet.address, BOB_ADDRESS, 10, timestamp=1)
        async with _running_gateway(ledger) as gw:
            result = await gw.inject(tx, alice_wallet.sign_transaction(tx))
        assert not result.success
        assert result.reason == "Insufficient balance"


class TestFailures:
    @pytest.mark.asyncio
    async def test_http_error(self):
        async with _running_gateway(_FakeLedger()) as gw:
            with pytest.raises(NetworkError):
                await gw.get_messages("broken", 0)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        async with _running_gateway(_FakeLedger()) as gw:
            with pytest.raises(NetworkError):
                await gw.get_messages("garbage", 0)

    @pytest.mark.asyncio
    async def test_empty_username_response(self, monkeypatch):
        monkeypatch.setattr("liberdus_core.gateway.username_hash", lambda name: "empty")
        async with _running_gateway(_FakeLedger()) as gw:
            with pytest.raises(NetworkError):
                await gw.check_username("alice")

    @pytest.mark.asyncio
    async def test_unreachable_gateway(self):
        server = TestServer(web.Application())
        await server.start_server()
        url = str(server.make_url("/")).rstrip("/")
        await server.close()
        async with GatewayClient([url], timeout=2.0) as gw:
            with pytest.raises(NetworkError):
                await gw.get_chats(ALICE_ADDRESS, 0)

    def test_requires_gateway(self):
        with pytest.raises(ValueError):
            GatewayClient([])
