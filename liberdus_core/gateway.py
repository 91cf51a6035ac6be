"""
HTTP client for the Liberdus gateway.

Built on ``aiohttp``.  Every request goes to a gateway picked at random
from the configured list and is bounded by a ``ClientTimeout``.

Endpoints
---------
GET  /address/{usernameHash}                 username -> address
GET  /account/{longAddress}                  account record (publicKey)
GET  /account/{longAddress}/chats/{since}    senders with new activity
GET  /messages/{channelId}/{since}           raw ledger rows of a channel
POST /inject                                 submit a signed transaction

Any transport failure, non-2xx status or undecodable body raises
:class:`~liberdus_core.errors.NetworkError`.

Usage:
    async with GatewayClient(["https://test.liberdus.com:3030"]) as gw:
        pub = await gw.get_public_key(address)
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any

import aiohttp

from liberdus_core.codec import long_address, normalize_address, parse, stringify
from liberdus_core.errors import NetworkError
from liberdus_core.transaction import Transaction, username_hash

logger = logging.getLogger("liberdus_gateway")

DEFAULT_TIMEOUT = 10.0


@dataclass
class InjectResult:
    success: bool
    txid: str
    reason: str = ""


class GatewayClient:
    """Thin async wrapper over the gateway's REST endpoints."""

    def __init__(
        self,
        gateways: list[str],
        timeout: float = DEFAULT_TIMEOUT,
        session: aiohttp.ClientSession | None = None,
    ):
        if not gateways:
            raise ValueError("at least one gateway URL is required")
        self.gateways = [g.rstrip("/") for g in gateways]
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    # ── Lifecycle ────────────────────────────────────────────────────

    async def __aenter__(self) -> GatewayClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    # ── Transport ────────────────────────────────────────────────────

    def _url(self, path: str) -> str:
        return random.choice(self.gateways) + path

    async def _request(self, method: str, path: str, body: str | None = None) -> Any:
        url = self._url(path)
        headers = {"Content-Type": "application/json"} if body is not None else None
        try:
            async with self._get_session().request(
                method, url, data=body, headers=headers, timeout=self.timeout,
            ) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    raise NetworkError(f"{method} {path} returned HTTP {resp.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning(f"Gateway request failed: {method} {path}: {exc!r}")
            raise NetworkError(f"{method} {path} failed: {exc!r}") from exc
        if not text.strip():
            return None
        try:
            return parse(text)
        except ValueError as exc:
            raise NetworkError(f"{method} {path} returned invalid JSON") from exc

    async def _get(self, path: str) -> Any:
        return await self._request("GET", path)

    # ── Endpoints ────────────────────────────────────────────────────

    async def lookup_address(self, username: str) -> str | None:
        """Address registered for *username*, or None if it is free."""
        data = await self._get(f"/address/{username_hash(username)}")
        if isinstance(data, dict) and data.get("address"):
            return normalize_address(data["address"])
        return None

    async def check_username(self, username: str, my_address: str | None = None) -> str:
        """``"mine"``, ``"taken"`` or ``"available"``."""
        data = await self._get(f"/address/{username_hash(username)}")
        if data is None:
            raise NetworkError("empty response from username lookup")
        if isinstance(data, dict) and data.get("address"):
            if my_address and normalize_address(data["address"]) == normalize_address(my_address):
                return "mine"
            return "taken"
        return "available"

    async def get_public_key(self, address: str) -> str | None:
        data = await self._get(f"/account/{long_address(address)}")
        if isinstance(data, dict):
            account = data.get("account") or {}
            if isinstance(account, dict) and account.get("publicKey"):
                return str(account["publicKey"])
        return None

    async def get_chats(self, address: str, since: int) -> dict[str, str]:
        """Map of sender address -> channel id with activity after *since*."""
        data = await self._get(f"/account/{long_address(address)}/chats/{since}")
        chats = data.get("chats") if isinstance(data, dict) else None
        if not isinstance(chats, dict):
            return {}
        return {str(sender): str(channel) for sender, channel in chats.items()}

    async def get_messages(self, channel_id: str, since: int) -> list[dict[str, Any]]:
        data = await self._get(f"/messages/{channel_id}/{since}")
        messages = data.get("messages") if isinstance(data, dict) else None
        if not isinstance(messages, list):
            return []
        return [m for m in messages if isinstance(m, dict)]

    async def inject(self, tx: Transaction, tx_id: str = "") -> InjectResult:
        """Submit a signed transaction."""
        body = stringify({"tx": tx.to_json()})
        data = await self._request("POST", "/inject", body=body)
        result = data.get("result", data) if isinstance(data, dict) else {}
        if not isinstance(result, dict):
            result = {}
        return InjectResult(
            success=bool(result.get("success", False)),
            txid=tx_id or str(result.get("txid", "")),
            reason=str(result.get("reason", "") or ""),
        )
