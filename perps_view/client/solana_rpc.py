"""Solana JSON-RPC 客户端 (只读)"""

import asyncio
import base64
import binascii
import itertools
import json
from dataclasses import dataclass, field
from typing import Any

import aiohttp

MAX_MULTIPLE_ACCOUNTS = 100


class SolanaRpcError(Exception):
    """RPC 传输或 JSON-RPC 错误"""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


@dataclass(frozen=True)
class RpcAccount:
    pubkey: str
    data: bytes
    owner: str
    lamports: int


def _decode_data(raw: Any) -> bytes:
    # ["<base64>", "base64"]
    if isinstance(raw, list) and raw and isinstance(raw[0], str):
        try:
            return base64.b64decode(raw[0])
        except (binascii.Error, ValueError) as e:
            raise SolanaRpcError(-1, f"Invalid account data encoding: {e}") from e
    raise SolanaRpcError(-1, f"Unexpected account data: {raw!r}")


def _parse_account(pubkey: str, account: dict[str, Any]) -> RpcAccount:
    if not isinstance(account, dict):
        raise SolanaRpcError(-1, f"Unexpected account entry for {pubkey}")
    return RpcAccount(
        pubkey=pubkey,
        data=_decode_data(account.get("data")),
        owner=str(account.get("owner", "")),
        lamports=int(account.get("lamports", 0)),
    )


@dataclass
class SolanaRpcClient:
    """Solana JSON-RPC 客户端"""

    url: str = "https://api.devnet.solana.com"
    commitment: str = "confirmed"
    timeout_seconds: float = 30
    _session: aiohttp.ClientSession | None = field(default=None, repr=False)
    _ids: Any = field(default_factory=itertools.count, repr=False)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self._session

    async def __aenter__(self) -> "SolanaRpcClient":
        self._get_session()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def _request(self, method: str, params: list[Any]) -> Any:
        """发送 JSON-RPC 请求"""
        session = self._get_session()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}

        try:
            response = await session.post(self.url, json=payload)
            if response.status != 200:
                error_text = await response.text()
                raise SolanaRpcError(response.status, f"HTTP {response.status}: {error_text[:200]}")
            body = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            raise SolanaRpcError(-1, f"{method} failed: {e}") from e

        if not isinstance(body, dict):
            raise SolanaRpcError(-1, f"{method}: malformed response")
        if "error" in body:
            error = body["error"] or {}
            raise SolanaRpcError(error.get("code", -1), f"{method}: {error.get('message', error)}")
        return body.get("result")

    async def get_program_accounts(
        self,
        program_id: str,
        filters: list[dict[str, Any]] | None = None,
        data_slice: dict[str, int] | None = None,
    ) -> list[RpcAccount]:
        """getProgramAccounts"""
        cfg: dict[str, Any] = {"encoding": "base64", "commitment": self.commitment}
        if filters:
            cfg["filters"] = filters
        if data_slice is not None:
            cfg["dataSlice"] = data_slice

        result = await self._request("getProgramAccounts", [program_id, cfg])
        if isinstance(result, dict) and "value" in result:
            result = result["value"]
        if not isinstance(result, list):
            raise SolanaRpcError(-1, "getProgramAccounts: malformed result")

        try:
            return [_parse_account(item["pubkey"], item["account"]) for item in result]
        except (KeyError, TypeError) as e:
            raise SolanaRpcError(-1, f"getProgramAccounts: malformed entry ({e})") from e

    async def get_multiple_accounts(self, pubkeys: list[str]) -> list[RpcAccount | None]:
        """getMultipleAccounts，按 100 个一批，保持输入顺序"""
        accounts: list[RpcAccount | None] = []
        for start in range(0, len(pubkeys), MAX_MULTIPLE_ACCOUNTS):
            chunk = pubkeys[start : start + MAX_MULTIPLE_ACCOUNTS]
            result = await self._request(
                "getMultipleAccounts",
                [chunk, {"encoding": "base64", "commitment": self.commitment}],
            )
            values = result.get("value") if isinstance(result, dict) else None
            if not isinstance(values, list) or len(values) != len(chunk):
                raise SolanaRpcError(-1, "getMultipleAccounts: malformed result")
            for pubkey, value in zip(chunk, values):
                accounts.append(_parse_account(pubkey, value) if value else None)
        return accounts
