# perps_view/chain/idl.py
"""Anchor IDL loading: the decoding schema for program accounts."""

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import aiohttp
from pydantic import BaseModel, ValidationError, field_validator

from .layout import decode_struct

logger = logging.getLogger(__name__)

DISCRIMINATOR_SIZE = 8


class SchemaError(Exception):
    """IDL 缺失、无法获取或不合法"""


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:DISCRIMINATOR_SIZE]


class IdlAccount(BaseModel):
    name: str
    discriminator: list[int] | None = None
    type: dict[str, Any] | None = None

    @field_validator("discriminator")
    @classmethod
    def discriminator_is_eight_bytes(cls, v: list[int] | None) -> list[int] | None:
        if v is None or not v:
            return v
        if len(v) != DISCRIMINATOR_SIZE or any(not 0 <= b <= 255 for b in v):
            raise ValueError(f"account discriminator must be {DISCRIMINATOR_SIZE} bytes")
        return v


class IdlTypeDef(BaseModel):
    name: str
    type: dict[str, Any]


class IdlDocument(BaseModel):
    version: str | None = None
    name: str | None = None
    accounts: list[IdlAccount] = []
    types: list[IdlTypeDef]

    @field_validator("types")
    @classmethod
    def types_not_empty(cls, v: list[IdlTypeDef]) -> list[IdlTypeDef]:
        if not v:
            raise ValueError("type registry is empty")
        return v


@dataclass(frozen=True)
class AccountLayout:
    name: str
    discriminator: bytes
    fields: list[Any]


@dataclass(frozen=True)
class ProgramSchema:
    accounts: dict[str, AccountLayout]
    registry: dict[str, dict[str, Any]]
    version: str | None = None

    def layout(self, name: str) -> AccountLayout:
        try:
            return self.accounts[name]
        except KeyError:
            raise SchemaError(f"IDL has no account layout for {name}") from None

    def matches(self, name: str, data: bytes) -> bool:
        return data[:DISCRIMINATOR_SIZE] == self.layout(name).discriminator

    def decode(self, name: str, data: bytes) -> dict[str, Any]:
        layout = self.layout(name)
        return decode_struct(layout.fields, data, DISCRIMINATOR_SIZE, self.registry)


def parse_idl(document: Any, required_accounts: tuple[str, ...] = ()) -> ProgramSchema:
    if isinstance(document, dict) and "types" not in document:
        raise SchemaError("Perps IDL missing `types`.")
    try:
        idl = IdlDocument.model_validate(document)
    except ValidationError as e:
        raise SchemaError(f"Invalid perps IDL: {e.errors()[0]['msg']}") from e

    registry: dict[str, dict[str, Any]] = {t.name: t.type for t in idl.types}
    for account in idl.accounts:
        # legacy IDLs inline the account struct
        if account.type is not None:
            registry.setdefault(account.name, account.type)

    accounts: dict[str, AccountLayout] = {}
    for account in idl.accounts:
        type_def = registry.get(account.name)
        if not type_def or type_def.get("kind") != "struct":
            continue
        discriminator = (
            bytes(account.discriminator)
            if account.discriminator
            else account_discriminator(account.name)
        )
        accounts[account.name] = AccountLayout(
            name=account.name,
            discriminator=discriminator,
            fields=list(type_def.get("fields") or []),
        )

    missing = [name for name in required_accounts if name not in accounts]
    if missing:
        raise SchemaError(f"Perps IDL missing account layouts: {', '.join(missing)}")

    return ProgramSchema(accounts=accounts, registry=registry, version=idl.version)


@dataclass
class IdlLoader:
    source: str
    required_accounts: tuple[str, ...] = ("PerpsMarket", "PerpsPosition")
    timeout_seconds: float = 10
    _session: aiohttp.ClientSession | None = field(default=None, repr=False)

    @property
    def is_remote(self) -> bool:
        return self.source.startswith(("http://", "https://"))

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def _fetch_remote(self) -> Any:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        try:
            response = await self._session.get(self.source)
            if response.status != 200:
                raise SchemaError(f"Unable to load perps IDL (HTTP {response.status}).")
            return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            raise SchemaError(f"Unable to load perps IDL: {e}") from e

    def _read_local(self) -> Any:
        try:
            return json.loads(Path(self.source).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise SchemaError(f"Unable to load perps IDL: {e}") from e

    async def load(self) -> ProgramSchema:
        document = await self._fetch_remote() if self.is_remote else self._read_local()
        schema = parse_idl(document, self.required_accounts)
        logger.debug(f"Loaded IDL {self.source}: accounts={sorted(schema.accounts)}")
        return schema
