# perps_view/chain/fetcher.py
import logging
from decimal import Decimal
from typing import Any

import base58

from perps_view.client.solana_rpc import RpcAccount, SolanaRpcClient
from perps_view.config import ProgramConfig
from perps_view.models import Market, Position, Side

from .idl import ProgramSchema, SchemaError, account_discriminator
from .layout import LayoutError
from .pda import derive_position_address
from .symbols import SymbolRegistry

logger = logging.getLogger(__name__)


class AccountDecodeError(Exception):
    """单个账户无法解码为合法记录"""


def _pick(fields: dict[str, Any], *names: str, required: bool = True) -> Any:
    for name in names:
        if name in fields:
            return fields[name]
    if required:
        raise AccountDecodeError(f"missing field {names[0]}")
    return None


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise AccountDecodeError(f"{name} is not an integer: {value!r}")
    return value


def _as_unsigned(value: Any, name: str) -> int:
    number = _as_int(value, name)
    if number < 0:
        raise AccountDecodeError(f"{name} is negative: {number}")
    return number


def _as_pubkey(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value:
        raise AccountDecodeError(f"{name} is not a public key: {value!r}")
    return value


def _scale(raw: int, decimals: int) -> Decimal:
    return Decimal(raw).scaleb(-decimals)


def _feed_id(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (bytes, list)) and len(value) == 32:
        return "0x" + bytes(value).hex()
    raise AccountDecodeError(f"oracle feed id must be 32 bytes: {value!r}")


def _side(value: Any) -> Side:
    if isinstance(value, dict) and len(value) == 1:
        value = next(iter(value))
    if isinstance(value, str):
        try:
            return Side(value.lower())
        except ValueError:
            raise AccountDecodeError(f"unknown side {value!r}") from None
    if value == 0 and not isinstance(value, bool):
        return Side.LONG
    if value == 1 and not isinstance(value, bool):
        return Side.SHORT
    raise AccountDecodeError(f"unknown side {value!r}")


def market_from_account(pubkey: str, fields: dict[str, Any], program: ProgramConfig) -> Market:
    mark_raw = _pick(fields, "mark_price_i64", "mark_price", required=False)
    mark_price = None
    if mark_raw is not None and _as_int(mark_raw, "mark_price") > 0:
        mark_price = _scale(mark_raw, program.price_decimals)

    max_leverage = _pick(fields, "max_leverage", required=False)
    if max_leverage is not None:
        max_leverage = _as_unsigned(max_leverage, "max_leverage") or None

    mm_bps = _pick(fields, "maintenance_margin_bps", required=False)
    if mm_bps is not None:
        mm_bps = _as_unsigned(mm_bps, "maintenance_margin_bps")

    cumulative = _pick(fields, "cumulative_funding_i128", "cumulative_funding", required=False)
    last_funding_ts = _pick(fields, "last_funding_ts", required=False)
    oracle_account = _pick(fields, "oracle_price_account", required=False)

    return Market(
        id=pubkey,
        base_mint=_as_pubkey(_pick(fields, "base_mint"), "base_mint"),
        quote_mint=_as_pubkey(_pick(fields, "quote_mint"), "quote_mint"),
        oracle_price_id=_feed_id(
            _pick(fields, "pyth_feed_id", "oracle_price_id", "feed_id", required=False)
        ),
        oracle_price_account=oracle_account if isinstance(oracle_account, str) else None,
        mark_price=mark_price,
        funding_rate_bps=_as_int(
            _pick(fields, "funding_rate_bps", "funding_rate_i64"), "funding_rate_bps"
        ),
        open_interest=_scale(
            _as_unsigned(_pick(fields, "open_interest_i128", "open_interest"), "open_interest"),
            program.base_decimals,
        ),
        max_leverage=max_leverage,
        maintenance_margin_bps=mm_bps,
        cumulative_funding=(
            _scale(_as_int(cumulative, "cumulative_funding"), program.quote_decimals)
            if cumulative is not None
            else Decimal(0)
        ),
        last_funding_ts=_as_int(last_funding_ts, "last_funding_ts")
        if last_funding_ts is not None
        else None,
    )


def position_from_account(
    pubkey: str, fields: dict[str, Any], program: ProgramConfig
) -> Position:
    leverage = _pick(fields, "leverage_u16", "leverage", required=False)
    return Position(
        id=pubkey,
        owner=_as_pubkey(_pick(fields, "owner"), "owner"),
        market_id=_as_pubkey(_pick(fields, "market"), "market"),
        side=_side(_pick(fields, "side")),
        size=_scale(_as_unsigned(_pick(fields, "size_i64", "size"), "size"), program.base_decimals),
        entry_price=_scale(
            _as_unsigned(_pick(fields, "entry_price_i64", "entry_price"), "entry_price"),
            program.price_decimals,
        ),
        collateral=_scale(
            _as_unsigned(_pick(fields, "collateral_u64", "collateral"), "collateral"),
            program.quote_decimals,
        ),
        leverage=(_as_unsigned(leverage, "leverage") or None) if leverage is not None else None,
    )


class StateFetcher:
    def __init__(self, rpc: SolanaRpcClient, program: ProgramConfig, symbols: SymbolRegistry):
        self.rpc = rpc
        self.program = program
        self.symbols = symbols
        self.diagnostics: list[str] = []

    def _record(self, message: str) -> None:
        self.diagnostics.append(message)
        logger.warning(message)

    def take_diagnostics(self) -> list[str]:
        diagnostics, self.diagnostics = self.diagnostics, []
        return diagnostics

    @staticmethod
    def _discriminator_filter(discriminator: bytes) -> dict[str, Any]:
        return {"memcmp": {"offset": 0, "bytes": base58.b58encode(discriminator).decode()}}

    def resolve_symbol(self, mint: str | None) -> str:
        return self.symbols.resolve(mint)

    async def markets_exist(self) -> bool:
        """只探测是否存在 market 账户，不需要 IDL"""
        accounts = await self.rpc.get_program_accounts(
            self.program.program_id,
            filters=[self._discriminator_filter(account_discriminator(self.program.market_account))],
            data_slice={"offset": 0, "length": 0},
        )
        return len(accounts) > 0

    def _decode_market(self, schema: ProgramSchema, account: RpcAccount) -> Market:
        try:
            fields = schema.decode(self.program.market_account, account.data)
        except (LayoutError, SchemaError) as e:
            raise AccountDecodeError(str(e)) from e
        return market_from_account(account.pubkey, fields, self.program)

    async def fetch_markets(self, schema: ProgramSchema) -> list[Market]:
        layout = schema.layout(self.program.market_account)
        accounts = await self.rpc.get_program_accounts(
            self.program.program_id,
            filters=[self._discriminator_filter(layout.discriminator)],
        )

        markets: list[Market] = []
        for account in accounts:
            try:
                markets.append(self._decode_market(schema, account))
            except AccountDecodeError as e:
                self._record(f"Skipping market account {account.pubkey}: {e}")

        markets.sort(key=lambda m: m.id)
        return markets

    async def fetch_positions(
        self, schema: ProgramSchema, owner: str, market_ids: list[str]
    ) -> list[Position]:
        if not market_ids:
            return []

        name = self.program.position_account
        addresses = [
            derive_position_address(
                owner, market_id, self.program.program_id, self.program.position_seed
            )
            for market_id in market_ids
        ]
        accounts = await self.rpc.get_multiple_accounts(addresses)

        positions: list[Position] = []
        for market_id, address, account in zip(market_ids, addresses, accounts):
            if account is None:
                continue
            try:
                if not schema.matches(name, account.data):
                    raise AccountDecodeError("discriminator mismatch")
                fields = schema.decode(name, account.data)
                position = position_from_account(address, fields, self.program)
            except (AccountDecodeError, LayoutError) as e:
                self._record(f"Skipping position account {address}: {e}")
                continue

            if position.owner != owner or position.market_id != market_id:
                self._record(f"Skipping position account {address}: owner/market mismatch")
                continue
            positions.append(position)

        return positions
