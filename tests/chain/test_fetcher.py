from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import base58
import pytest
from solders.pubkey import Pubkey

from perps_view.chain.fetcher import (
    AccountDecodeError,
    StateFetcher,
    market_from_account,
    position_from_account,
)
from perps_view.chain.idl import account_discriminator
from perps_view.chain.pda import derive_position_address
from perps_view.chain.symbols import SymbolRegistry
from perps_view.client.solana_rpc import RpcAccount
from perps_view.config import ProgramConfig
from perps_view.models import Side

PROGRAM = ProgramConfig()
SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWaJY42sPiKrraxgS5g5Pab9BbAJtPREHtVb2nNB"


def account(pubkey, data: bytes) -> RpcAccount:
    return RpcAccount(pubkey=str(pubkey), data=data, owner=PROGRAM.program_id, lamports=1)


def make_fetcher(rpc: MagicMock) -> StateFetcher:
    return StateFetcher(rpc, PROGRAM, SymbolRegistry({SOL_MINT: "SOL", USDC_MINT: "USDC"}))


@pytest.mark.asyncio
async def test_fetch_markets_decodes_and_sorts(schema, market_bytes):
    sol, usdc = Pubkey.from_string(SOL_MINT), Pubkey.from_string(USDC_MINT)
    feed = bytes(range(32))
    rpc = MagicMock()
    rpc.get_program_accounts = AsyncMock(
        return_value=[
            account("Zzzz1111111111111111111111111111111111111111", market_bytes(sol, usdc)),
            account("Aaaa1111111111111111111111111111111111111111", market_bytes(sol, usdc, feed)),
        ]
    )
    fetcher = make_fetcher(rpc)

    markets = await fetcher.fetch_markets(schema)

    assert [m.id for m in markets] == [
        "Aaaa1111111111111111111111111111111111111111",
        "Zzzz1111111111111111111111111111111111111111",
    ]
    market = markets[0]
    assert market.base_mint == SOL_MINT
    assert market.quote_mint == USDC_MINT
    assert market.oracle_price_id == "0x" + feed.hex()
    assert market.mark_price is None
    assert market.funding_rate_bps == 10
    assert market.open_interest == Decimal(1000)
    assert market.max_leverage == 20
    assert market.maintenance_margin_bps == 500
    assert market.last_funding_ts == 1_700_000_000

    memcmp = rpc.get_program_accounts.call_args.kwargs["filters"][0]["memcmp"]
    assert memcmp["offset"] == 0
    assert base58.b58decode(memcmp["bytes"]) == account_discriminator("PerpsMarket")


@pytest.mark.asyncio
async def test_fetch_markets_skips_malformed_accounts(schema, market_bytes):
    sol, usdc = Pubkey.from_string(SOL_MINT), Pubkey.from_string(USDC_MINT)
    good = market_bytes(sol, usdc)
    rpc = MagicMock()
    rpc.get_program_accounts = AsyncMock(
        return_value=[
            account("Good111111111111111111111111111111111111111", good),
            account("Short11111111111111111111111111111111111111", good[:40]),
            account(
                "Neg1111111111111111111111111111111111111111",
                market_bytes(sol, usdc, open_interest=-5),
            ),
        ]
    )
    fetcher = make_fetcher(rpc)

    markets = await fetcher.fetch_markets(schema)

    assert [m.id for m in markets] == ["Good111111111111111111111111111111111111111"]
    diagnostics = fetcher.take_diagnostics()
    assert len(diagnostics) == 2
    assert fetcher.take_diagnostics() == []


@pytest.mark.asyncio
async def test_markets_exist_probe():
    rpc = MagicMock()
    rpc.get_program_accounts = AsyncMock(return_value=[account("M", b"")])
    fetcher = make_fetcher(rpc)

    assert await fetcher.markets_exist() is True
    kwargs = rpc.get_program_accounts.call_args.kwargs
    assert kwargs["data_slice"] == {"offset": 0, "length": 0}

    rpc.get_program_accounts = AsyncMock(return_value=[])
    assert await fetcher.markets_exist() is False


@pytest.mark.asyncio
async def test_fetch_positions_reads_derived_accounts(schema, position_bytes):
    owner = Pubkey.new_unique()
    market_a, market_b = Pubkey.new_unique(), Pubkey.new_unique()
    rpc = MagicMock()
    rpc.get_multiple_accounts = AsyncMock(
        return_value=[
            account("PosA", position_bytes(owner, market_a, side=1, leverage=0)),
            None,
        ]
    )
    fetcher = make_fetcher(rpc)

    positions = await fetcher.fetch_positions(schema, str(owner), [str(market_a), str(market_b)])

    addresses = rpc.get_multiple_accounts.call_args.args[0]
    assert addresses == [
        derive_position_address(owner, market_a, PROGRAM.program_id),
        derive_position_address(owner, market_b, PROGRAM.program_id),
    ]
    assert len(positions) == 1
    position = positions[0]
    assert position.id == addresses[0]
    assert position.owner == str(owner)
    assert position.market_id == str(market_a)
    assert position.side == Side.SHORT
    assert position.size == Decimal(10)
    assert position.entry_price == Decimal(100)
    assert position.collateral == Decimal(200)
    assert position.leverage is None


@pytest.mark.asyncio
async def test_fetch_positions_skips_foreign_and_corrupt_accounts(
    schema, position_bytes, market_bytes
):
    owner = Pubkey.new_unique()
    markets = [Pubkey.new_unique() for _ in range(3)]
    rpc = MagicMock()
    rpc.get_multiple_accounts = AsyncMock(
        return_value=[
            account("P1", position_bytes(Pubkey.new_unique(), markets[0])),
            account("P2", market_bytes(Pubkey.new_unique(), Pubkey.new_unique())),
            account("P3", position_bytes(owner, markets[2], side=7)),
        ]
    )
    fetcher = make_fetcher(rpc)

    positions = await fetcher.fetch_positions(schema, str(owner), [str(m) for m in markets])

    assert positions == []
    assert len(fetcher.take_diagnostics()) == 3


@pytest.mark.asyncio
async def test_fetch_positions_without_markets():
    rpc = MagicMock()
    rpc.get_multiple_accounts = AsyncMock()
    fetcher = make_fetcher(rpc)

    assert await fetcher.fetch_positions(MagicMock(), "owner", []) == []
    rpc.get_multiple_accounts.assert_not_called()


def test_resolve_symbol_unknown_mint():
    fetcher = make_fetcher(MagicMock())
    assert fetcher.resolve_symbol(SOL_MINT) == "SOL"
    assert fetcher.resolve_symbol("Mystery111111111111111111111111111111111111") == "UNKNOWN"


def test_market_from_account_optional_fields():
    market = market_from_account(
        "M",
        {
            "base_mint": SOL_MINT,
            "quote_mint": USDC_MINT,
            "mark_price_i64": 101_500_000,
            "funding_rate_i64": -3,
            "open_interest_i128": 0,
            "max_leverage": 0,
        },
        PROGRAM,
    )

    assert market.mark_price == Decimal("101.5")
    assert market.funding_rate_bps == -3
    assert market.max_leverage is None
    assert market.maintenance_margin_bps is None
    assert market.oracle_price_id is None
    assert market.cumulative_funding == Decimal(0)


def test_market_from_account_missing_required_field():
    with pytest.raises(AccountDecodeError, match="base_mint"):
        market_from_account("M", {"quote_mint": USDC_MINT}, PROGRAM)


def test_position_side_from_enum_variant():
    fields = {
        "owner": "Owner",
        "market": "Market",
        "side": {"Long": {}},
        "size": 1_000_000,
        "entry_price": 0,
        "collateral": 0,
    }
    position = position_from_account("P", fields, PROGRAM)
    assert position.side == Side.LONG
    assert position.entry_price == 0
    assert position.leverage is None
