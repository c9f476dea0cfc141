from decimal import Decimal

from perps_view.mock.generator import (
    MOCK_MAINTENANCE_MARGIN_BPS,
    MOCK_QUOTE_MINT,
    MockPerpsSource,
    mock_feed_id,
    mock_mint,
)
from perps_view.models import Side

OWNER = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"


def test_markets_start_at_base_prices():
    source = MockPerpsSource(seed=1)
    markets = source.markets()

    assert [m.mark_price for m in markets] == [Decimal(100), Decimal(45000), Decimal(2500)]
    assert [m.base_mint for m in markets] == [mock_mint("SOL"), mock_mint("BTC"), mock_mint("ETH")]
    assert all(m.quote_mint == MOCK_QUOTE_MINT for m in markets)
    assert all(m.maintenance_margin_bps == MOCK_MAINTENANCE_MARGIN_BPS for m in markets)
    assert markets[0].oracle_price_id == mock_feed_id(0)


def test_tokens_cover_mock_mints():
    tokens = MockPerpsSource().tokens
    assert tokens[mock_mint("SOL")] == "SOL"
    assert tokens[MOCK_QUOTE_MINT] == "USD"


def test_advance_moves_prices_and_stays_positive():
    source = MockPerpsSource(seed=7)
    for _ in range(200):
        source.advance()
    assert all(source.price(i) > 0 for i in range(3))
    assert source.price(0) != Decimal(100)


def test_seeded_sources_are_reproducible():
    first, second = MockPerpsSource(seed=42), MockPerpsSource(seed=42)
    for _ in range(5):
        first.advance()
        second.advance()
    assert [first.price(i) for i in range(3)] == [second.price(i) for i in range(3)]


def test_index_prices_track_mark():
    source = MockPerpsSource(seed=3)
    records = source.index_prices()

    assert set(records) == {mock_feed_id(i) for i in range(3)}
    for i in range(3):
        index = records[mock_feed_id(i)].price
        assert abs(index - source.price(i)) <= source.price(i) * Decimal("0.001")


def test_demo_positions_for_owner():
    source = MockPerpsSource(seed=5)
    positions = source.positions(OWNER)

    assert [(p.market_id, p.side) for p in positions] == [
        ("mock-market-0", Side.LONG),
        ("mock-market-2", Side.SHORT),
    ]
    sol = positions[0]
    assert sol.owner == OWNER
    assert sol.entry_price == Decimal(100)
    assert sol.collateral == Decimal(200)
    assert sol.leverage == 5
    assert source.positions(OWNER) == positions


def test_liquidated_positions_are_removed():
    source = MockPerpsSource(seed=5)
    source.positions(OWNER)

    # SOL long at 5x liquidates below 85
    source._prices[0] = Decimal(80)
    remaining = source.positions(OWNER)

    assert [p.market_id for p in remaining] == ["mock-market-2"]
