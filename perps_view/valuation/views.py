# perps_view/valuation/views.py
from collections.abc import Callable, Iterable, Mapping
from decimal import Decimal

from perps_view.client.hermes import is_tracked_feed, normalize_feed_id
from perps_view.models import Market, MarketView, Position, PositionView, PriceRecord

from .risk import (
    compute_funding_rate,
    compute_liquidation_price,
    compute_pnl,
    compute_size_usd,
)


def is_tracked_oracle(market: Market) -> bool:
    return is_tracked_feed(market.oracle_price_id)


def collect_oracle_ids(markets: Iterable[Market]) -> list[str]:
    ids: dict[str, None] = {}
    for market in markets:
        if is_tracked_oracle(market):
            ids[normalize_feed_id(market.oracle_price_id)] = None
    return list(ids)


def resolve_price_record(
    market: Market, prices: Mapping[str, PriceRecord]
) -> PriceRecord | None:
    if not is_tracked_oracle(market):
        return None
    return prices.get(normalize_feed_id(market.oracle_price_id))


def resolve_index_price(market: Market, prices: Mapping[str, PriceRecord]) -> Decimal | None:
    record = resolve_price_record(market, prices)
    return record.price if record else None


def resolve_mark_price(onchain_mark: Decimal | None, index_price: Decimal | None) -> Decimal | None:
    if onchain_mark is not None and onchain_mark > 0:
        return onchain_mark
    return index_price


def build_market_view(
    market: Market,
    prices: Mapping[str, PriceRecord],
    resolve_symbol: Callable[[str], str],
) -> MarketView:
    record = resolve_price_record(market, prices)
    index_price = resolve_index_price(market, prices)
    base_symbol = resolve_symbol(market.base_mint)

    return MarketView(
        id=market.id,
        symbol=f"{base_symbol}-PERP",
        base_mint=market.base_mint,
        quote_mint=market.quote_mint,
        base_symbol=base_symbol,
        quote_symbol=resolve_symbol(market.quote_mint),
        oracle_price_id=market.oracle_price_id,
        mark_price=resolve_mark_price(market.mark_price, index_price),
        index_price=index_price,
        funding_rate=compute_funding_rate(market.funding_rate_bps),
        open_interest=market.open_interest,
        max_leverage=market.max_leverage,
        maintenance_margin_bps=market.maintenance_margin_bps,
        last_updated=record.publish_time if record else None,
        oracle_price_account=market.oracle_price_account,
        cumulative_funding=market.cumulative_funding,
        last_funding_ts=market.last_funding_ts,
    )


def build_position_view(position: Position, market: MarketView | None) -> PositionView:
    mark_price = market.mark_price if market else None
    maintenance_margin_bps = market.maintenance_margin_bps if market else None

    return PositionView(
        id=position.id,
        market_id=position.market_id,
        side=position.side,
        size=position.size,
        entry_price=position.entry_price or None,
        mark_price=mark_price,
        size_usd=compute_size_usd(position, mark_price),
        unrealized_pnl=compute_pnl(position, mark_price),
        leverage=position.leverage,
        margin=position.collateral or None,
        collateral_usd=position.collateral,
        liquidation_price=compute_liquidation_price(position, maintenance_margin_bps),
    )


def build_position_views(
    positions: Iterable[Position], markets: Iterable[MarketView]
) -> list[PositionView]:
    by_id = {market.id: market for market in markets}
    return [build_position_view(p, by_id.get(p.market_id)) for p in positions]
