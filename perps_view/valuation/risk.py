# perps_view/valuation/risk.py
from decimal import Decimal

from perps_view.models import Position, Side

BPS = Decimal(10000)
ZERO = Decimal(0)


def compute_pnl(position: Position, mark_price: Decimal | None) -> Decimal:
    """Unrealized PnL in quote units; 0 when mark, entry or size is missing."""
    if mark_price is None or position.entry_price == 0 or position.size == 0:
        return ZERO
    if position.side == Side.LONG:
        return (mark_price - position.entry_price) * position.size
    return (position.entry_price - mark_price) * position.size


def compute_liquidation_price(
    position: Position, maintenance_margin_bps: int | None
) -> Decimal | None:
    """Price at which remaining margin equals maintenance margin on entry notional.

    Returns None for closed or unfunded positions and when the market's
    maintenance margin is unknown.
    """
    if maintenance_margin_bps is None:
        return None
    entry, size, margin = position.entry_price, position.size, position.collateral
    if entry <= 0 or size <= 0 or margin <= 0:
        return None

    maintenance = Decimal(maintenance_margin_bps) / BPS * entry * size
    delta = (margin - maintenance) / size
    price = entry - delta if position.side == Side.LONG else entry + delta
    return max(price, ZERO)


def compute_funding_rate(funding_rate_bps: int) -> Decimal:
    # per-period rate, not an accrued amount
    return Decimal(funding_rate_bps) / BPS


def compute_size_usd(position: Position, mark_price: Decimal | None) -> Decimal:
    if mark_price is None:
        return ZERO
    return position.size * mark_price
