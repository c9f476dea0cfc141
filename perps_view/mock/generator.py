# perps_view/mock/generator.py
"""Simulated markets and positions for running without an RPC endpoint."""

import logging
import random
import time
from dataclasses import dataclass
from decimal import Decimal

from perps_view.models import Market, Position, PriceRecord, Side
from perps_view.valuation.risk import compute_liquidation_price

logger = logging.getLogger(__name__)

MOCK_MAINTENANCE_MARGIN_BPS = 500
PRICE_QUANT = Decimal("0.000001")


@dataclass(frozen=True)
class MockMarketConfig:
    base_symbol: str
    base_price: Decimal
    volatility: float
    funding_rate_bps: int
    max_leverage: int


MOCK_MARKETS = [
    MockMarketConfig("SOL", Decimal(100), 0.02, 10, 20),
    MockMarketConfig("BTC", Decimal(45000), 0.015, 8, 15),
    MockMarketConfig("ETH", Decimal(2500), 0.018, 9, 20),
]

MOCK_QUOTE_MINT = "mock-usd-mint"

# (market index, side, size, leverage)
DEMO_POSITIONS = [
    (0, Side.LONG, Decimal(10), 5),
    (2, Side.SHORT, Decimal("0.5"), 10),
]


def mock_mint(base_symbol: str) -> str:
    return f"mock-{base_symbol.lower()}-mint"


def mock_feed_id(index: int) -> str:
    return "0x" + f"{index + 1:064x}"


class MockPerpsSource:
    def __init__(self, seed: int | None = None, markets: list[MockMarketConfig] | None = None):
        self.configs = markets or MOCK_MARKETS
        self._rng = random.Random(seed)
        self._prices = {i: cfg.base_price for i, cfg in enumerate(self.configs)}
        self._positions: dict[str, list[Position]] = {}

    @property
    def tokens(self) -> dict[str, str]:
        tokens = {mock_mint(cfg.base_symbol): cfg.base_symbol for cfg in self.configs}
        tokens[MOCK_QUOTE_MINT] = "USD"
        return tokens

    def _step(self, price: Decimal, volatility: float) -> Decimal:
        shock = self._rng.gauss(0, 1)
        moved = price * (1 + Decimal(str(volatility * shock)))
        return max(moved, price / 2).quantize(PRICE_QUANT)

    def advance(self) -> None:
        for i, cfg in enumerate(self.configs):
            self._prices[i] = self._step(self._prices[i], cfg.volatility)

    def price(self, index: int) -> Decimal:
        return self._prices[index]

    def markets(self) -> list[Market]:
        return [
            Market(
                id=f"mock-market-{i}",
                base_mint=mock_mint(cfg.base_symbol),
                quote_mint=MOCK_QUOTE_MINT,
                oracle_price_id=mock_feed_id(i),
                oracle_price_account=None,
                mark_price=self._prices[i],
                funding_rate_bps=cfg.funding_rate_bps,
                open_interest=Decimal(self._rng.randint(500_000, 1_500_000)),
                max_leverage=cfg.max_leverage,
                maintenance_margin_bps=MOCK_MAINTENANCE_MARGIN_BPS,
            )
            for i, cfg in enumerate(self.configs)
        ]

    def index_prices(self) -> dict[str, PriceRecord]:
        now = int(time.time())
        records: dict[str, PriceRecord] = {}
        for i in range(len(self.configs)):
            # index 与 mark 偏差不超过 0.05%
            drift = Decimal(str((self._rng.random() - 0.5) * 0.001))
            feed_id = mock_feed_id(i)
            records[feed_id] = PriceRecord(
                feed_id=feed_id,
                price=(self._prices[i] * (1 + drift)).quantize(PRICE_QUANT),
                confidence=Decimal(0),
                expo=-6,
                publish_time=now,
            )
        return records

    def _open_demo_positions(self, owner: str) -> list[Position]:
        positions = []
        for index, side, size, leverage in DEMO_POSITIONS:
            if index >= len(self.configs):
                continue
            entry = self._prices[index]
            positions.append(
                Position(
                    id=f"mock-position-{owner[:8]}-{index}",
                    owner=owner,
                    market_id=f"mock-market-{index}",
                    side=side,
                    size=size,
                    entry_price=entry,
                    collateral=(entry * size / leverage).quantize(PRICE_QUANT),
                    leverage=leverage,
                )
            )
        return positions

    def _is_liquidated(self, position: Position) -> bool:
        liquidation_price = compute_liquidation_price(position, MOCK_MAINTENANCE_MARGIN_BPS)
        if liquidation_price is None:
            return False
        mark = self._prices[int(position.market_id.rsplit("-", 1)[1])]
        if position.side == Side.LONG:
            return mark <= liquidation_price
        return mark >= liquidation_price

    def positions(self, owner: str) -> list[Position]:
        if owner not in self._positions:
            self._positions[owner] = self._open_demo_positions(owner)

        alive = []
        for position in self._positions[owner]:
            if self._is_liquidated(position):
                logger.info(f"Mock position {position.id} liquidated")
                continue
            alive.append(position)
        self._positions[owner] = alive
        return list(alive)
