# perps_view/models.py
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class Side(str, Enum):
    LONG = "long"
    SHORT = "short"


class Mode(str, Enum):
    MOCK = "mock"
    UNINITIALIZED = "uninitialized"
    LIVE = "live"


@dataclass(frozen=True)
class Market:
    id: str
    base_mint: str
    quote_mint: str
    oracle_price_id: str | None  # 0x 前缀的 32 字节 Pyth feed id
    oracle_price_account: str | None
    mark_price: Decimal | None
    funding_rate_bps: int
    open_interest: Decimal
    max_leverage: int | None
    maintenance_margin_bps: int | None
    cumulative_funding: Decimal = Decimal(0)
    last_funding_ts: int | None = None


@dataclass(frozen=True)
class Position:
    id: str
    owner: str
    market_id: str
    side: Side
    size: Decimal
    entry_price: Decimal  # 0 = never set
    collateral: Decimal
    leverage: int | None


@dataclass(frozen=True)
class PriceRecord:
    feed_id: str
    price: Decimal
    confidence: Decimal
    expo: int
    publish_time: int


@dataclass(frozen=True)
class MarketView:
    id: str
    symbol: str
    base_mint: str
    quote_mint: str
    base_symbol: str
    quote_symbol: str
    oracle_price_id: str | None
    mark_price: Decimal | None
    index_price: Decimal | None
    funding_rate: Decimal
    open_interest: Decimal
    max_leverage: int | None
    maintenance_margin_bps: int | None
    last_updated: int | None
    oracle_price_account: str | None = None
    cumulative_funding: Decimal = Decimal(0)
    last_funding_ts: int | None = None


@dataclass(frozen=True)
class PositionView:
    id: str
    market_id: str
    side: Side
    size: Decimal
    entry_price: Decimal | None
    mark_price: Decimal | None
    size_usd: Decimal
    unrealized_pnl: Decimal
    leverage: int | None
    margin: Decimal | None
    collateral_usd: Decimal
    liquidation_price: Decimal | None


@dataclass(frozen=True)
class Snapshot:
    markets: tuple[MarketView, ...]
    positions: tuple[PositionView, ...]
    as_of: float | None
    status: Mode
    has_markets: bool


@dataclass(frozen=True)
class PerpsState:
    """Consumer-facing view: last good snapshot plus status channels."""

    snapshot: Snapshot
    loading: bool
    error: str | None
    warning: str | None

    @property
    def markets(self) -> tuple[MarketView, ...]:
        return self.snapshot.markets

    @property
    def positions(self) -> tuple[PositionView, ...]:
        return self.snapshot.positions

    @property
    def has_markets(self) -> bool:
        return self.snapshot.has_markets

    @property
    def as_of(self) -> float | None:
        return self.snapshot.as_of

    @property
    def mode(self) -> Mode:
        return self.snapshot.status


EMPTY_SNAPSHOT = Snapshot(
    markets=(),
    positions=(),
    as_of=None,
    status=Mode.UNINITIALIZED,
    has_markets=False,
)
