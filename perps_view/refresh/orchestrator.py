# perps_view/refresh/orchestrator.py
import asyncio
import logging
import time
from collections.abc import Callable

from perps_view.chain.fetcher import StateFetcher
from perps_view.chain.idl import IdlLoader, ProgramSchema, SchemaError
from perps_view.chain.symbols import SymbolRegistry
from perps_view.client.hermes import HermesClient
from perps_view.mock.generator import MockPerpsSource
from perps_view.models import EMPTY_SNAPSHOT, Mode, PerpsState, Snapshot
from perps_view.valuation.views import (
    build_market_view,
    build_position_views,
    collect_oracle_ids,
)

logger = logging.getLogger(__name__)

Subscriber = Callable[[PerpsState], None]


class RefreshOrchestrator:
    """Drives the metadata and data loops and publishes one coherent state per cycle."""

    def __init__(
        self,
        fetcher: StateFetcher | None = None,
        prices: HermesClient | None = None,
        schema_loader: IdlLoader | None = None,
        *,
        mock: MockPerpsSource | None = None,
        owner: str | None = None,
        data_interval: float = 1.5,
        metadata_interval: float = 15,
        clock: Callable[[], float] = time.time,
    ):
        if mock is None and (fetcher is None or prices is None or schema_loader is None):
            raise ValueError("live mode needs a fetcher, a price client and a schema loader")

        self.fetcher = fetcher
        self.prices = prices
        self.schema_loader = schema_loader
        self.mock = mock
        self.owner = owner
        self.data_interval = data_interval
        self.metadata_interval = metadata_interval
        self.clock = clock

        self._mock_symbols = SymbolRegistry(mock.tokens) if mock else None
        self._schema: ProgramSchema | None = None
        self._warning: str | None = None
        self._state = PerpsState(EMPTY_SNAPSHOT, loading=True, error=None, warning=None)
        self._subscribers: list[Subscriber] = []

        # 代数计数：stop()/set_owner() 后，进行中的周期结果作废
        self._generation = 0
        # 仅 stop() 递增，schema 重载不受 owner 变化影响
        self._run_generation = 0
        self._cycle_seq = 0
        self._published_seq = 0

        self.running = False
        self._tasks: list[asyncio.Task[None]] = []
        self._wake = asyncio.Event()

    @property
    def state(self) -> PerpsState:
        return self._state

    @property
    def schema(self) -> ProgramSchema | None:
        return self._schema

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def set_owner(self, owner: str | None) -> None:
        if owner == self.owner:
            return
        self.owner = owner
        self._generation += 1
        self._wake.set()

    def select_mode(self) -> Mode:
        if self.mock is not None:
            return Mode.MOCK
        if self._schema is None:
            return Mode.UNINITIALIZED
        return Mode.LIVE

    def _is_current(self, token: int) -> bool:
        return token == self._generation

    def _replace_state(self, state: PerpsState) -> None:
        self._state = state
        for callback in list(self._subscribers):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Subscriber {callback!r} failed: {e}")

    async def reload_schema(self) -> bool:
        """刷新 IDL；失败时清空 schema 并写入 warning"""
        if self.schema_loader is None:
            return False

        token = self._run_generation
        had_schema = self._schema is not None
        try:
            schema = await self.schema_loader.load()
        except SchemaError as e:
            if token != self._run_generation:
                return False
            self._schema = None
            self._warning = str(e)
            logger.warning(f"Perps IDL unavailable, running degraded: {e}")
        else:
            if token != self._run_generation:
                return False
            self._schema = schema
            self._warning = None

        if had_schema != (self._schema is not None):
            self._wake.set()
        if self._state.warning != self._warning:
            self._replace_state(
                PerpsState(
                    self._state.snapshot,
                    loading=self._state.loading,
                    error=self._state.error,
                    warning=self._warning,
                )
            )
        return self._schema is not None

    def _build_mock(self, owner: str | None) -> Snapshot:
        assert self.mock is not None and self._mock_symbols is not None

        self.mock.advance()
        markets = self.mock.markets()
        prices = self.mock.index_prices()
        market_views = [build_market_view(m, prices, self._mock_symbols.resolve) for m in markets]
        positions = self.mock.positions(owner) if owner else []

        return Snapshot(
            markets=tuple(market_views),
            positions=tuple(build_position_views(positions, market_views)),
            as_of=self.clock(),
            status=Mode.MOCK,
            has_markets=len(market_views) > 0,
        )

    async def _build_uninitialized(self) -> Snapshot:
        assert self.fetcher is not None

        exists = await self.fetcher.markets_exist()
        return Snapshot(
            markets=(),
            positions=(),
            as_of=self.clock(),
            status=Mode.UNINITIALIZED,
            has_markets=exists,
        )

    async def _build_live(self, schema: ProgramSchema, owner: str | None) -> Snapshot:
        assert self.fetcher is not None and self.prices is not None

        markets = await self.fetcher.fetch_markets(schema)
        prices = await self.prices.fetch_prices(collect_oracle_ids(markets))
        market_views = [build_market_view(m, prices, self.fetcher.resolve_symbol) for m in markets]

        positions = []
        if owner:
            positions = await self.fetcher.fetch_positions(schema, owner, [m.id for m in markets])

        diagnostics = self.fetcher.take_diagnostics()
        if diagnostics:
            logger.debug(f"Cycle skipped {len(diagnostics)} malformed accounts")

        return Snapshot(
            markets=tuple(market_views),
            positions=tuple(build_position_views(positions, market_views)),
            as_of=self.clock(),
            status=Mode.LIVE,
            has_markets=len(markets) > 0,
        )

    async def refresh(self) -> bool:
        """执行一个数据周期；成功发布新快照时返回 True"""
        token = self._generation
        self._cycle_seq += 1
        seq = self._cycle_seq
        mode = self.select_mode()
        schema = self._schema
        owner = self.owner

        snapshot: Snapshot | None = None
        error: str | None = None
        try:
            if mode == Mode.MOCK:
                snapshot = self._build_mock(owner)
            elif mode == Mode.UNINITIALIZED or schema is None:
                snapshot = await self._build_uninitialized()
            else:
                snapshot = await self._build_live(schema, owner)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.error(f"Failed to refresh perps data ({mode.value}): {error}")

        if not self._is_current(token):
            logger.debug(f"Discarding cycle {seq}: consumer changed")
            return False
        if seq < self._published_seq:
            logger.debug(f"Discarding cycle {seq}: newer cycle {self._published_seq} already published")
            return False
        self._published_seq = seq

        # 失败时保留上一份完整快照
        self._replace_state(
            PerpsState(
                snapshot if snapshot is not None else self._state.snapshot,
                loading=False,
                error=error,
                warning=self._warning,
            )
        )
        return snapshot is not None

    async def _metadata_loop(self) -> None:
        while self.running:
            await asyncio.sleep(self.metadata_interval)
            try:
                await self.reload_schema()
            except Exception as e:
                logger.error(f"Failed to reload perps IDL: {e}")

    async def _data_loop(self) -> None:
        while self.running:
            started = time.monotonic()
            await self.refresh()
            delay = max(0.0, self.data_interval - (time.monotonic() - started))
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    async def start(self) -> None:
        self.running = True
        if self.mock is None:
            await self.reload_schema()
            self._tasks.append(asyncio.create_task(self._metadata_loop()))
        self._tasks.append(asyncio.create_task(self._data_loop()))
        logger.info(f"Perps refresh started in {self.select_mode().value} mode")

    async def stop(self) -> None:
        self.running = False
        self._generation += 1
        self._run_generation += 1
        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info("Perps refresh stopped")
