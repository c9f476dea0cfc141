# perps_view/main.py
import argparse
import asyncio
import logging
import signal
from pathlib import Path

from perps_view.chain.fetcher import StateFetcher
from perps_view.chain.idl import IdlLoader
from perps_view.chain.symbols import SymbolRegistry
from perps_view.client.hermes import HermesClient
from perps_view.client.solana_rpc import SolanaRpcClient
from perps_view.config import Config, load_config
from perps_view.mock.generator import MockPerpsSource
from perps_view.models import PerpsState
from perps_view.refresh.orchestrator import RefreshOrchestrator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class PerpsMonitor:
    def __init__(self, config: Config):
        self.config = config
        self.rpc = SolanaRpcClient(
            url=config.rpc.url,
            commitment=config.rpc.commitment,
            timeout_seconds=config.rpc.timeout_seconds,
        )
        self.hermes = HermesClient(
            base_url=config.oracle.hermes_url,
            cache_ttl_ms=config.oracle.cache_ttl_ms,
            timeout_seconds=config.oracle.timeout_seconds,
        )
        self.idl_loader = IdlLoader(
            source=config.idl.source,
            required_accounts=(config.program.market_account, config.program.position_account),
            timeout_seconds=config.idl.timeout_seconds,
        )
        self.fetcher = StateFetcher(self.rpc, config.program, SymbolRegistry(config.tokens))
        self.orchestrator = RefreshOrchestrator(
            self.fetcher,
            self.hermes,
            self.idl_loader,
            mock=MockPerpsSource() if config.mock else None,
            owner=config.owner,
            data_interval=config.intervals.data_refresh_seconds,
            metadata_interval=config.intervals.metadata_reload_seconds,
        )
        self.orchestrator.subscribe(self._on_state)

    def _on_state(self, state: PerpsState) -> None:
        if state.error:
            logger.warning(f"Refresh error (showing last good data): {state.error}")
        for market in state.markets:
            logger.debug(
                f"{market.symbol} mark={market.mark_price} index={market.index_price} "
                f"funding={market.funding_rate}"
            )
        for position in state.positions:
            logger.info(
                f"{position.market_id[:8]} {position.side.value} size={position.size} "
                f"pnl={position.unrealized_pnl} liq={position.liquidation_price}"
            )
        logger.debug(
            f"State {state.mode.value}: markets={len(state.markets)} "
            f"positions={len(state.positions)} has_markets={state.has_markets}"
        )

    async def run(self) -> None:
        await self.orchestrator.start()
        logger.info("Perps monitor started")

        # Wait for shutdown signal
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        await stop_event.wait()

        await self.orchestrator.stop()
        await self.rpc.close()
        await self.hermes.close()
        await self.idl_loader.close()

        logger.info("Perps monitor stopped")


async def main() -> None:
    parser = argparse.ArgumentParser(description="Perpetuals position monitor")
    parser.add_argument("--config", type=Path, default=Path("config.yaml"))
    parser.add_argument("--owner", help="wallet address whose positions are tracked")
    args = parser.parse_args()

    config = load_config(args.config)
    if args.owner:
        config.owner = args.owner
    monitor = PerpsMonitor(config)
    await monitor.run()


if __name__ == "__main__":
    asyncio.run(main())
