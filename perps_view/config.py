# perps_view/config.py
from pathlib import Path

import yaml
from pydantic import BaseModel


class RpcConfig(BaseModel):
    url: str = "https://api.devnet.solana.com"
    commitment: str = "confirmed"
    timeout_seconds: float = 30


class ProgramConfig(BaseModel):
    program_id: str = "HCkVnLDL76FR8JJ9fbWg67kr48AtNqDgsivSt19Dnu9c"
    market_account: str = "PerpsMarket"
    position_account: str = "PerpsPosition"
    position_seed: str = "perps_position"
    # 链上定点数精度 (PRICE_SCALE = 10^6)
    price_decimals: int = 6
    base_decimals: int = 6
    quote_decimals: int = 6


class OracleConfig(BaseModel):
    hermes_url: str = "https://hermes.pyth.network"
    cache_ttl_ms: int = 700
    timeout_seconds: float = 10


class IdlConfig(BaseModel):
    source: str = "idl/solrush_dex.json"
    timeout_seconds: float = 10


class IntervalsConfig(BaseModel):
    data_refresh_seconds: float = 1.5
    metadata_reload_seconds: float = 15


DEFAULT_TOKENS = {
    "So11111111111111111111111111111111111111112": "SOL",
    "EPjFWaJY42sPiKrraxgS5g5Pab9BbAJtPREHtVb2nNB": "USDC",
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": "USDT",
    "7vfCXTUXx5WJV5JAWYwqBo7dropjUiWDPvR8Ch3HfFPc": "WETH",
    "3jRmy5gMAQLFxb2mD3Gi4p9N9VuwLXp9toaqEhi1QSRT": "RUSH",
}


class Config(BaseModel):
    mock: bool = False
    owner: str | None = None
    rpc: RpcConfig = RpcConfig()
    program: ProgramConfig = ProgramConfig()
    oracle: OracleConfig = OracleConfig()
    idl: IdlConfig = IdlConfig()
    intervals: IntervalsConfig = IntervalsConfig()
    tokens: dict[str, str] = DEFAULT_TOKENS


def load_config(path: Path) -> Config:
    with open(path) as f:
        data = yaml.safe_load(f)
    return Config(**(data or {}))
