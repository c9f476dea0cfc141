import json
import struct
from pathlib import Path
from typing import Any

import pytest
from solders.pubkey import Pubkey

from perps_view.chain.idl import ProgramSchema, account_discriminator, parse_idl

IDL_PATH = Path(__file__).parent.parent / "idl" / "solrush_dex.json"
SCALE = 10**6


def _encode_market(
    base_mint: Pubkey,
    quote_mint: Pubkey,
    feed_id: bytes = b"\x00" * 32,
    max_leverage: int = 20,
    maintenance_margin_bps: int = 500,
    funding_rate: int = 10,
    open_interest: int = 1_000 * SCALE,
) -> bytes:
    return b"".join(
        [
            account_discriminator("PerpsMarket"),
            bytes(base_mint),
            bytes(quote_mint),
            feed_id,
            bytes(Pubkey.new_unique()),
            struct.pack("<HHq", max_leverage, maintenance_margin_bps, funding_rate),
            open_interest.to_bytes(16, "little", signed=True),
            (0).to_bytes(16, "little", signed=True),
            struct.pack("<qqq", 1_700_000_000, 1000, 3600),
            bytes(Pubkey.new_unique()),
            b"\xff",
        ]
    )


def _encode_position(
    owner: Pubkey,
    market: Pubkey,
    side: int = 0,
    size: int = 10 * SCALE,
    entry_price: int = 100 * SCALE,
    collateral: int = 200 * SCALE,
    leverage: int = 5,
) -> bytes:
    return b"".join(
        [
            account_discriminator("PerpsPosition"),
            bytes(owner),
            bytes(market),
            struct.pack("<Bqq", side, size, entry_price),
            struct.pack("<QH", collateral, leverage),
            (0).to_bytes(16, "little", signed=True),
            b"\xfe",
        ]
    )


@pytest.fixture
def idl_document() -> dict[str, Any]:
    return json.loads(IDL_PATH.read_text())


@pytest.fixture
def schema(idl_document: dict[str, Any]) -> ProgramSchema:
    return parse_idl(idl_document, ("PerpsMarket", "PerpsPosition"))


@pytest.fixture
def market_bytes():
    return _encode_market


@pytest.fixture
def position_bytes():
    return _encode_position
