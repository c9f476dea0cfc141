# perps_view/chain/pda.py
from solders.pubkey import Pubkey


def to_pubkey(value: str | Pubkey) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    return Pubkey.from_string(value)


def derive_position_address(
    owner: str | Pubkey,
    market: str | Pubkey,
    program_id: str | Pubkey,
    seed: str = "perps_position",
) -> str:
    """PDA(["perps_position", owner, market])"""
    pda, _ = Pubkey.find_program_address(
        [seed.encode(), bytes(to_pubkey(owner)), bytes(to_pubkey(market))],
        to_pubkey(program_id),
    )
    return str(pda)
