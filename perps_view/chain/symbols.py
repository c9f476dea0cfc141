# perps_view/chain/symbols.py
from collections.abc import Mapping

UNKNOWN_SYMBOL = "UNKNOWN"


class SymbolRegistry:
    def __init__(self, tokens: Mapping[str, str]):
        self._tokens = dict(tokens)

    def resolve(self, mint: str | None) -> str:
        if not mint:
            return UNKNOWN_SYMBOL
        return self._tokens.get(mint, UNKNOWN_SYMBOL)

    def with_tokens(self, tokens: Mapping[str, str]) -> "SymbolRegistry":
        return SymbolRegistry({**self._tokens, **tokens})
