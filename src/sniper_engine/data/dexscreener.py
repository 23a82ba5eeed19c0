"""DexScreener market data: pool liquidity, price and token metadata."""

from __future__ import annotations

from sniper_engine.config import Settings
from sniper_engine.data.http import JsonHttpClient
from sniper_engine.errors import DataUnavailableError
from sniper_engine.schemas import DexPair, DexTokensPayload
from sniper_engine.types import SOL_MINT, PairSnapshot
from sniper_engine.utils.logging import get_logger

_CHAIN_ID = "solana"


class DexScreenerClient:
    """Reads the deepest Solana pool listed for a token."""

    def __init__(self, settings: Settings, http: JsonHttpClient) -> None:
        self._settings = settings
        self._http = http
        self._logger = get_logger("sniper_engine.data.dexscreener")

    async def token_snapshot(self, token_address: str) -> PairSnapshot:
        """Liquidity/price/metadata of the highest-liquidity Solana pair.

        Raises DataUnavailableError when no Solana pair is listed yet.
        """
        url = f"{self._settings.dexscreener_url.rstrip('/')}/{token_address}"
        result = await self._http.get_json(url)
        if not result.ok:
            raise DataUnavailableError(f"dexscreener_unavailable: {result.error}")
        payload = DexTokensPayload.parse_payload(result.data, source="dexscreener")
        pair = _best_pair(payload.pairs or [], token_address)
        if pair is None:
            raise DataUnavailableError(f"dexscreener_no_pair: {token_address}")
        return PairSnapshot(
            token_address=token_address,
            liquidity_usd=pair.liquidity.usd if pair.liquidity else None,
            price_usd=pair.price_usd,
            price_native=pair.price_native,
            symbol=pair.base_token.symbol,
            name=pair.base_token.name,
            pair_address=pair.pair_address,
        )

    async def liquidity_usd(self, token_address: str) -> float:
        snapshot = await self.token_snapshot(token_address)
        if snapshot.liquidity_usd is None:
            raise DataUnavailableError(f"dexscreener_no_liquidity: {token_address}")
        return snapshot.liquidity_usd

    async def sol_price_usd(self) -> float:
        """Current SOL price, falling back to the configured default."""
        try:
            snapshot = await self.token_snapshot(SOL_MINT)
        except DataUnavailableError as exc:
            self._logger.warning("sol_price_fallback", error=str(exc))
            return self._settings.default_sol_price_usd
        if snapshot.price_usd is None or snapshot.price_usd <= 0:
            return self._settings.default_sol_price_usd
        return snapshot.price_usd


def _best_pair(pairs: list[DexPair], token_address: str) -> DexPair | None:
    candidates = [p for p in pairs if p.chain_id == _CHAIN_ID]
    if not candidates:
        return None
    # Prefer pools where the token is the base asset.
    based = [p for p in candidates if p.base_token.address == token_address] or candidates
    return max(based, key=lambda p: (p.liquidity.usd or 0.0) if p.liquidity else 0.0)
