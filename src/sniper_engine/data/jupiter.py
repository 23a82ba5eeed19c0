"""Jupiter swap aggregator client: quotes, swap transactions, token metadata."""

from __future__ import annotations

from sniper_engine.config import Settings
from sniper_engine.data.http import JsonHttpClient
from sniper_engine.errors import DataUnavailableError, MalformedResponseError, NoRouteError
from sniper_engine.schemas import JupiterQuotePayload, JupiterSwapPayload, JupiterTokenPayload
from sniper_engine.types import Quote, UnsignedTransaction
from sniper_engine.utils.logging import get_logger


class JupiterClient:
    """Thin async client for the aggregator quote/swap/tokens endpoints."""

    def __init__(self, settings: Settings, http: JsonHttpClient) -> None:
        self._settings = settings
        self._http = http
        self._logger = get_logger("sniper_engine.data.jupiter")

    async def quote(
        self,
        input_mint: str,
        output_mint: str,
        amount_raw: int,
        slippage_bps: int,
    ) -> Quote:
        """Fetch a route estimate. Raises NoRouteError when nothing is routable."""
        if amount_raw <= 0:
            raise ValueError("amount_must_be_positive")
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(int(amount_raw)),
            "slippageBps": str(int(slippage_bps)),
        }
        result = await self._http.get_json(self._settings.jupiter_quote_url, params=params)
        if not result.ok:
            if result.status in (400, 404):
                raise NoRouteError(_error_text(result.data) or f"no_route: {result.error}")
            raise DataUnavailableError(f"quote_unavailable: {result.error}")

        payload = JupiterQuotePayload.parse_payload(result.data, source="jupiter_quote")
        if payload.out_amount <= 0 or not payload.route_plan:
            raise NoRouteError("no_route: empty route plan")

        quote = Quote(
            input_mint=payload.input_mint,
            output_mint=payload.output_mint,
            in_amount_raw=payload.in_amount,
            out_amount_raw=payload.out_amount,
            price_impact_pct=abs(payload.price_impact_pct) * 100.0,
            slippage_bps=payload.slippage_bps or int(slippage_bps),
            route=payload.route_label(),
            raw=result.data,
        )
        self._logger.debug(
            "jupiter_quote",
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=quote.in_amount_raw,
            out_amount=quote.out_amount_raw,
            price_impact_pct=round(quote.price_impact_pct, 4),
            route=quote.route,
        )
        return quote

    async def build_transaction(
        self,
        quote: Quote,
        user_public_key: str,
        priority_fee_lamports: int,
    ) -> UnsignedTransaction:
        """Ask the aggregator to serialize a swap transaction for the quote."""
        payload = {
            "quoteResponse": quote.raw,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": int(priority_fee_lamports),
        }
        result = await self._http.post_json(self._settings.jupiter_swap_url, payload)
        if not result.ok:
            raise MalformedResponseError(
                f"swap_build_failed: {_error_text(result.data) or result.error}"
            )
        swap = JupiterSwapPayload.parse_payload(result.data, source="jupiter_swap")
        return UnsignedTransaction(
            serialized=swap.swap_transaction,
            fee_payer=user_public_key,
            last_valid_block_height=swap.last_valid_block_height,
        )

    async def token_decimals(self, mint: str) -> int | None:
        """Token decimals from aggregator metadata, or None when unknown."""
        url = f"{self._settings.jupiter_tokens_url.rstrip('/')}/{mint}"
        result = await self._http.get_json(url)
        if not result.ok:
            return None
        try:
            token = JupiterTokenPayload.parse_payload(result.data, source="jupiter_token")
        except MalformedResponseError:
            self._logger.warning("jupiter_token_malformed", mint=mint)
            return None
        return token.decimals


def _error_text(data: object) -> str:
    if isinstance(data, dict):
        for key in ("error", "errorCode", "message"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return ""
