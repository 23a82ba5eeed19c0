"""Upstream response schemas and strict parsing helpers."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sniper_engine.errors import MalformedResponseError


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {err['msg']}" if loc else str(err["msg"])


class _Strict(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @classmethod
    def parse_payload(cls, payload: Any, *, source: str):
        """Validate a decoded JSON payload. Any violation is MalformedResponseError."""
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponseError(f"{source}_schema_error: {_first_error(exc)}") from exc


class SwapInfo(_Strict):
    label: str | None = None
    amm_key: str | None = Field(default=None, alias="ammKey")


class RoutePlanStep(_Strict):
    swap_info: SwapInfo = Field(alias="swapInfo")
    percent: float | None = None


class JupiterQuotePayload(_Strict):
    """Quote response from the aggregator. Amounts arrive as decimal strings."""

    input_mint: str = Field(alias="inputMint")
    output_mint: str = Field(alias="outputMint")
    in_amount: int = Field(alias="inAmount", ge=0)
    out_amount: int = Field(alias="outAmount", ge=0)
    price_impact_pct: float = Field(default=0.0, alias="priceImpactPct")
    slippage_bps: int = Field(default=0, alias="slippageBps", ge=0)
    route_plan: list[RoutePlanStep] = Field(default_factory=list, alias="routePlan")

    def route_label(self) -> str:
        labels = [step.swap_info.label or "unknown" for step in self.route_plan]
        return " -> ".join(labels)


class JupiterSwapPayload(_Strict):
    swap_transaction: str = Field(alias="swapTransaction", min_length=1)
    last_valid_block_height: int | None = Field(default=None, alias="lastValidBlockHeight")


class JupiterTokenPayload(_Strict):
    address: str | None = None
    symbol: str | None = None
    name: str | None = None
    decimals: int | None = Field(default=None, ge=0, le=18)


class SignatureStatusPayload(_Strict):
    slot: int | None = None
    confirmations: int | None = None
    err: Any = None
    confirmation_status: str | None = Field(default=None, alias="confirmationStatus")


class DexLiquidity(_Strict):
    usd: float | None = None


class DexToken(_Strict):
    address: str
    symbol: str | None = None
    name: str | None = None


class DexPair(_Strict):
    chain_id: str = Field(alias="chainId")
    pair_address: str | None = Field(default=None, alias="pairAddress")
    base_token: DexToken = Field(alias="baseToken")
    price_usd: float | None = Field(default=None, alias="priceUsd")
    price_native: float | None = Field(default=None, alias="priceNative")
    liquidity: DexLiquidity | None = None


class DexTokensPayload(_Strict):
    pairs: list[DexPair] | None = None


class DeployerProfilePayload(_Strict):
    """History of a deployer wallet as reported by the reputation service."""

    wallet: str | None = None
    tokens_last_24h: int = Field(default=0, ge=0)
    tokens_last_7d: int = Field(default=0, ge=0)
    avg_lp_lifespan_seconds: float | None = Field(default=None, ge=0)
    rug_ratio: float = Field(default=0.0, ge=0.0, le=1.0)
    cluster_association_score: float = Field(default=0.0, ge=0.0, le=100.0)
    total_tokens: int = Field(default=0, ge=0)


class CandidatePayload(_Strict):
    """One discovery feed record."""

    address: str = Field(min_length=32, max_length=64)
    symbol: str = "UNKNOWN"
    name: str = "Unknown"
    liquidity_usd: float = Field(default=0.0, alias="liquidityUsd", ge=0)
    source: str = ""
    risk_score: float | None = Field(default=None, alias="riskScore")
    can_buy: bool = Field(default=True, alias="canBuy")
    can_sell: bool = Field(default=True, alias="canSell")
    is_tradeable: bool = Field(default=True, alias="isTradeable")
    is_fair_launch: bool = Field(default=False, alias="isFairLaunch")
    price_usd: float | None = Field(default=None, alias="priceUsd")
    buyer_position: int | None = Field(default=None, alias="buyerPosition")
    deployer_wallet: str | None = Field(default=None, alias="deployerWallet")
    lp_creator_wallet: str | None = Field(default=None, alias="lpCreatorWallet")
    buyer_wallets: list[str] = Field(default_factory=list, alias="buyerWallets")
