"""Simple candidate-level risk rules."""

from __future__ import annotations

from sniper_engine.risk.gate import RiskCheck
from sniper_engine.types import Candidate, RiskCheckResult, RiskContext

_LIQUIDITY_FLOOR_PENALTY = 40


class TradabilityCheck(RiskCheck):
    """Hard block when discovery reports the token cannot be bought or sold."""

    rule = "TRADABILITY"

    async def _run(self, candidate: Candidate, context: RiskContext) -> RiskCheckResult:
        reasons: list[str] = []
        if not candidate.is_tradeable:
            reasons.append("not_tradeable")
        if not candidate.can_buy:
            reasons.append("buy_disabled")
        if not candidate.can_sell:
            reasons.append("sell_disabled")
        if reasons:
            return self.result(
                passed=False,
                reason=f"token not tradeable: {', '.join(reasons)}",
                penalty=100,
                hard_block=True,
                flags=reasons,
            )
        return self.result(passed=True, reason="token tradeable")


class LiquidityFloorCheck(RiskCheck):
    """Penalize pools below the configured minimum liquidity."""

    rule = "LIQUIDITY_FLOOR"

    def __init__(self, min_liquidity_usd: float) -> None:
        self._min_liquidity_usd = min_liquidity_usd

    async def _run(self, candidate: Candidate, context: RiskContext) -> RiskCheckResult:
        if candidate.liquidity_usd < self._min_liquidity_usd:
            return self.result(
                passed=False,
                reason=(
                    f"liquidity ${candidate.liquidity_usd:,.0f} below "
                    f"${self._min_liquidity_usd:,.0f} floor"
                ),
                penalty=_LIQUIDITY_FLOOR_PENALTY,
                liquidity_usd=candidate.liquidity_usd,
                min_liquidity_usd=self._min_liquidity_usd,
            )
        return self.result(
            passed=True,
            reason="liquidity above floor",
            liquidity_usd=candidate.liquidity_usd,
        )
