"""Capital preservation stress test under a sudden liquidity withdrawal."""

from __future__ import annotations

from sniper_engine.risk.gate import RiskCheck
from sniper_engine.types import Candidate, RiskCheckResult, RiskContext

_EXIT_IMPACT_WEIGHT = 0.7


def stressed_price_impact(
    buy_usd: float,
    liquidity_usd: float,
    stressed_liquidity_usd: float,
    current_impact_pct: float | None,
) -> float:
    """Entry impact after the pool shrinks, constant-product approximation."""
    if liquidity_usd <= 0 or stressed_liquidity_usd <= 0:
        return 100.0
    if current_impact_pct is not None and current_impact_pct > 0:
        return min(100.0, current_impact_pct * (liquidity_usd / stressed_liquidity_usd))
    return min(100.0, buy_usd / (2 * stressed_liquidity_usd) * 100.0)


def projected_loss_pct(
    buy_usd: float,
    liquidity_usd: float,
    liquidity_drop: float,
    current_impact_pct: float | None,
) -> tuple[float, float, float]:
    """Return (projected loss, stressed entry impact, stressed liquidity)."""
    stressed_liq = liquidity_usd * (1.0 - liquidity_drop)
    entry = stressed_price_impact(buy_usd, liquidity_usd, stressed_liq, current_impact_pct)
    exit_impact = buy_usd / (2 * stressed_liq) * 100.0 if stressed_liq > 0 else 100.0
    loss = min(100.0, entry + exit_impact * _EXIT_IMPACT_WEIGHT)
    return loss, entry, stressed_liq


class CapitalPreservationCheck(RiskCheck):
    """Simulates an instant liquidity drop and projects round-trip loss."""

    rule = "CAPITAL_PRESERVATION"
    exempt_fair_launch = True

    def __init__(
        self,
        *,
        liquidity_drop: float = 0.5,
        block_loss_pct: float = 40.0,
        warn_loss_pct: float = 25.0,
    ) -> None:
        self._liquidity_drop = liquidity_drop
        self._block_loss_pct = block_loss_pct
        self._warn_loss_pct = warn_loss_pct

    async def _run(self, candidate: Candidate, context: RiskContext) -> RiskCheckResult:
        buy_usd = context.buy_amount_sol * context.sol_price_usd
        loss, entry, stressed_liq = projected_loss_pct(
            buy_usd,
            candidate.liquidity_usd,
            self._liquidity_drop,
            context.current_price_impact_pct,
        )
        details = {
            "projected_loss_pct": round(loss, 4),
            "stressed_price_impact_pct": round(entry, 4),
            "stressed_liquidity_usd": stressed_liq,
            "buy_usd": buy_usd,
            "liquidity_usd": candidate.liquidity_usd,
            "current_price_impact_pct": context.current_price_impact_pct,
        }
        drop_label = f"{self._liquidity_drop * 100:.0f}%"
        if loss > self._block_loss_pct:
            return self.result(
                passed=False,
                reason=(
                    f"stress test fail: {loss:.1f}% projected loss if liquidity drops "
                    f"{drop_label} (>{self._block_loss_pct:.0f}%)"
                ),
                penalty=40,
                hard_block=True,
                **details,
            )
        if loss > self._warn_loss_pct:
            return self.result(
                passed=True,
                reason=f"stress test warn: {loss:.1f}% projected loss under {drop_label} drop",
                penalty=15,
                **details,
            )
        return self.result(
            passed=True,
            reason=f"stress test pass: {loss:.1f}% projected loss",
            **details,
        )
