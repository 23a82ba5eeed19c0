"""Two-hop wallet funding cluster detection."""

from __future__ import annotations

from sniper_engine.data.helius import HeliusWalletGraph
from sniper_engine.risk.gate import RiskCheck
from sniper_engine.types import Candidate, RiskCheckResult, RiskContext

_MIN_WALLETS = 3
_MAX_BUYERS = 10
_FRESH_BLOCK_PCT = 80.0
_FRESH_WARN_PCT = 50.0


class WalletClusterCheck(RiskCheck):
    """Flags launches whose early wallets trace back to one funder.

    The LP creator and the first ten buyers (plus the deployer when known)
    are traced two hops up their funding lineage. More than
    ``block_pct`` sharing one ancestor is a coordinated launch.
    """

    rule = "WALLET_CLUSTER"
    exempt_fair_launch = True

    def __init__(self, graph: HeliusWalletGraph, *, block_pct: float = 40.0) -> None:
        self._graph = graph
        self._block_pct = block_pct

    async def _run(self, candidate: Candidate, context: RiskContext) -> RiskCheckResult:
        wallets = [
            *([candidate.lp_creator_wallet] if candidate.lp_creator_wallet else []),
            *candidate.buyer_wallets[:_MAX_BUYERS],
        ]
        if len(wallets) < _MIN_WALLETS:
            return self.result(
                passed=True,
                reason=f"only {len(wallets)} wallets available - insufficient for cluster analysis",
                penalty=5,
                wallets_analyzed=len(wallets),
            )

        analysis = await self._graph.analyze_cluster(wallets, candidate.deployer_wallet)
        details = {
            "shared_origin_pct": round(analysis.shared_origin_pct, 2),
            "shared_origin_wallet": analysis.shared_origin_wallet,
            "cluster_size": analysis.cluster_size,
            "wallets_analyzed": len(analysis.wallets),
            "fresh_wallets": analysis.fresh_count,
            "fresh_pct": round(analysis.fresh_pct, 2),
        }

        if analysis.shared_origin_pct > self._block_pct:
            return self.result(
                passed=False,
                reason=(
                    f"{analysis.shared_origin_pct:.0f}% of wallets share one funding origin "
                    f"(>{self._block_pct:.0f}%)"
                ),
                penalty=50,
                hard_block=True,
                **details,
            )
        if analysis.fresh_pct > _FRESH_BLOCK_PCT:
            return self.result(
                passed=False,
                reason=f"{analysis.fresh_pct:.0f}% of wallets are under 24h old - sybil launch likely",
                penalty=35,
                **details,
            )
        if analysis.fresh_pct > _FRESH_WARN_PCT:
            return self.result(
                passed=True,
                reason=f"{analysis.fresh_pct:.0f}% fresh wallets among buyers",
                penalty=15,
                **details,
            )
        return self.result(
            passed=True,
            reason=f"no funding cluster ({analysis.shared_origin_pct:.0f}% shared origin)",
            **details,
        )
