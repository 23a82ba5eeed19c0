"""Deployer behaviour profile check."""

from __future__ import annotations

from sniper_engine.data.deployer_reputation import DeployerReputationClient
from sniper_engine.risk.gate import RiskCheck
from sniper_engine.types import Candidate, RiskCheckResult, RiskContext

RAPID_DEPLOY_24H = 3
FAST_LP_PULL_SEC = 300.0
HIGH_RUG_RATIO = 0.5
CLUSTER_SCORE_LIMIT = 60.0


class DeployerBehaviorCheck(RiskCheck):
    """Blocks serial deployers, fast liquidity pulls and high historical rug ratios."""

    rule = "DEPLOYER_BEHAVIOR"
    exempt_fair_launch = True

    def __init__(self, client: DeployerReputationClient) -> None:
        self._client = client

    async def _run(self, candidate: Candidate, context: RiskContext) -> RiskCheckResult:
        wallet = candidate.deployer_wallet
        if not wallet:
            return self.result(
                passed=True,
                reason="deployer wallet unknown - proceeding with caution",
                penalty=10,
            )

        profile = await self._client.profile(wallet)
        if profile is None:
            return self.result(
                passed=True,
                reason=f"new deployer (no history) - {wallet[:8]}...",
                penalty=5,
                deployer=wallet,
            )

        reasons: list[str] = []
        penalty = 0
        hard_block = False

        if profile.tokens_last_24h >= RAPID_DEPLOY_24H:
            reasons.append(f"{profile.tokens_last_24h} tokens in 24h (rapid deployer)")
            penalty += 30
            hard_block = True
        lifespan = profile.avg_lp_lifespan_seconds
        if lifespan is not None and lifespan < FAST_LP_PULL_SEC:
            reasons.append(f"LP pulled after {lifespan:.0f}s on average")
            penalty += 35
            hard_block = True
        if profile.rug_ratio > HIGH_RUG_RATIO:
            reasons.append(f"{profile.rug_ratio * 100:.0f}% rug ratio")
            penalty += 40
            hard_block = True
        if profile.cluster_association_score > CLUSTER_SCORE_LIMIT:
            reasons.append(f"cluster association score {profile.cluster_association_score:.0f}")
            penalty += 25

        details = {
            "deployer": wallet,
            "tokens_last_24h": profile.tokens_last_24h,
            "tokens_last_7d": profile.tokens_last_7d,
            "avg_lp_lifespan_seconds": lifespan,
            "rug_ratio": profile.rug_ratio,
            "cluster_association_score": profile.cluster_association_score,
        }
        if not reasons:
            return self.result(passed=True, reason="deployer history clean", **details)
        prefix = "deployer blocked" if hard_block else "deployer warnings"
        return self.result(
            passed=not hard_block,
            reason=f"{prefix}: {', '.join(reasons)}",
            penalty=penalty,
            hard_block=hard_block,
            **details,
        )
