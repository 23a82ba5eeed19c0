"""Risk gate: runs independent checks concurrently and folds them into one decision."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import asdict

from sniper_engine.errors import DataUnavailableError, MalformedResponseError, TransientNetworkError
from sniper_engine.journal.store import JournalStore
from sniper_engine.types import AggregateDecision, Candidate, RiskCheckResult, RiskContext
from sniper_engine.utils.logging import get_logger, log_risk_check, log_risk_event

DEFAULT_DEGRADED_PENALTY = 10

_UPSTREAM_ERRORS = (DataUnavailableError, TransientNetworkError, MalformedResponseError)


class RiskCheck:
    """Base class for one heuristic.

    Subclasses implement ``_run``. ``evaluate`` never raises for upstream
    failures: it degrades to a conservative pass carrying a penalty.
    """

    rule: str = "RISK_CHECK"
    exempt_fair_launch: bool = False
    degraded_penalty: int = DEFAULT_DEGRADED_PENALTY

    async def evaluate(self, candidate: Candidate, context: RiskContext) -> RiskCheckResult:
        if self.exempt_fair_launch and candidate.fair_launch:
            return RiskCheckResult(
                rule=self.rule,
                passed=True,
                reason="fair launch venue - check exempt",
                details={"exempt": True, "source": candidate.source},
            )
        try:
            return await self._run(candidate, context)
        except _UPSTREAM_ERRORS as exc:
            return self.degraded(f"{type(exc).__name__}: {exc}")

    async def _run(self, candidate: Candidate, context: RiskContext) -> RiskCheckResult:
        raise NotImplementedError

    def result(
        self,
        *,
        passed: bool,
        reason: str,
        penalty: int = 0,
        hard_block: bool = False,
        **details: object,
    ) -> RiskCheckResult:
        return RiskCheckResult(
            rule=self.rule,
            passed=passed,
            reason=reason,
            penalty=max(0, min(100, int(penalty))),
            hard_block=hard_block,
            details=details,
        )

    def degraded(self, error: str) -> RiskCheckResult:
        return self.result(
            passed=True,
            reason=f"{self.rule} data unavailable - proceeding with caution",
            penalty=self.degraded_penalty,
            degraded=True,
            error=error,
        )


def aggregate(results: Iterable[RiskCheckResult], threshold: int) -> AggregateDecision:
    """Fold check results into a decision. The outcome ignores result order."""
    ordered = tuple(results)
    total = sum(r.penalty for r in ordered)
    blocked_by = tuple(sorted(r.rule for r in ordered if r.hard_block))
    return AggregateDecision(
        admitted=not blocked_by and total <= threshold,
        total_penalty=total,
        threshold=threshold,
        results=ordered,
        hard_blocked_by=blocked_by,
    )


class RiskGate:
    """Evaluates every registered check for a candidate and aggregates."""

    def __init__(
        self,
        checks: Sequence[RiskCheck],
        *,
        threshold: int,
        timeout_sec: float,
        degraded_penalty: int = DEFAULT_DEGRADED_PENALTY,
        journal: JournalStore | None = None,
    ) -> None:
        self._checks = list(checks)
        self._threshold = threshold
        self._timeout_sec = timeout_sec
        self._degraded_penalty = degraded_penalty
        self._journal = journal
        self._logger = get_logger("sniper_engine.risk.gate")

    @property
    def rules(self) -> list[str]:
        return [c.rule for c in self._checks]

    async def evaluate(self, candidate: Candidate, context: RiskContext) -> AggregateDecision:
        results = await asyncio.gather(
            *(self._run_check(check, candidate, context) for check in self._checks)
        )
        decision = aggregate(results, self._threshold)

        for r in decision.results:
            log_risk_check(
                self._logger,
                token=candidate.address,
                rule=r.rule,
                passed=r.passed,
                penalty=r.penalty,
                hard_block=r.hard_block,
                reason=r.reason,
            )
        if not decision.admitted:
            log_risk_event(
                self._logger,
                event_type="candidate_rejected",
                action="skip",
                token=candidate.address,
                total_penalty=decision.total_penalty,
                hard_blocked_by=list(decision.hard_blocked_by),
            )
        if self._journal is not None:
            self._journal.append(
                "risk_decision",
                {
                    "token": candidate.address,
                    "symbol": candidate.symbol,
                    "admitted": decision.admitted,
                    "total_penalty": decision.total_penalty,
                    "threshold": decision.threshold,
                    "hard_blocked_by": list(decision.hard_blocked_by),
                    "results": [asdict(r) for r in decision.results],
                },
            )
        return decision

    async def _run_check(
        self,
        check: RiskCheck,
        candidate: Candidate,
        context: RiskContext,
    ) -> RiskCheckResult:
        try:
            return await asyncio.wait_for(
                check.evaluate(candidate, context),
                timeout=self._timeout_sec,
            )
        except asyncio.TimeoutError:
            error = f"timed out after {self._timeout_sec}s"
        except Exception as exc:  # noqa: BLE001
            error = f"{type(exc).__name__}: {exc}"
        self._logger.warning("risk_check_degraded", rule=check.rule, error=error)
        return RiskCheckResult(
            rule=check.rule,
            passed=True,
            reason=f"{check.rule} did not complete - proceeding with caution",
            penalty=self._degraded_penalty,
            details={"degraded": True, "error": error},
        )
