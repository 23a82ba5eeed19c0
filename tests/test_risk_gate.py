from __future__ import annotations

import asyncio
import itertools

import pytest

from sniper_engine.errors import DataUnavailableError
from sniper_engine.journal.store import JournalStore
from sniper_engine.risk.deployer import DeployerBehaviorCheck
from sniper_engine.risk.gate import RiskCheck, RiskGate, aggregate
from sniper_engine.risk.rules import LiquidityFloorCheck, TradabilityCheck
from sniper_engine.schemas import DeployerProfilePayload
from sniper_engine.types import Candidate, RiskCheckResult, RiskContext

_TOKEN = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
_CTX = RiskContext(buy_amount_sol=0.1, sol_price_usd=150.0)


def _candidate(**overrides: object) -> Candidate:
    fields: dict[str, object] = {
        "address": _TOKEN,
        "symbol": "MEME",
        "name": "Meme Coin",
        "liquidity_usd": 40_000.0,
        "source": "raydium",
        "deployer_wallet": "Dep1oyer11111111111111111111111111111111111",
    }
    fields.update(overrides)
    return Candidate(**fields)  # type: ignore[arg-type]


class _FixedCheck(RiskCheck):
    def __init__(self, rule: str, *, penalty: int = 0, passed: bool = True, hard_block: bool = False) -> None:
        self.rule = rule
        self._penalty = penalty
        self._passed = passed
        self._hard_block = hard_block

    async def _run(self, candidate: Candidate, context: RiskContext) -> RiskCheckResult:
        return self.result(
            passed=self._passed,
            reason=f"{self.rule} fixed",
            penalty=self._penalty,
            hard_block=self._hard_block,
        )


class _SlowCheck(RiskCheck):
    rule = "SLOW"

    async def _run(self, candidate: Candidate, context: RiskContext) -> RiskCheckResult:
        await asyncio.sleep(5)
        return self.result(passed=True, reason="never")


class _BrokenCheck(RiskCheck):
    rule = "BROKEN"

    async def _run(self, candidate: Candidate, context: RiskContext) -> RiskCheckResult:
        raise RuntimeError("boom")


class _UpstreamDownCheck(RiskCheck):
    rule = "UPSTREAM"
    exempt_fair_launch = True

    async def _run(self, candidate: Candidate, context: RiskContext) -> RiskCheckResult:
        raise DataUnavailableError("service down")


class _FakeDeployerClient:
    def __init__(self, profile: DeployerProfilePayload | None) -> None:
        self._profile = profile
        self.calls: list[str] = []

    async def profile(self, wallet: str) -> DeployerProfilePayload | None:
        self.calls.append(wallet)
        return self._profile


def _result(rule: str, penalty: int, *, hard_block: bool = False) -> RiskCheckResult:
    return RiskCheckResult(rule=rule, passed=not hard_block, reason=rule, penalty=penalty, hard_block=hard_block)


def test_hard_block_rejects_even_with_zero_total_penalty() -> None:
    decision = aggregate([_result("A", 0, hard_block=True), _result("B", 0)], threshold=65)
    assert not decision.admitted
    assert decision.total_penalty == 0
    assert decision.hard_blocked_by == ("A",)


def test_penalty_equal_to_threshold_is_admitted_and_above_is_rejected() -> None:
    assert aggregate([_result("A", 40), _result("B", 25)], threshold=65).admitted
    assert not aggregate([_result("A", 40), _result("B", 26)], threshold=65).admitted


def test_decision_does_not_depend_on_result_order() -> None:
    results = [
        _result("CLUSTER", 15),
        _result("DEPLOYER", 30, hard_block=True),
        _result("STRESS", 15),
        _result("LIQ", 0),
    ]
    decisions = {
        (d.admitted, d.total_penalty, d.hard_blocked_by)
        for d in (aggregate(p, threshold=65) for p in itertools.permutations(results))
    }
    assert decisions == {(False, 60, ("DEPLOYER",))}


@pytest.mark.asyncio
async def test_gate_degrades_timed_out_and_crashing_checks(tmp_path: object) -> None:
    gate = RiskGate(
        [_SlowCheck(), _BrokenCheck(), _FixedCheck("OK")],
        threshold=65,
        timeout_sec=0.05,
        degraded_penalty=10,
    )
    decision = await gate.evaluate(_candidate(), _CTX)

    by_rule = {r.rule: r for r in decision.results}
    assert decision.admitted
    assert decision.total_penalty == 20
    assert by_rule["SLOW"].passed and by_rule["SLOW"].details["degraded"] is True
    assert by_rule["BROKEN"].passed and "boom" in by_rule["BROKEN"].details["error"]
    assert by_rule["OK"].penalty == 0


@pytest.mark.asyncio
async def test_upstream_failure_is_conservative_pass_with_penalty() -> None:
    result = await _UpstreamDownCheck().evaluate(_candidate(), _CTX)
    assert result.passed
    assert not result.hard_block
    assert result.penalty == 10
    assert result.details["degraded"] is True


@pytest.mark.asyncio
async def test_fair_launch_exempts_lp_based_checks() -> None:
    result = await _UpstreamDownCheck().evaluate(_candidate(source="pump.fun"), _CTX)
    assert result.passed
    assert result.penalty == 0
    assert result.details["exempt"] is True


@pytest.mark.asyncio
async def test_gate_writes_one_risk_decision_record(tmp_path: object) -> None:
    journal = JournalStore(tmp_path, user_id="alice")  # type: ignore[arg-type]
    gate = RiskGate(
        [_FixedCheck("A", penalty=50), _FixedCheck("B", penalty=20)],
        threshold=65,
        timeout_sec=1.0,
        journal=journal,
    )
    decision = await gate.evaluate(_candidate(), _CTX)

    assert not decision.admitted
    rows = journal.load_recent(10, event_type="risk_decision")
    assert len(rows) == 1
    assert rows[0]["user_id"] == "alice"
    assert rows[0]["payload"]["total_penalty"] == 70
    assert {r["rule"] for r in rows[0]["payload"]["results"]} == {"A", "B"}


@pytest.mark.asyncio
async def test_tradability_and_liquidity_floor() -> None:
    blocked = await TradabilityCheck().evaluate(_candidate(can_sell=False), _CTX)
    assert blocked.hard_block
    assert "sell_disabled" in blocked.reason

    thin = await LiquidityFloorCheck(5_000).evaluate(_candidate(liquidity_usd=1_200.0), _CTX)
    assert not thin.passed
    assert not thin.hard_block
    assert thin.penalty == 40


@pytest.mark.asyncio
async def test_serial_deployer_is_hard_blocked_by_the_gate() -> None:
    client = _FakeDeployerClient(
        DeployerProfilePayload(
            tokens_last_24h=4,
            avg_lp_lifespan_seconds=180,
            rug_ratio=0.7,
        )
    )
    gate = RiskGate(
        [DeployerBehaviorCheck(client), _FixedCheck("OTHER")],  # type: ignore[arg-type]
        threshold=65,
        timeout_sec=1.0,
    )
    decision = await gate.evaluate(_candidate(), _CTX)

    deployer = next(r for r in decision.results if r.rule == "DEPLOYER_BEHAVIOR")
    assert not decision.admitted
    assert decision.hard_blocked_by == ("DEPLOYER_BEHAVIOR",)
    assert deployer.penalty == 100
    assert "rapid deployer" in deployer.reason


@pytest.mark.asyncio
async def test_deployer_check_soft_penalties() -> None:
    check = DeployerBehaviorCheck(_FakeDeployerClient(None))  # type: ignore[arg-type]
    new = await check.evaluate(_candidate(), _CTX)
    assert new.passed and new.penalty == 5

    unknown = await check.evaluate(_candidate(deployer_wallet=None), _CTX)
    assert unknown.passed and unknown.penalty == 10

    clustered = DeployerBehaviorCheck(
        _FakeDeployerClient(DeployerProfilePayload(cluster_association_score=75))  # type: ignore[arg-type]
    )
    warn = await clustered.evaluate(_candidate(), _CTX)
    assert warn.passed and not warn.hard_block
    assert warn.penalty == 25
