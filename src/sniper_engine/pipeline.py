"""Wiring and feed processing: discovery feed → risk gate → observation → orchestrator."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter

from sniper_engine.config import Settings
from sniper_engine.data.deployer_reputation import DeployerReputationClient
from sniper_engine.data.dexscreener import DexScreenerClient
from sniper_engine.data.helius import HeliusWalletGraph
from sniper_engine.data.http import JsonHttpClient
from sniper_engine.data.jupiter import JupiterClient
from sniper_engine.data.solana_rpc import SolanaRpcClient
from sniper_engine.errors import SniperError
from sniper_engine.exec.balance_delta import to_raw_amount
from sniper_engine.exec.signer import DisconnectedSigner, KeypairSigner, TransactionSigner
from sniper_engine.exec.state_machine import ExecutionStateMachine
from sniper_engine.feed import read_feed
from sniper_engine.journal.positions import PositionStore
from sniper_engine.journal.store import JournalStore
from sniper_engine.monitor.observation import ObservationWindow
from sniper_engine.monitor.post_entry import MonitorRegistry
from sniper_engine.orchestrator import Notify, Orchestrator
from sniper_engine.risk.cluster import WalletClusterCheck
from sniper_engine.risk.deployer import DeployerBehaviorCheck
from sniper_engine.risk.gate import RiskCheck, RiskGate
from sniper_engine.risk.rules import LiquidityFloorCheck, TradabilityCheck
from sniper_engine.risk.stress import CapitalPreservationCheck
from sniper_engine.types import SOL_DECIMALS, SOL_MINT, Candidate, FeedRunResult, Quote, RiskContext
from sniper_engine.utils.logging import get_logger


@dataclass(slots=True)
class Engine:
    """Every long-lived component of one trading session."""

    settings: Settings
    http: JsonHttpClient
    jupiter: JupiterClient
    rpc: SolanaRpcClient
    market: DexScreenerClient
    journal: JournalStore
    positions: PositionStore
    gate: RiskGate
    observation: ObservationWindow
    monitors: MonitorRegistry
    executor: ExecutionStateMachine
    orchestrator: Orchestrator

    @property
    def can_execute(self) -> bool:
        return self.settings.is_live_mode and self.executor.signer.is_connected

    async def aclose(self) -> None:
        await self.orchestrator.wait_idle()
        await self.monitors.wait_all()
        await self.http.aclose()


def build_checks(
    settings: Settings,
    *,
    graph: HeliusWalletGraph,
    deployer: DeployerReputationClient,
) -> list[RiskCheck]:
    checks: list[RiskCheck] = [
        TradabilityCheck(),
        LiquidityFloorCheck(settings.min_liquidity_usd),
        WalletClusterCheck(graph, block_pct=settings.cluster_block_pct),
        DeployerBehaviorCheck(deployer),
        CapitalPreservationCheck(
            liquidity_drop=settings.stress_liquidity_drop,
            block_loss_pct=settings.stress_block_loss_pct,
            warn_loss_pct=settings.stress_warn_loss_pct,
        ),
    ]
    for check in checks:
        check.degraded_penalty = settings.risk_degraded_penalty
    return checks


def build_engine(
    settings: Settings,
    *,
    signer: TransactionSigner | None = None,
    http: JsonHttpClient | None = None,
    notify: Notify | None = None,
) -> Engine:
    """Construct the component graph from settings.

    Live mode with a configured private key signs with a local keypair;
    otherwise the signer is disconnected and nothing can be executed.
    """
    settings.ensure_directories()
    http = http or JsonHttpClient(settings)
    jupiter = JupiterClient(settings, http)
    rpc = SolanaRpcClient(settings, http)
    market = DexScreenerClient(settings, http)
    journal = JournalStore(settings.journal_dir, settings.user_id)
    positions = PositionStore(settings.journal_dir, settings.user_id)

    if signer is None:
        if settings.is_live_mode and settings.wallet_private_key:
            signer = KeypairSigner.from_secret(settings.wallet_private_key, rpc)
        else:
            signer = DisconnectedSigner()

    gate = RiskGate(
        build_checks(
            settings,
            graph=HeliusWalletGraph(settings, http),
            deployer=DeployerReputationClient(settings, http),
        ),
        threshold=settings.risk_penalty_threshold,
        timeout_sec=settings.risk_check_timeout_sec,
        degraded_penalty=settings.risk_degraded_penalty,
        journal=journal,
    )
    observation = ObservationWindow(
        market,
        jupiter,
        delay_sec=settings.observation_delay_sec,
        high_liquidity_skip_usd=settings.high_liquidity_skip_usd,
        max_liquidity_change_pct=settings.max_liquidity_change_pct,
        max_quote_deviation_pct=settings.max_quote_deviation_pct,
        journal=journal,
    )
    monitors = MonitorRegistry(jupiter, market, journal=journal)
    executor = ExecutionStateMachine(
        jupiter,
        rpc,
        signer,
        quote_ttl_sec=settings.quote_ttl_sec,
        confirm_max_attempts=settings.confirm_max_attempts,
        confirm_interval_sec=settings.confirm_interval_sec,
        retry_wait_min_sec=settings.http_retry_wait_min_sec,
        retry_wait_max_sec=settings.http_retry_wait_max_sec,
    )
    orchestrator = Orchestrator(
        gate=gate,
        executor=executor,
        rpc=rpc,
        market=market,
        positions=positions,
        journal=journal,
        config=settings.execution_config(),
        monitors=monitors if settings.monitor_enabled else None,
        cooldown_sec=settings.trade_cooldown_sec,
        fee_reserve_sol=settings.fee_reserve_sol,
        emergency_slippage=settings.emergency_slippage_pct / 100.0,
        notify=notify,
    )
    return Engine(
        settings=settings,
        http=http,
        jupiter=jupiter,
        rpc=rpc,
        market=market,
        journal=journal,
        positions=positions,
        gate=gate,
        observation=observation,
        monitors=monitors,
        executor=executor,
        orchestrator=orchestrator,
    )


async def initial_quote(engine: Engine, candidate: Candidate) -> Quote | None:
    """Entry quote used for the price-impact input and handed to the executor."""
    config = engine.settings.execution_config()
    try:
        return await engine.jupiter.quote(
            SOL_MINT,
            candidate.address,
            to_raw_amount(config.buy_amount_sol, SOL_DECIMALS),
            config.slippage_bps,
        )
    except SniperError as exc:
        get_logger("sniper_engine.pipeline").info(
            "initial_quote_unavailable", token=candidate.address, error=str(exc)
        )
        return None


async def run_feed(
    settings: Settings,
    feed_path: Path,
    dry_run: bool,
    *,
    engine: Engine | None = None,
) -> FeedRunResult:
    """Process one discovery feed file.

    Without an engine a fresh one is built and closed (after in-flight trades
    and monitors finish). Paper mode and dry runs stop after observation.
    """
    logger = get_logger("sniper_engine.pipeline")
    started = perf_counter()
    owned = engine is None
    if engine is None:
        engine = build_engine(settings)
    journal = engine.journal
    orchestrator = engine.orchestrator
    result = FeedRunResult(status="unknown")
    execute = not dry_run and engine.can_execute
    outcomes_before = len(orchestrator.outcomes)

    journal.append(
        "feed_start",
        {
            "feed": str(feed_path),
            "mode": settings.mode.value,
            "dry_run": dry_run,
            "execute": execute,
            "started_at": datetime.now(timezone.utc).isoformat(),
        },
    )

    try:
        candidates, warnings = read_feed(feed_path)
        result.warnings.extend(warnings)
        if not candidates:
            return _finish_run(result, journal, started, status="no_candidates")

        sol_price = await engine.market.sol_price_usd()
        for candidate in candidates:
            await _process_candidate(engine, candidate, sol_price, execute, result)

        if execute:
            await orchestrator.wait_idle()
            result.outcomes.extend(asdict(o) for o in orchestrator.outcomes[outcomes_before:])

        if not result.admitted:
            status = "all_rejected"
        elif execute:
            status = "executed"
        else:
            status = "admitted_dry_run"
        return _finish_run(result, journal, started, status=status)

    except Exception as exc:  # noqa: BLE001 - top-level guard for watch resilience.
        logger.exception("feed_run_failed", error=str(exc))
        journal.append("error", {"feed": str(feed_path), "error": str(exc)})
        return _finish_run(result, journal, started, status="failed")
    finally:
        if owned:
            await engine.aclose()


async def _process_candidate(
    engine: Engine,
    candidate: Candidate,
    sol_price: float,
    execute: bool,
    result: FeedRunResult,
) -> None:
    settings = engine.settings
    quote = await initial_quote(engine, candidate)
    context = RiskContext(
        buy_amount_sol=settings.buy_amount_sol,
        sol_price_usd=sol_price,
        current_price_impact_pct=quote.price_impact_pct if quote is not None else None,
    )

    decision = await engine.orchestrator.admit(candidate, context)
    if not decision.admitted:
        result.rejected.append(
            {
                "token": candidate.address,
                "symbol": candidate.symbol,
                "stage": "risk",
                "total_penalty": decision.total_penalty,
                "hard_blocked_by": list(decision.hard_blocked_by),
                "reasons": decision.reasons,
            }
        )
        return

    if settings.observation_enabled:
        observed = await engine.observation.observe(candidate, quote)
        if not observed.stable and settings.observation_abort_on_unstable:
            result.rejected.append(
                {
                    "token": candidate.address,
                    "symbol": candidate.symbol,
                    "stage": "observation",
                    "reasons": [observed.reason],
                }
            )
            return
        if observed.fresh_quote is not None:
            quote = observed.fresh_quote

    result.admitted.append(candidate.address)
    if execute:
        engine.orchestrator.enqueue([candidate], {candidate.address: quote} if quote is not None else None)
    else:
        result.outcomes.append(
            {
                "token": candidate.address,
                "symbol": candidate.symbol,
                "action": "would_buy",
                "total_penalty": decision.total_penalty,
                "price_impact_pct": context.current_price_impact_pct,
            }
        )


def _finish_run(
    result: FeedRunResult,
    journal: JournalStore,
    started: float,
    *,
    status: str,
) -> FeedRunResult:
    elapsed_ms = (perf_counter() - started) * 1000
    result.status = status
    result.elapsed_ms = elapsed_ms
    journal.append(
        "feed_end",
        {
            "status": status,
            "elapsed_ms": elapsed_ms,
            "admitted": len(result.admitted),
            "rejected": len(result.rejected),
        },
    )
    return result
