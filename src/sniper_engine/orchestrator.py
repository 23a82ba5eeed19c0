"""Single-flight trade orchestrator: queue, dedup, cooldown, persistence, supervision."""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any

from sniper_engine.data.dexscreener import DexScreenerClient
from sniper_engine.data.solana_rpc import SolanaRpcClient
from sniper_engine.errors import ErrorKind, PositionStoreError, SniperError
from sniper_engine.exec.state_machine import ExecutionStateMachine
from sniper_engine.journal.positions import PositionStore
from sniper_engine.journal.store import JournalStore
from sniper_engine.metadata import reconcile_metadata
from sniper_engine.monitor.post_entry import MonitorRegistry
from sniper_engine.risk.gate import RiskGate
from sniper_engine.types import (
    AggregateDecision,
    Candidate,
    ExecutionConfig,
    ExecutionResult,
    Notice,
    NoticeKind,
    Position,
    PositionStatus,
    Quote,
    RiskContext,
    TradeOutcome,
)
from sniper_engine.utils.logging import get_logger

Notify = Callable[[Notice], None]
Sleep = Callable[[float], Awaitable[None]]

POSITION_SAVE_FAILED = "Position save failed - check manually"


@dataclass(slots=True)
class _QueueItem:
    candidate: Candidate
    quote: Quote | None = None


class Orchestrator:
    """Owns the entry queue and is the only writer of positions.

    At most one execution is in flight: queued entries, immediate entries and
    exits all acquire the same signer lock.
    """

    def __init__(
        self,
        *,
        gate: RiskGate,
        executor: ExecutionStateMachine,
        rpc: SolanaRpcClient,
        market: DexScreenerClient,
        positions: PositionStore,
        journal: JournalStore,
        config: ExecutionConfig,
        monitors: MonitorRegistry | None = None,
        cooldown_sec: float = 2.0,
        fee_reserve_sol: float = 0.01,
        emergency_slippage: float = 0.30,
        notify: Notify | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._gate = gate
        self._executor = executor
        self._rpc = rpc
        self._market = market
        self._positions = positions
        self._journal = journal
        self._config = config
        self._monitors = monitors
        self._cooldown_sec = cooldown_sec
        self._fee_reserve_sol = fee_reserve_sol
        self._emergency_slippage = emergency_slippage
        self._notify = notify
        self._sleep = sleep
        self._clock = clock

        self._queue: deque[_QueueItem] = deque()
        self._queued: set[str] = set()
        self._attempted: set[str] = set()
        self._signer_lock = asyncio.Lock()
        self._worker: asyncio.Task[None] | None = None
        self._executing = False
        self._current_token: str | None = None
        self._last_trade_end: float | None = None
        self._outcomes: list[TradeOutcome] = []
        self._logger = get_logger("sniper_engine.orchestrator")

        self._executor.set_event_hook(self._on_execution_event)

    # ------------------------------------------------------------------ state

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def is_executing(self) -> bool:
        return self._executing

    @property
    def current_token(self) -> str | None:
        return self._current_token

    @property
    def attempted_count(self) -> int:
        return len(self._attempted)

    @property
    def outcomes(self) -> list[TradeOutcome]:
        return list(self._outcomes)

    # -------------------------------------------------------------- admission

    async def admit(self, candidate: Candidate, context: RiskContext) -> AggregateDecision:
        """Run the risk gate for a candidate and announce rejections."""
        decision = await self._gate.evaluate(candidate, context)
        if not decision.admitted:
            self._emit(
                "rejected",
                f"Rejected: {candidate.symbol}",
                "; ".join(decision.reasons) or f"penalty {decision.total_penalty} > {decision.threshold}",
                candidate.address,
            )
        return decision

    def enqueue(
        self,
        candidates: Iterable[Candidate],
        quotes: dict[str, Quote] | None = None,
    ) -> int:
        """Queue admitted candidates. Tokens already queued or attempted are skipped."""
        added: list[str] = []
        for candidate in candidates:
            address = candidate.address
            if address in self._attempted or address in self._queued or address == self._current_token:
                continue
            self._queue.append(_QueueItem(candidate, (quotes or {}).get(address)))
            self._queued.add(address)
            added.append(candidate.symbol)
        if not added:
            return 0

        self._logger.info("queued", count=len(added), symbols=added, queue_length=len(self._queue))
        self._journal.append("queue", {"action": "enqueue", "symbols": added, "queue_length": len(self._queue)})
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="orchestrator-worker")
        return len(added)

    async def execute_immediate(self, candidate: Candidate, quote: Quote | None = None) -> TradeOutcome:
        """Execute one candidate now, bypassing the queue but not the signer lock."""
        address = candidate.address
        if address in self._attempted or address == self._current_token:
            return TradeOutcome(
                success=False,
                token_address=address,
                error="token already attempted",
                error_kind=ErrorKind.FAILED.value,
            )
        # Claim the token before the first await so concurrent triggers dedup.
        self._attempted.add(address)
        problem = await self._check_prerequisites()
        if problem is not None:
            self._attempted.discard(address)
            self._emit("prerequisites_failed", "Cannot trade", problem, address)
            return TradeOutcome(
                success=False,
                token_address=address,
                error=problem,
                error_kind=ErrorKind.PREREQUISITE.value,
            )
        self._discard_queued(address)
        return await self._execute(candidate, quote)

    def clear_queue(self) -> int:
        cleared = len(self._queue)
        self._queue.clear()
        self._queued.clear()
        if cleared:
            self._journal.append("queue", {"action": "clear", "cleared": cleared})
        return cleared

    def reset_attempted(self) -> None:
        self._attempted.clear()

    async def wait_idle(self) -> None:
        """Block until the queue worker has stopped."""
        worker = self._worker
        if worker is not None:
            await asyncio.gather(worker, return_exceptions=True)

    # ------------------------------------------------------------------ exits

    def cancel_monitor(self, token_address: str) -> bool:
        if self._monitors is None:
            return False
        return self._monitors.cancel(token_address)

    async def exit_position(
        self,
        token_address: str,
        reason: str,
        *,
        emergency: bool = False,
    ) -> TradeOutcome:
        """Sell the whole open position for a token."""
        self.cancel_monitor(token_address)
        position = self._positions.find_open(token_address)
        if position is None:
            return TradeOutcome(
                success=False,
                token_address=token_address,
                error="no open position",
                error_kind=ErrorKind.FAILED.value,
            )

        config = self._config
        if emergency:
            config = replace(config, slippage=max(config.slippage, self._emergency_slippage))

        async with self._signer_lock:
            result = await self._executor.sell(
                token_address,
                position.token_amount_raw,
                config,
                token_decimals=position.token_decimals,
                entry_sol=position.sol_spent,
            )
        self._journal_execution(result, reason=reason)

        if not result.success and not result.confirmed:
            self._emit(
                "trade_failed",
                f"Exit failed: {position.token_symbol}",
                result.error or result.status.value,
                token_address,
            )
            return TradeOutcome(
                success=False,
                token_address=token_address,
                position_id=position.id,
                signature=result.signature,
                error=result.error,
                error_kind=result.error_kind,
            )

        if result.integrity_flags:
            self._journal.append(
                "corruption",
                {
                    "token": token_address,
                    "position_id": position.id,
                    "signature": result.signature,
                    "flags": list(result.integrity_flags),
                    "sol_received": result.sol_amount,
                    "sol_spent": position.sol_spent,
                },
            )
        flags = list(result.integrity_flags)
        # Sold on-chain but the received amount is unknown.
        unverified = not result.success
        if unverified:
            flags.append("fill_unverified")
            self._reconciliation_required(
                {"position_id": position.id, "exit": asdict(result), "reason": reason},
                result.error or "fill unavailable",
            )
        degraded = unverified
        try:
            self._positions.close(
                position.id,
                exit_price=result.price,
                exit_reason=reason,
                exit_tx=result.signature,
                integrity_flags=flags,
            )
        except PositionStoreError as exc:
            degraded = True
            self._reconciliation_required(
                {"position_id": position.id, "exit": asdict(result), "reason": reason},
                str(exc),
            )
        self._emit(
            "exit_executed",
            f"Exited: {position.token_symbol}",
            f"{reason} | received {result.sol_amount or 0:.4f} SOL | TX {result.signature}",
            token_address,
        )
        return TradeOutcome(
            success=True,
            token_address=token_address,
            position_id=position.id,
            signature=result.signature,
            token_amount=result.token_amount,
            error=(result.error if unverified else POSITION_SAVE_FAILED) if degraded else None,
            bookkeeping_degraded=degraded,
        )

    # --------------------------------------------------------------- internals

    async def _drain(self) -> None:
        while self._queue:
            if self._last_trade_end is not None:
                wait = self._last_trade_end + self._cooldown_sec - self._clock()
                if wait > 0:
                    await self._sleep(wait)

            problem = await self._check_prerequisites()
            if problem is not None:
                self._logger.warning("prerequisites_failed", error=problem, queue_length=len(self._queue))
                self._journal.append(
                    "queue",
                    {"action": "paused", "error": problem, "queue_length": len(self._queue)},
                )
                self._emit("prerequisites_failed", "Trading paused", problem)
                return
            if not self._queue:
                return

            item = self._queue.popleft()
            address = item.candidate.address
            self._queued.discard(address)
            if address in self._attempted:
                continue
            self._attempted.add(address)

            try:
                await self._execute(item.candidate, item.quote)
            except Exception as exc:  # noqa: BLE001
                self._logger.error("execution_crashed", token=address, error=str(exc))
                self._journal.append("error", {"token": address, "error": str(exc)})

    async def _execute(self, candidate: Candidate, quote: Quote | None) -> TradeOutcome:
        address = candidate.address
        async with self._signer_lock:
            self._executing = True
            self._current_token = address
            try:
                result = await self._executor.buy(address, self._config, quote=quote)
            finally:
                self._executing = False
                self._current_token = None
                self._last_trade_end = self._clock()

        self._journal_execution(result)
        if not result.success:
            if result.error_kind == ErrorKind.CORRUPTION.value:
                self._journal.append(
                    "corruption",
                    {"token": address, "signature": result.signature, "flags": list(result.integrity_flags)},
                )
            if result.confirmed:
                outcome = self._record_unparsed_entry(candidate, result)
                self._outcomes.append(outcome)
                return outcome
            self._emit(
                "trade_failed",
                f"Trade failed: {candidate.symbol}",
                result.error or result.status.value,
                address,
            )
            outcome = TradeOutcome(
                success=False,
                token_address=address,
                signature=result.signature,
                error=result.error,
                error_kind=result.error_kind,
            )
        else:
            outcome = await self._record_entry(candidate, result)
        self._outcomes.append(outcome)
        return outcome

    def _record_unparsed_entry(self, candidate: Candidate, result: ExecutionResult) -> TradeOutcome:
        """Confirmed on-chain but the fill is unknown: report it and hand it to reconciliation."""
        error = result.error or "fill unavailable"
        self._reconciliation_required(
            {
                "token": candidate.address,
                "symbol": candidate.symbol,
                "signature": result.signature,
                "error_kind": result.error_kind,
                "quoted_out_raw": result.quoted_out_raw,
                "price_impact_pct": result.price_impact_pct,
                "route": result.route,
                "buy_amount_sol": self._config.buy_amount_sol,
                "integrity_flags": list(result.integrity_flags),
            },
            error,
        )
        self._emit(
            "trade_executed",
            f"Trade executed (unverified): {candidate.symbol}",
            f"confirmed on-chain but fill unreadable ({error}) - reconcile manually | TX {result.signature}",
            candidate.address,
        )
        return TradeOutcome(
            success=True,
            token_address=candidate.address,
            signature=result.signature,
            error=error,
            error_kind=result.error_kind,
            bookkeeping_degraded=True,
        )

    async def _record_entry(self, candidate: Candidate, result: ExecutionResult) -> TradeOutcome:
        symbol, name = await reconcile_metadata(
            self._market, candidate.address, candidate.symbol, candidate.name
        )
        position = Position(
            id=uuid.uuid4().hex,
            user_id=self._positions.user_id,
            token_address=candidate.address,
            token_symbol=symbol,
            token_name=name,
            entry_price=result.price or 0.0,
            token_amount=result.token_amount or 0.0,
            token_amount_raw=result.token_amount_raw or 0,
            token_decimals=result.token_decimals if result.token_decimals is not None else 0,
            sol_spent=result.sol_amount or 0.0,
            entry_tx=result.signature or "",
            take_profit_pct=self._config.take_profit_pct,
            stop_loss_pct=self._config.stop_loss_pct,
            entry_liquidity_usd=candidate.liquidity_usd,
            opened_at=datetime.now(timezone.utc).isoformat(),
            status=PositionStatus.PENDING,
        )

        position_id: str | None = position.id
        degraded = False
        try:
            self._positions.create(position)
            self._positions.mark_open(position.id)
        except PositionStoreError as exc:
            degraded = True
            position_id = None
            self._reconciliation_required({"position": asdict(position)}, str(exc))
        else:
            self._journal.append("position", {"action": "open", "position": asdict(position)})

        self._emit(
            "trade_executed",
            f"Trade executed: {symbol}",
            (
                f"entry {position.entry_price:.10f} SOL | {position.token_amount:,.2f} tokens | "
                f"{position.sol_spent:.4f} SOL | TX {result.signature}"
            ),
            candidate.address,
        )
        if self._monitors is not None and position.token_amount_raw > 0:
            self._monitors.start(
                token_address=candidate.address,
                token_symbol=symbol,
                position_id=position_id,
                entry_liquidity_usd=candidate.liquidity_usd,
                token_amount_raw=position.token_amount_raw,
                on_emergency_exit=self._on_emergency_exit,
            )
        return TradeOutcome(
            success=True,
            token_address=candidate.address,
            position_id=position_id,
            signature=result.signature,
            entry_price=result.price,
            token_amount=result.token_amount,
            sol_spent=result.sol_amount,
            error=POSITION_SAVE_FAILED if degraded else None,
            bookkeeping_degraded=degraded,
        )

    async def _on_emergency_exit(self, token_address: str, reason: str) -> None:
        self._emit("emergency_exit", "EMERGENCY EXIT", reason, token_address)
        await self.exit_position(token_address, f"emergency: {reason}", emergency=True)

    async def _check_prerequisites(self) -> str | None:
        signer = self._executor.signer
        public_key = signer.public_key
        if not signer.is_connected or not public_key:
            return "wallet not connected"
        try:
            balance = await self._rpc.get_balance(public_key)
        except SniperError as exc:
            return f"wallet balance unavailable: {exc}"
        required = self._config.buy_amount_sol + self._fee_reserve_sol
        if balance < required:
            return f"insufficient balance: {balance:.4f} SOL < {required:.4f} SOL required"
        return None

    def _discard_queued(self, address: str) -> None:
        if address in self._queued:
            self._queued.discard(address)
            self._queue = deque(i for i in self._queue if i.candidate.address != address)

    def _reconciliation_required(self, payload: dict[str, Any], error: str) -> None:
        self._logger.error("reconciliation_required", error=error, **{k: str(v) for k, v in payload.items()})
        self._journal.append("reconciliation_required", {**payload, "error": error})

    def _journal_execution(self, result: ExecutionResult, reason: str | None = None) -> None:
        payload = asdict(result)
        if reason is not None:
            payload["reason"] = reason
        self._journal.append("execution", payload)

    def _on_execution_event(self, event: str, data: dict[str, Any]) -> None:
        if event == "retry":
            self._emit(
                "retrying",
                f"Retrying {data.get('stage')}",
                f"attempt {data.get('attempt')}/{data.get('max_retries')}: {data.get('error')}",
                data.get("token"),
            )

    def _emit(self, kind: NoticeKind, title: str, message: str, token: str | None = None) -> None:
        notice = Notice(kind=kind, title=title, message=message, token_address=token)
        log = self._logger.critical if kind == "emergency_exit" else self._logger.info
        log("notice", kind=kind, title=title, message=message, token=token)
        if self._notify is None:
            return
        try:
            self._notify(notice)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("notify_failed", error=str(exc))
