"""Post-entry emergency monitor: short-lived supervision of a fresh position."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict

from sniper_engine.data.dexscreener import DexScreenerClient
from sniper_engine.data.jupiter import JupiterClient
from sniper_engine.errors import SniperError
from sniper_engine.journal.store import JournalStore
from sniper_engine.types import SOL_MINT, Checkpoint, CheckpointResult, MonitorSession
from sniper_engine.utils.logging import get_logger, log_emergency_exit

Sleep = Callable[[float], Awaitable[None]]
EmergencyExit = Callable[[str, str], Awaitable[None]]

# Thresholds loosen with time since entry.
DEFAULT_CHECKPOINTS: tuple[Checkpoint, ...] = (
    Checkpoint(label="+15s", offset_sec=15.0, max_liquidity_drop_pct=25.0, max_price_impact_pct=35.0),
    Checkpoint(label="+30s", offset_sec=30.0, max_liquidity_drop_pct=30.0, max_price_impact_pct=40.0),
    Checkpoint(label="+60s", offset_sec=60.0, max_liquidity_drop_pct=40.0, max_price_impact_pct=50.0),
)

SELL_CHECK_SLIPPAGE_BPS = 500


class MonitorRegistry:
    """Owns the active monitor sessions, one per token address."""

    def __init__(
        self,
        quotes: JupiterClient,
        market: DexScreenerClient,
        *,
        checkpoints: tuple[Checkpoint, ...] = DEFAULT_CHECKPOINTS,
        journal: JournalStore | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._quotes = quotes
        self._market = market
        self._checkpoints = tuple(sorted(checkpoints, key=lambda c: c.offset_sec))
        self._journal = journal
        self._sleep = sleep
        self._clock = clock
        self._sessions: dict[str, MonitorSession] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._running: set[asyncio.Task[None]] = set()
        self._logger = get_logger("sniper_engine.monitor.post_entry")

    def start(
        self,
        *,
        token_address: str,
        token_symbol: str,
        position_id: str | None,
        entry_liquidity_usd: float,
        token_amount_raw: int,
        on_emergency_exit: EmergencyExit,
    ) -> MonitorSession:
        """Begin supervising a position. Replaces any session already running for the token."""
        self.cancel(token_address)
        session = MonitorSession(
            token_address=token_address,
            token_symbol=token_symbol,
            position_id=position_id,
            entry_liquidity_usd=entry_liquidity_usd,
            token_amount_raw=token_amount_raw,
            buy_timestamp=self._clock(),
        )
        task = asyncio.create_task(
            self._run(session, on_emergency_exit),
            name=f"monitor:{token_address}",
        )
        self._sessions[token_address] = session
        self._tasks[token_address] = task
        self._running.add(task)
        task.add_done_callback(lambda t: self._forget(t, token_address, session))
        self._logger.info(
            "monitor_started",
            token=token_address,
            symbol=token_symbol,
            checkpoints=[c.label for c in self._checkpoints],
        )
        return session

    def cancel(self, token_address: str) -> bool:
        """Abort the session for a token. The task stops at its next abort check."""
        session = self._sessions.pop(token_address, None)
        self._tasks.pop(token_address, None)
        if session is None:
            return False
        session.aborted = True
        self._logger.info("monitor_cancelled", token=token_address)
        return True

    def is_monitored(self, token_address: str) -> bool:
        return token_address in self._sessions

    def session(self, token_address: str) -> MonitorSession | None:
        return self._sessions.get(token_address)

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    async def wait_all(self) -> None:
        """Wait for every monitor task, including aborted ones still unwinding."""
        tasks = list(self._running)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Abort every session and cancel the underlying tasks."""
        tasks = list(self._running)
        for token in list(self._sessions):
            self.cancel(token)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, session: MonitorSession, on_emergency_exit: EmergencyExit) -> None:
        elapsed = 0.0
        for checkpoint in self._checkpoints:
            await self._sleep(max(0.0, checkpoint.offset_sec - elapsed))
            elapsed = checkpoint.offset_sec
            if session.aborted or session.exit_triggered:
                return

            result = await self._run_checkpoint(session, checkpoint)
            if session.aborted:
                return
            session.checkpoints.append(result)
            self._logger.info(
                "monitor_checkpoint",
                token=session.token_address,
                checkpoint=result.label,
                passed=result.passed,
                route=result.sell_route_exists,
                price_impact_pct=result.price_impact_pct,
                liquidity_usd=result.current_liquidity_usd,
                liquidity_drop_pct=round(result.liquidity_drop_pct, 2),
                reason=result.reason,
            )

            if not result.passed:
                await self._trigger_exit(session, result, on_emergency_exit)
                return

        session.completed = True
        self._logger.info("monitor_completed", token=session.token_address)
        if self._journal is not None:
            self._journal.append(
                "monitor",
                {
                    "token": session.token_address,
                    "position_id": session.position_id,
                    "status": "completed",
                    "checkpoints": [asdict(c) for c in session.checkpoints],
                },
            )

    async def _trigger_exit(
        self,
        session: MonitorSession,
        result: CheckpointResult,
        on_emergency_exit: EmergencyExit,
    ) -> None:
        if session.aborted or session.exit_triggered:
            return
        session.exit_triggered = True
        log_emergency_exit(
            self._logger,
            token=session.token_address,
            checkpoint=result.label,
            reason=result.reason,
            symbol=session.token_symbol,
        )
        if self._journal is not None:
            self._journal.append(
                "emergency_exit",
                {
                    "token": session.token_address,
                    "symbol": session.token_symbol,
                    "position_id": session.position_id,
                    "checkpoint": result.label,
                    "reason": result.reason,
                    "checkpoints": [asdict(c) for c in session.checkpoints],
                },
            )
        try:
            await on_emergency_exit(session.token_address, result.reason)
        except Exception as exc:  # noqa: BLE001
            self._logger.error(
                "emergency_exit_callback_failed",
                token=session.token_address,
                error=str(exc),
            )

    async def _run_checkpoint(self, session: MonitorSession, checkpoint: Checkpoint) -> CheckpointResult:
        seconds_after_buy = self._clock() - session.buy_timestamp
        (route_exists, impact), liquidity = await asyncio.gather(
            self._sell_route(session),
            self._liquidity(session.token_address),
        )

        drop = 0.0
        if liquidity is not None and session.entry_liquidity_usd > 0:
            drop = (session.entry_liquidity_usd - liquidity) / session.entry_liquidity_usd * 100.0

        passed = True
        reason = "all checks passed"
        if not route_exists:
            passed = False
            reason = "sell route disappeared - emergency exit required"
        elif impact is not None and impact > checkpoint.max_price_impact_pct:
            passed = False
            reason = (
                f"price impact {impact:.1f}% > {checkpoint.max_price_impact_pct:.0f}% - liquidity drained"
            )
        elif drop > checkpoint.max_liquidity_drop_pct:
            passed = False
            reason = (
                f"liquidity dropped {drop:.1f}% > {checkpoint.max_liquidity_drop_pct:.0f}% - possible rug"
            )

        return CheckpointResult(
            label=checkpoint.label,
            seconds_after_buy=seconds_after_buy,
            sell_route_exists=route_exists,
            price_impact_pct=impact,
            current_liquidity_usd=liquidity,
            liquidity_drop_pct=drop,
            passed=passed,
            reason=reason,
        )

    async def _sell_route(self, session: MonitorSession) -> tuple[bool, float | None]:
        try:
            quote = await self._quotes.quote(
                session.token_address,
                SOL_MINT,
                session.token_amount_raw,
                SELL_CHECK_SLIPPAGE_BPS,
            )
        except SniperError as exc:
            self._logger.warning("monitor_sell_quote_failed", token=session.token_address, error=str(exc))
            return False, None
        return True, quote.price_impact_pct

    async def _liquidity(self, token_address: str) -> float | None:
        try:
            return await self._market.liquidity_usd(token_address)
        except SniperError as exc:
            self._logger.info("monitor_liquidity_unavailable", token=token_address, error=str(exc))
            return None

    def _forget(self, task: asyncio.Task[None], token_address: str, session: MonitorSession) -> None:
        self._running.discard(task)
        if self._sessions.get(token_address) is session:
            del self._sessions[token_address]
            self._tasks.pop(token_address, None)
