"""Short pre-execution observation window that re-checks pool stability."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sniper_engine.data.dexscreener import DexScreenerClient
from sniper_engine.data.jupiter import JupiterClient
from sniper_engine.errors import SniperError
from sniper_engine.journal.store import JournalStore
from sniper_engine.types import Candidate, Quote
from sniper_engine.utils.logging import get_logger

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ObservationResult:
    stable: bool
    skipped: bool
    reason: str
    liquidity_change_pct: float = 0.0
    quote_deviation_pct: float = 0.0
    duration_sec: float = 0.0
    current_liquidity_usd: float | None = None
    fresh_quote: Quote | None = None


class ObservationWindow:
    """Waits briefly, then compares liquidity and quote output to their initial values.

    Fetch failures are "no signal" for that dimension, never a reason to
    reject on their own.
    """

    def __init__(
        self,
        market: DexScreenerClient,
        quotes: JupiterClient,
        *,
        delay_sec: float = 3.0,
        high_liquidity_skip_usd: float = 50_000.0,
        max_liquidity_change_pct: float = 20.0,
        max_quote_deviation_pct: float = 15.0,
        journal: JournalStore | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._market = market
        self._quotes = quotes
        self._delay_sec = delay_sec
        self._high_liquidity_skip_usd = high_liquidity_skip_usd
        self._max_liquidity_change_pct = max_liquidity_change_pct
        self._max_quote_deviation_pct = max_quote_deviation_pct
        self._journal = journal
        self._sleep = sleep
        self._logger = get_logger("sniper_engine.monitor.observation")

    async def observe(self, candidate: Candidate, initial_quote: Quote | None = None) -> ObservationResult:
        if candidate.fair_launch:
            result = ObservationResult(stable=True, skipped=True, reason="fair launch venue - observation skipped")
            return self._record(candidate, result)
        if candidate.liquidity_usd >= self._high_liquidity_skip_usd:
            result = ObservationResult(
                stable=True,
                skipped=True,
                reason=f"high liquidity (${candidate.liquidity_usd / 1000:.0f}k) - observation skipped",
            )
            return self._record(candidate, result)

        await self._sleep(self._delay_sec)
        current_liquidity, fresh_quote = await asyncio.gather(
            self._current_liquidity(candidate.address),
            self._fresh_quote(initial_quote),
        )

        liquidity_change = 0.0
        if current_liquidity is not None and candidate.liquidity_usd > 0:
            liquidity_change = abs(current_liquidity - candidate.liquidity_usd) / candidate.liquidity_usd * 100.0
        quote_deviation = 0.0
        if fresh_quote is not None and initial_quote is not None and initial_quote.out_amount_raw > 0:
            quote_deviation = (
                abs(fresh_quote.out_amount_raw - initial_quote.out_amount_raw)
                / initial_quote.out_amount_raw
                * 100.0
            )

        reasons: list[str] = []
        if liquidity_change > self._max_liquidity_change_pct:
            reasons.append(f"liquidity changed {liquidity_change:.1f}%")
        if quote_deviation > self._max_quote_deviation_pct:
            reasons.append(f"quote deviated {quote_deviation:.1f}%")
        stable = not reasons
        reason = (
            f"stable after {self._delay_sec:g}s (liq {liquidity_change:.1f}%, quote {quote_deviation:.1f}%)"
            if stable
            else f"unstable: {', '.join(reasons)}"
        )
        result = ObservationResult(
            stable=stable,
            skipped=False,
            reason=reason,
            liquidity_change_pct=liquidity_change,
            quote_deviation_pct=quote_deviation,
            duration_sec=self._delay_sec,
            current_liquidity_usd=current_liquidity,
            fresh_quote=fresh_quote,
        )
        return self._record(candidate, result)

    async def _current_liquidity(self, token_address: str) -> float | None:
        try:
            return await self._market.liquidity_usd(token_address)
        except SniperError as exc:
            self._logger.info("observation_liquidity_unavailable", token=token_address, error=str(exc))
            return None

    async def _fresh_quote(self, initial: Quote | None) -> Quote | None:
        if initial is None:
            return None
        try:
            return await self._quotes.quote(
                initial.input_mint,
                initial.output_mint,
                initial.in_amount_raw,
                initial.slippage_bps,
            )
        except SniperError as exc:
            self._logger.info("observation_quote_unavailable", error=str(exc))
            return None

    def _record(self, candidate: Candidate, result: ObservationResult) -> ObservationResult:
        self._logger.info(
            "observation",
            token=candidate.address,
            stable=result.stable,
            skipped=result.skipped,
            reason=result.reason,
        )
        if self._journal is not None:
            self._journal.append(
                "observation",
                {
                    "token": candidate.address,
                    "stable": result.stable,
                    "skipped": result.skipped,
                    "reason": result.reason,
                    "liquidity_change_pct": result.liquidity_change_pct,
                    "quote_deviation_pct": result.quote_deviation_pct,
                    "current_liquidity_usd": result.current_liquidity_usd,
                },
            )
        return result
