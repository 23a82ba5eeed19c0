"""Swap execution state machine: quote, build, sign, submit, confirm."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from sniper_engine.data.jupiter import JupiterClient
from sniper_engine.data.solana_rpc import SolanaRpcClient
from sniper_engine.errors import (
    CorruptionError,
    DataUnavailableError,
    DecimalsUnavailableError,
    ErrorKind,
    MalformedResponseError,
    NoRouteError,
    SniperError,
    TransientNetworkError,
    UserRejectedError,
)
from sniper_engine.exec.balance_delta import (
    IMPOSSIBLE_ROI_PCT,
    Fill,
    buy_fill,
    extract_balance_delta,
    realized_roi_pct,
    sell_fill,
    to_raw_amount,
)
from sniper_engine.exec.signer import TransactionSigner
from sniper_engine.types import (
    SOL_DECIMALS,
    SOL_MINT,
    ExecutionConfig,
    ExecutionResult,
    ExecutionState,
    Quote,
    TradeSide,
    UnsignedTransaction,
)
from sniper_engine.utils.logging import get_logger, log_order_execution

S = ExecutionState

_TRANSITIONS: dict[ExecutionState, frozenset[ExecutionState]] = {
    S.QUOTING: frozenset({S.BUILDING, S.NO_ROUTE, S.FAILED}),
    S.BUILDING: frozenset({S.SIGNING, S.FAILED}),
    S.SIGNING: frozenset({S.SUBMITTED, S.FAILED}),
    S.SUBMITTED: frozenset({S.CONFIRMING, S.FAILED}),
    S.CONFIRMING: frozenset({S.SUCCESS, S.FAILED}),
    S.SUCCESS: frozenset(),
    S.FAILED: frozenset(),
    S.NO_ROUTE: frozenset(),
}

DEFAULT_SELL_DECIMALS = 6
_TX_FETCH_ATTEMPTS = 3

Sleep = Callable[[float], Awaitable[None]]
EventHook = Callable[[str, dict[str, Any]], None]


class _Abort(Exception):
    """Internal: ends a run in a terminal state."""

    def __init__(self, state: ExecutionState, error: str, kind: ErrorKind) -> None:
        super().__init__(error)
        self.state = state
        self.error = error
        self.kind = kind


class _Run:
    """Mutable bookkeeping for one pass through the machine."""

    def __init__(self, side: TradeSide, token_address: str, hook: EventHook | None) -> None:
        self.result = ExecutionResult(
            side=side,
            token_address=token_address,
            status=S.QUOTING,
            states=[S.QUOTING],
        )
        self._hook = hook

    def advance(self, target: ExecutionState) -> None:
        current = self.result.status
        if target not in _TRANSITIONS[current]:
            raise RuntimeError(f"illegal_transition: {current.value} -> {target.value}")
        self.result.status = target
        self.result.states.append(target)
        self.emit("state", state=target.value)

    def emit(self, event: str, **data: Any) -> None:
        if self._hook is not None:
            self._hook(event, {"side": self.result.side, "token": self.result.token_address, **data})


class ExecutionStateMachine:
    """Acquires or disposes of a position against the swap aggregator.

    Entry price and size always come from the confirmed transaction's balance
    changes, never from the quote. Only the pre-signature stages are retried.
    """

    def __init__(
        self,
        quotes: JupiterClient,
        rpc: SolanaRpcClient,
        signer: TransactionSigner,
        *,
        quote_ttl_sec: float = 20.0,
        confirm_max_attempts: int = 30,
        confirm_interval_sec: float = 1.0,
        retry_wait_min_sec: float = 0.5,
        retry_wait_max_sec: float = 4.0,
        sleep: Sleep = asyncio.sleep,
        on_event: EventHook | None = None,
    ) -> None:
        self._quotes = quotes
        self._rpc = rpc
        self._signer = signer
        self._quote_ttl_sec = quote_ttl_sec
        self._confirm_max_attempts = confirm_max_attempts
        self._confirm_interval_sec = confirm_interval_sec
        self._retry_wait_min_sec = retry_wait_min_sec
        self._retry_wait_max_sec = retry_wait_max_sec
        self._sleep = sleep
        self._on_event = on_event
        self._logger = get_logger("sniper_engine.exec.state_machine")

    @property
    def signer(self) -> TransactionSigner:
        return self._signer

    def set_event_hook(self, hook: EventHook | None) -> None:
        self._on_event = hook

    async def buy(
        self,
        token_address: str,
        config: ExecutionConfig,
        *,
        quote: Quote | None = None,
    ) -> ExecutionResult:
        run = _Run("BUY", token_address, self._on_event)
        amount_raw = to_raw_amount(config.buy_amount_sol, SOL_DECIMALS)
        try:
            fresh = await self._quote(run, SOL_MINT, token_address, amount_raw, config, quote)
            decimals = await self._resolve_decimals(token_address)
            if decimals is None:
                missing = DecimalsUnavailableError(f"token decimals unavailable: {token_address}")
                raise _Abort(S.FAILED, str(missing), missing.kind)
            transaction = await self._confirm_and_load(run, fresh, config)
            fill = self._fill(run, transaction, token_address, decimals, buy_fill)
        except _Abort as abort:
            return self._finish(run, abort)

        run.result.sol_amount = fill.sol_amount
        run.result.token_amount = fill.token_amount
        run.result.token_amount_raw = fill.token_amount_raw
        run.result.token_decimals = fill.token_decimals
        run.result.price = fill.price_sol
        if fresh.out_amount_raw > 0:
            run.result.realized_slippage_pct = (
                (fresh.out_amount_raw - fill.token_amount_raw) / fresh.out_amount_raw * 100.0
            )
        run.advance(S.SUCCESS)
        return self._finish(run, None)

    async def sell(
        self,
        token_address: str,
        amount_raw: int,
        config: ExecutionConfig,
        *,
        token_decimals: int | None = None,
        entry_sol: float | None = None,
    ) -> ExecutionResult:
        run = _Run("SELL", token_address, self._on_event)
        try:
            if amount_raw <= 0:
                raise _Abort(S.FAILED, "nothing to sell", ErrorKind.FAILED)
            fresh = await self._quote(run, token_address, SOL_MINT, amount_raw, config, None)
            decimals = token_decimals
            if decimals is None:
                decimals = await self._resolve_decimals(token_address)
            if decimals is None:
                self._logger.warning("sell_decimals_defaulted", token=token_address)
                decimals = DEFAULT_SELL_DECIMALS
            transaction = await self._confirm_and_load(run, fresh, config)
            fill = self._fill(run, transaction, token_address, decimals, sell_fill)
        except _Abort as abort:
            return self._finish(run, abort)

        run.result.sol_amount = fill.sol_amount
        run.result.token_amount = fill.token_amount
        run.result.token_amount_raw = fill.token_amount_raw
        run.result.token_decimals = fill.token_decimals
        run.result.price = fill.price_sol
        if fresh.out_amount_raw > 0:
            received = to_raw_amount(fill.sol_amount, SOL_DECIMALS)
            run.result.realized_slippage_pct = (
                (fresh.out_amount_raw - received) / fresh.out_amount_raw * 100.0
            )
        if entry_sol is not None:
            roi = realized_roi_pct(entry_sol, fill.sol_amount)
            if roi is not None and roi > IMPOSSIBLE_ROI_PCT:
                run.result.integrity_flags.append("impossible_roi")
                self._logger.error(
                    "sell_impossible_roi",
                    token=token_address,
                    roi_pct=round(roi, 2),
                    signature=run.result.signature,
                )
        run.advance(S.SUCCESS)
        return self._finish(run, None)

    async def _quote(
        self,
        run: _Run,
        input_mint: str,
        output_mint: str,
        amount_raw: int,
        config: ExecutionConfig,
        supplied: Quote | None,
    ) -> Quote:
        if (
            supplied is not None
            and supplied.input_mint == input_mint
            and supplied.output_mint == output_mint
            and supplied.in_amount_raw == amount_raw
            and supplied.is_fresh(self._quote_ttl_sec)
        ):
            quote = supplied
        else:
            try:
                quote = await self._with_retries(
                    run,
                    "quote",
                    config.max_retries,
                    lambda: self._quotes.quote(input_mint, output_mint, amount_raw, config.slippage_bps),
                )
            except (NoRouteError, MalformedResponseError, DataUnavailableError) as exc:
                raise _Abort(S.NO_ROUTE, str(exc), ErrorKind.NO_ROUTE) from exc
            except TransientNetworkError as exc:
                raise _Abort(S.FAILED, str(exc), ErrorKind.TRANSIENT_NETWORK) from exc
        run.result.quoted_out_raw = quote.out_amount_raw
        run.result.price_impact_pct = quote.price_impact_pct
        run.result.route = quote.route
        return quote

    async def _build(self, run: _Run, quote: Quote, config: ExecutionConfig) -> UnsignedTransaction:
        public_key = self._signer.public_key
        if not self._signer.is_connected or not public_key:
            raise _Abort(S.FAILED, "wallet not connected", ErrorKind.PREREQUISITE)
        try:
            return await self._with_retries(
                run,
                "build",
                config.max_retries,
                lambda: self._quotes.build_transaction(quote, public_key, config.priority_fee_lamports),
            )
        except SniperError as exc:
            raise _Abort(S.FAILED, f"build failed: {exc}", exc.kind) from exc

    async def _confirm_and_load(
        self,
        run: _Run,
        quote: Quote,
        config: ExecutionConfig,
    ) -> dict[str, Any]:
        run.advance(S.BUILDING)
        unsigned = await self._build(run, quote, config)

        run.advance(S.SIGNING)
        try:
            signature = await self._signer.sign_and_send(unsigned)
        except UserRejectedError as exc:
            raise _Abort(S.FAILED, "user rejected signature", ErrorKind.USER_REJECTED) from exc
        except SniperError as exc:
            raise _Abort(S.FAILED, f"signing failed: {exc}", exc.kind) from exc
        run.result.signature = signature
        run.advance(S.SUBMITTED)

        run.advance(S.CONFIRMING)
        await self._await_confirmation(run, signature)
        run.result.confirmed = True
        return await self._load_transaction(run, signature)

    async def _await_confirmation(self, run: _Run, signature: str) -> None:
        for attempt in range(1, self._confirm_max_attempts + 1):
            try:
                status = await self._rpc.get_signature_status(signature)
            except SniperError as exc:
                self._logger.info("confirm_poll_error", signature=signature, attempt=attempt, error=str(exc))
                status = None
            if status is not None:
                if status.err is not None:
                    raise _Abort(S.FAILED, f"transaction failed on-chain: {status.err}", ErrorKind.FAILED)
                if status.is_final:
                    return
            if attempt < self._confirm_max_attempts:
                await self._sleep(self._confirm_interval_sec)
        raise _Abort(
            S.FAILED,
            f"confirmation timeout after {self._confirm_max_attempts} attempts",
            ErrorKind.TRANSIENT_NETWORK,
        )

    async def _load_transaction(self, run: _Run, signature: str) -> dict[str, Any]:
        for attempt in range(1, _TX_FETCH_ATTEMPTS + 1):
            try:
                transaction = await self._rpc.get_transaction(signature)
            except SniperError as exc:
                self._logger.info("transaction_fetch_error", signature=signature, error=str(exc))
                transaction = None
            if transaction is not None:
                meta = transaction.get("meta")
                if isinstance(meta, dict) and meta.get("err") is not None:
                    raise _Abort(S.FAILED, f"transaction failed on-chain: {meta['err']}", ErrorKind.FAILED)
                return transaction
            if attempt < _TX_FETCH_ATTEMPTS:
                await self._sleep(self._confirm_interval_sec)
        raise _Abort(S.FAILED, "confirmed transaction not retrievable", ErrorKind.DATA_UNAVAILABLE)

    def _fill(
        self,
        run: _Run,
        transaction: dict[str, Any],
        token_address: str,
        decimals: int,
        derive: Callable[..., Fill],
    ) -> Fill:
        wallet = self._signer.public_key or ""
        try:
            delta = extract_balance_delta(transaction, wallet, token_address)
            if delta.token_decimals is not None:
                decimals = delta.token_decimals
            run.result.fee_sol = delta.fee_sol
            return derive(delta, decimals)
        except CorruptionError as exc:
            run.result.integrity_flags.append(str(exc))
            raise _Abort(S.FAILED, f"balance delta corrupt: {exc}", ErrorKind.CORRUPTION) from exc
        except MalformedResponseError as exc:
            raise _Abort(S.FAILED, str(exc), ErrorKind.MALFORMED_RESPONSE) from exc

    async def _resolve_decimals(self, mint: str) -> int | None:
        try:
            decimals = await self._quotes.token_decimals(mint)
        except SniperError as exc:
            self._logger.info("aggregator_decimals_unavailable", mint=mint, error=str(exc))
            decimals = None
        if decimals is not None:
            return decimals
        try:
            return await self._rpc.get_mint_decimals(mint)
        except SniperError as exc:
            self._logger.warning("rpc_decimals_unavailable", mint=mint, error=str(exc))
            return None

    async def _with_retries(
        self,
        run: _Run,
        stage: str,
        max_retries: int,
        call: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Retry a pre-signature stage on transient errors with exponential backoff.

        Stacks on the HTTP layer's own retries, so one stage makes at most
        http_max_attempts * (max_retries + 1) requests.
        """

        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            attempt = state.attempt_number
            run.emit("retry", stage=stage, attempt=attempt, max_retries=max_retries, error=str(exc))
            self._logger.warning("execution_retry", stage=stage, attempt=attempt, error=str(exc))

        retrying = AsyncRetrying(
            sleep=self._sleep,
            retry=retry_if_exception_type(TransientNetworkError),
            wait=wait_exponential(
                multiplier=self._retry_wait_min_sec,
                min=self._retry_wait_min_sec,
                max=self._retry_wait_max_sec,
            ),
            stop=stop_after_attempt(max_retries + 1),
            before_sleep=_before_sleep,
            reraise=True,
        )
        return await retrying(call)

    def _finish(self, run: _Run, abort: _Abort | None) -> ExecutionResult:
        if abort is not None:
            run.advance(abort.state)
            run.result.error = abort.error
            run.result.error_kind = abort.kind.value
        result = run.result
        log_order_execution(
            self._logger,
            token=result.token_address,
            side=result.side,
            status=result.status.value,
            signature=result.signature,
            amount=result.token_amount,
            price=result.price,
            sol_amount=result.sol_amount,
            error=result.error,
            error_kind=result.error_kind,
        )
        return result
