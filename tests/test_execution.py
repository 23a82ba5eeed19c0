from __future__ import annotations

from typing import Any

import pytest

from sniper_engine.errors import (
    CorruptionError,
    MalformedResponseError,
    NoRouteError,
    TransientNetworkError,
    UserRejectedError,
)
from sniper_engine.exec.balance_delta import buy_fill, extract_balance_delta, sell_fill, to_raw_amount
from sniper_engine.exec.state_machine import ExecutionStateMachine
from sniper_engine.types import (
    SOL_MINT,
    ExecutionConfig,
    ExecutionState,
    Quote,
    SignatureStatus,
    UnsignedTransaction,
)

S = ExecutionState
_TOKEN = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
_WALLET = "Wa11et1111111111111111111111111111111111111"
_CONFIG = ExecutionConfig(
    buy_amount_sol=0.1,
    slippage=0.15,
    priority_fee_lamports=1_000_000,
    max_retries=2,
    take_profit_pct=100.0,
    stop_loss_pct=30.0,
)


def _tx(
    *,
    pre_sol: int,
    post_sol: int,
    fee: int = 5_000,
    pre_tokens: int = 0,
    post_tokens: int = 0,
    decimals: int = 6,
    err: object = None,
) -> dict[str, Any]:
    def _balances(amount: int) -> list[dict[str, Any]]:
        if amount == 0:
            return []
        return [
            {
                "accountIndex": 2,
                "mint": _TOKEN,
                "owner": _WALLET,
                "uiTokenAmount": {"amount": str(amount), "decimals": decimals},
            },
            {
                "accountIndex": 3,
                "mint": _TOKEN,
                "owner": "PoolVau1t",
                "uiTokenAmount": {"amount": "999999999999", "decimals": decimals},
            },
        ]

    return {
        "transaction": {"message": {"accountKeys": [{"pubkey": _WALLET}, {"pubkey": "PoolVau1t"}]}},
        "meta": {
            "err": err,
            "fee": fee,
            "preBalances": [pre_sol, 5_000_000_000],
            "postBalances": [post_sol, 5_100_000_000],
            "preTokenBalances": _balances(pre_tokens),
            "postTokenBalances": _balances(post_tokens),
        },
    }


# 0.1 SOL spent (plus 5000 lamport fee), 118 tokens received against a 123.456789 quote.
_BUY_TX = _tx(pre_sol=1_000_000_000, post_sol=899_995_000, post_tokens=118_000_000)


def _quote(out_amount: int = 123_456_789, *, input_mint: str = SOL_MINT, output_mint: str = _TOKEN) -> Quote:
    return Quote(
        input_mint=input_mint,
        output_mint=output_mint,
        in_amount_raw=100_000_000 if input_mint == SOL_MINT else 118_000_000,
        out_amount_raw=out_amount,
        price_impact_pct=1.2,
        slippage_bps=1500,
        route="Raydium",
        raw={"outAmount": str(out_amount)},
    )


class _FakeQuotes:
    def __init__(self, *, quote_errors: list[Exception] | None = None, decimals: int | None = 6) -> None:
        self.quote_errors = list(quote_errors or [])
        self.build_error: Exception | None = None
        self.decimals = decimals
        self.quote_calls = 0
        self.build_calls = 0

    async def quote(self, input_mint: str, output_mint: str, amount_raw: int, slippage_bps: int) -> Quote:
        self.quote_calls += 1
        if self.quote_errors:
            raise self.quote_errors.pop(0)
        if input_mint == SOL_MINT:
            return _quote()
        return _quote(490_000_000, input_mint=input_mint, output_mint=output_mint)

    async def build_transaction(self, quote: Quote, user_public_key: str, priority_fee_lamports: int) -> UnsignedTransaction:
        self.build_calls += 1
        if self.build_error is not None:
            raise self.build_error
        return UnsignedTransaction(serialized="AAEC", fee_payer=user_public_key)

    async def token_decimals(self, mint: str) -> int | None:
        return self.decimals


class _FakeRpc:
    def __init__(self, transaction: dict[str, Any] | None = None) -> None:
        self.statuses: list[SignatureStatus | None] = [SignatureStatus("confirmed", slot=10)]
        self.transaction = transaction if transaction is not None else _BUY_TX
        self.mint_decimals: int | None = None
        self.status_calls = 0

    async def get_signature_status(self, signature: str) -> SignatureStatus | None:
        self.status_calls += 1
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    async def get_transaction(self, signature: str) -> dict[str, Any] | None:
        return self.transaction

    async def get_mint_decimals(self, mint: str) -> int | None:
        return self.mint_decimals


class _FakeSigner:
    def __init__(self, *, error: Exception | None = None, connected: bool = True) -> None:
        self.error = error
        self.connected = connected
        self.signed: list[UnsignedTransaction] = []

    @property
    def public_key(self) -> str | None:
        return _WALLET if self.connected else None

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def sign_and_send(self, transaction: UnsignedTransaction) -> str:
        self.signed.append(transaction)
        if self.error is not None:
            raise self.error
        return "5igNaTuRe"


async def _no_sleep(seconds: float) -> None:
    return None


def _machine(
    quotes: _FakeQuotes | None = None,
    rpc: _FakeRpc | None = None,
    signer: _FakeSigner | None = None,
    **kwargs: Any,
) -> tuple[ExecutionStateMachine, _FakeQuotes, _FakeRpc, _FakeSigner]:
    quotes = quotes or _FakeQuotes()
    rpc = rpc or _FakeRpc()
    signer = signer or _FakeSigner()
    machine = ExecutionStateMachine(quotes, rpc, signer, sleep=_no_sleep, **kwargs)  # type: ignore[arg-type]
    return machine, quotes, rpc, signer


def test_balance_delta_excludes_fee_and_other_owners() -> None:
    delta = extract_balance_delta(_BUY_TX, _WALLET, _TOKEN)
    assert delta.sol_delta_lamports == -100_000_000
    assert delta.fee_lamports == 5_000
    assert delta.token_delta_raw == 118_000_000
    assert delta.token_decimals == 6

    fill = buy_fill(delta, 6)
    assert fill.sol_amount == pytest.approx(0.1)
    assert fill.token_amount == pytest.approx(118.0)
    assert fill.price_sol == pytest.approx(0.1 / 118.0)


def test_balance_delta_corruption_cases() -> None:
    no_tokens = extract_balance_delta(_tx(pre_sol=10**9, post_sol=9 * 10**8 - 5_000), _WALLET, _TOKEN)
    with pytest.raises(CorruptionError, match="buy_with_no_tokens"):
        buy_fill(no_tokens, 6)

    no_receive = extract_balance_delta(
        _tx(pre_sol=10**9, post_sol=10**9 - 5_000, pre_tokens=100, post_tokens=0), _WALLET, _TOKEN
    )
    with pytest.raises(CorruptionError, match="sell_with_no_receive"):
        sell_fill(no_receive, 6)


def test_balance_delta_wallet_missing_is_malformed() -> None:
    with pytest.raises(MalformedResponseError):
        extract_balance_delta(_BUY_TX, "SomeoneE1se", _TOKEN)


def test_to_raw_amount_has_no_float_drift() -> None:
    assert to_raw_amount(0.1, 9) == 100_000_000
    assert to_raw_amount(0.3, 9) == 300_000_000


@pytest.mark.asyncio
async def test_buy_uses_on_chain_amounts_not_quote() -> None:
    machine, _, _, signer = _machine()
    result = await machine.buy(_TOKEN, _CONFIG)

    assert result.success
    assert result.states == [S.QUOTING, S.BUILDING, S.SIGNING, S.SUBMITTED, S.CONFIRMING, S.SUCCESS]
    assert result.status.is_terminal
    assert result.signature == "5igNaTuRe"
    assert result.token_amount_raw == 118_000_000
    assert result.token_amount == pytest.approx(118.0)
    assert result.sol_amount == pytest.approx(0.1)
    assert result.price == pytest.approx(0.1 / 118.0)
    assert result.fee_sol == pytest.approx(0.000005)
    assert result.quoted_out_raw == 123_456_789
    assert result.realized_slippage_pct == pytest.approx((123_456_789 - 118_000_000) / 123_456_789 * 100)
    assert len(signer.signed) == 1


@pytest.mark.asyncio
async def test_no_route_never_reaches_signer() -> None:
    machine, quotes, _, signer = _machine(_FakeQuotes(quote_errors=[NoRouteError("no route")]))
    result = await machine.buy(_TOKEN, _CONFIG)

    assert result.status == S.NO_ROUTE
    assert result.states == [S.QUOTING, S.NO_ROUTE]
    assert result.status.is_terminal and not S.CONFIRMING.is_terminal
    assert result.error_kind == "NO_ROUTE"
    assert quotes.build_calls == 0
    assert signer.signed == []


@pytest.mark.asyncio
async def test_build_failure_fails_without_signing() -> None:
    quotes = _FakeQuotes()
    quotes.build_error = MalformedResponseError("swap_build_failed")
    machine, _, _, signer = _machine(quotes)
    result = await machine.buy(_TOKEN, _CONFIG)

    assert result.status == S.FAILED
    assert result.states == [S.QUOTING, S.BUILDING, S.FAILED]
    assert result.signature is None
    assert signer.signed == []


@pytest.mark.asyncio
async def test_user_rejection_is_reported_distinctly() -> None:
    machine, _, rpc, _ = _machine(signer=_FakeSigner(error=UserRejectedError("declined")))
    result = await machine.buy(_TOKEN, _CONFIG)

    assert result.status == S.FAILED
    assert result.error_kind == "USER_REJECTED"
    assert result.signature is None
    assert rpc.status_calls == 0


@pytest.mark.asyncio
async def test_disconnected_signer_is_a_prerequisite_failure() -> None:
    machine, quotes, _, _ = _machine(signer=_FakeSigner(connected=False))
    result = await machine.buy(_TOKEN, _CONFIG)

    assert result.status == S.FAILED
    assert result.error_kind == "PREREQUISITE"
    assert quotes.build_calls == 0


@pytest.mark.asyncio
async def test_unknown_decimals_fail_the_buy_before_signing() -> None:
    machine, _, _, signer = _machine(_FakeQuotes(decimals=None))
    result = await machine.buy(_TOKEN, _CONFIG)

    assert result.status == S.FAILED
    assert result.error_kind == "DATA_UNAVAILABLE"
    assert "decimals" in (result.error or "")
    assert signer.signed == []


@pytest.mark.asyncio
async def test_rpc_decimals_are_used_when_aggregator_has_none() -> None:
    rpc = _FakeRpc()
    rpc.mint_decimals = 6
    machine, _, _, _ = _machine(_FakeQuotes(decimals=None), rpc)
    result = await machine.buy(_TOKEN, _CONFIG)
    assert result.success


@pytest.mark.asyncio
async def test_confirmation_timeout_keeps_signature() -> None:
    rpc = _FakeRpc()
    rpc.statuses = [None]
    machine, _, _, _ = _machine(rpc=rpc, confirm_max_attempts=3)
    result = await machine.buy(_TOKEN, _CONFIG)

    assert result.status == S.FAILED
    assert result.error_kind == "TRANSIENT_NETWORK"
    assert result.signature == "5igNaTuRe"
    assert rpc.status_calls == 3


@pytest.mark.asyncio
async def test_on_chain_error_fails_after_submission() -> None:
    rpc = _FakeRpc()
    rpc.statuses = [SignatureStatus("processed"), SignatureStatus("confirmed", err={"InstructionError": [2, "x"]})]
    machine, _, _, _ = _machine(rpc=rpc)
    result = await machine.buy(_TOKEN, _CONFIG)

    assert result.status == S.FAILED
    assert result.states[-2:] == [S.CONFIRMING, S.FAILED]
    assert "on-chain" in (result.error or "")


@pytest.mark.asyncio
async def test_transient_quote_error_is_retried_with_event() -> None:
    events: list[tuple[str, dict[str, Any]]] = []
    quotes = _FakeQuotes(quote_errors=[TransientNetworkError("timeout")])
    machine, _, _, _ = _machine(quotes, on_event=lambda name, data: events.append((name, data)))
    result = await machine.buy(_TOKEN, _CONFIG)

    assert result.success
    assert quotes.quote_calls == 2
    retries = [data for name, data in events if name == "retry"]
    assert retries == [
        {
            "side": "BUY",
            "token": _TOKEN,
            "stage": "quote",
            "attempt": 1,
            "max_retries": 2,
            "error": "timeout",
        }
    ]


@pytest.mark.asyncio
async def test_transient_quote_errors_back_off_exponentially() -> None:
    sleeps: list[float] = []

    async def _recording_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    quotes = _FakeQuotes(quote_errors=[TransientNetworkError("timeout"), TransientNetworkError("timeout")])
    machine = ExecutionStateMachine(
        quotes,
        _FakeRpc(),
        _FakeSigner(),
        sleep=_recording_sleep,
        retry_wait_min_sec=0.5,
        retry_wait_max_sec=4.0,
    )
    result = await machine.buy(_TOKEN, _CONFIG)

    assert result.success
    assert quotes.quote_calls == 3
    assert sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_exhausted_quote_retries_fail_the_buy() -> None:
    quotes = _FakeQuotes(quote_errors=[TransientNetworkError("timeout")] * 3)
    machine, _, _, signer = _machine(quotes)
    result = await machine.buy(_TOKEN, _CONFIG)

    assert result.status == S.FAILED
    assert result.error_kind == "TRANSIENT_NETWORK"
    assert quotes.quote_calls == 3
    assert signer.signed == []


@pytest.mark.asyncio
async def test_unretrievable_confirmed_buy_keeps_signature() -> None:
    rpc = _FakeRpc()
    rpc.transaction = None
    machine, _, _, _ = _machine(rpc=rpc)
    result = await machine.buy(_TOKEN, _CONFIG)

    assert result.status == S.FAILED
    assert result.error_kind == "DATA_UNAVAILABLE"
    assert result.confirmed
    assert result.signature == "5igNaTuRe"


@pytest.mark.asyncio
async def test_fresh_supplied_quote_is_reused() -> None:
    machine, quotes, _, _ = _machine()
    result = await machine.buy(_TOKEN, _CONFIG, quote=_quote())

    assert result.success
    assert quotes.quote_calls == 0


@pytest.mark.asyncio
async def test_buy_without_tokens_is_flagged_corrupt() -> None:
    rpc = _FakeRpc(_tx(pre_sol=1_000_000_000, post_sol=899_995_000))
    machine, _, _, _ = _machine(rpc=rpc)
    result = await machine.buy(_TOKEN, _CONFIG)

    assert result.status == S.FAILED
    assert result.error_kind == "CORRUPTION"
    assert result.integrity_flags == ["buy_with_no_tokens"]
    assert result.signature == "5igNaTuRe"
    assert result.confirmed


@pytest.mark.asyncio
async def test_sell_flags_impossible_roi() -> None:
    sell_tx = _tx(
        pre_sol=1_000_000_000,
        post_sol=1_499_995_000,
        pre_tokens=118_000_000,
        post_tokens=0,
    )
    machine, _, _, _ = _machine(rpc=_FakeRpc(sell_tx))
    result = await machine.sell(_TOKEN, 118_000_000, _CONFIG, token_decimals=6, entry_sol=0.01)

    assert result.success
    assert result.sol_amount == pytest.approx(0.5)
    assert result.token_amount_raw == 118_000_000
    assert result.integrity_flags == ["impossible_roi"]


@pytest.mark.asyncio
async def test_sell_nothing_fails_immediately() -> None:
    machine, quotes, _, _ = _machine()
    result = await machine.sell(_TOKEN, 0, _CONFIG)

    assert result.status == S.FAILED
    assert quotes.quote_calls == 0
