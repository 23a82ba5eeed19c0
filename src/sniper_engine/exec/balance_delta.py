"""Derive executed amounts from a confirmed transaction's balance changes."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sniper_engine.errors import CorruptionError, MalformedResponseError
from sniper_engine.types import LAMPORTS_PER_SOL

IMPOSSIBLE_ROI_PCT = 1000.0


@dataclass(frozen=True, slots=True)
class BalanceDelta:
    """Wallet-level change caused by one transaction.

    ``sol_delta_lamports`` excludes the network fee, so it is the amount
    that moved in the swap itself (negative when SOL left the wallet).
    """

    sol_delta_lamports: int
    fee_lamports: int
    token_delta_raw: int
    token_decimals: int | None

    @property
    def fee_sol(self) -> float:
        return self.fee_lamports / LAMPORTS_PER_SOL


@dataclass(frozen=True, slots=True)
class Fill:
    sol_amount: float
    token_amount: float
    token_amount_raw: int
    token_decimals: int
    price_sol: float


def wallet_index(account_keys: list[Any], wallet: str) -> int:
    """Position of ``wallet`` in a parsed or raw account key list, or -1."""
    for i, key in enumerate(account_keys):
        if isinstance(key, dict):
            pubkey = key.get("pubkey")
        else:
            pubkey = key
        if str(pubkey) == wallet:
            return i
    return -1


def extract_balance_delta(transaction: dict[str, Any], wallet: str, mint: str) -> BalanceDelta:
    meta = transaction.get("meta")
    if not isinstance(meta, dict):
        raise MalformedResponseError("transaction_meta_missing")
    try:
        account_keys = transaction["transaction"]["message"]["accountKeys"]
        pre_balances = meta["preBalances"]
        post_balances = meta["postBalances"]
    except (KeyError, TypeError) as exc:
        raise MalformedResponseError(f"transaction_shape: missing {exc}") from exc

    idx = wallet_index(account_keys, wallet)
    if idx < 0 or idx >= len(pre_balances) or idx >= len(post_balances):
        raise MalformedResponseError("wallet_not_in_transaction")

    # Only the fee payer (index 0) is charged the network fee.
    fee = int(meta.get("fee") or 0) if idx == 0 else 0
    sol_delta = int(post_balances[idx]) - int(pre_balances[idx]) + fee

    pre_raw, decimals = _token_total(meta.get("preTokenBalances"), wallet, mint)
    post_raw, post_decimals = _token_total(meta.get("postTokenBalances"), wallet, mint)
    return BalanceDelta(
        sol_delta_lamports=sol_delta,
        fee_lamports=fee,
        token_delta_raw=post_raw - pre_raw,
        token_decimals=post_decimals if post_decimals is not None else decimals,
    )


def _token_total(entries: Any, wallet: str, mint: str) -> tuple[int, int | None]:
    total = 0
    decimals: int | None = None
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        if entry.get("owner") != wallet or entry.get("mint") != mint:
            continue
        amount = entry.get("uiTokenAmount") or {}
        total += int(amount.get("amount") or 0)
        if isinstance(amount.get("decimals"), int):
            decimals = amount["decimals"]
    return total, decimals


def buy_fill(delta: BalanceDelta, decimals: int) -> Fill:
    """Entry fill for a SOL -> token swap."""
    sol_spent = -delta.sol_delta_lamports
    if sol_spent <= 0:
        raise CorruptionError("buy_with_no_spend")
    if delta.token_delta_raw <= 0:
        raise CorruptionError("buy_with_no_tokens")
    return _fill(sol_spent, delta.token_delta_raw, decimals)


def sell_fill(delta: BalanceDelta, decimals: int) -> Fill:
    """Exit fill for a token -> SOL swap."""
    sol_received = delta.sol_delta_lamports
    if sol_received <= 0:
        raise CorruptionError("sell_with_no_receive")
    tokens_sold = -delta.token_delta_raw
    if tokens_sold <= 0:
        raise CorruptionError("sell_with_no_tokens")
    return _fill(sol_received, tokens_sold, decimals)


def _fill(lamports: int, token_raw: int, decimals: int) -> Fill:
    sol = Decimal(lamports) / LAMPORTS_PER_SOL
    tokens = Decimal(token_raw) / (Decimal(10) ** decimals)
    return Fill(
        sol_amount=float(sol),
        token_amount=float(tokens),
        token_amount_raw=token_raw,
        token_decimals=decimals,
        price_sol=float(sol / tokens),
    )


def realized_roi_pct(entry_sol: float, exit_sol: float) -> float | None:
    if entry_sol <= 0:
        return None
    return (exit_sol - entry_sol) / entry_sol * 100.0


def to_raw_amount(amount: float, decimals: int) -> int:
    """Convert a human amount to base units without float rounding drift."""
    return int(Decimal(str(amount)) * (Decimal(10) ** decimals))
