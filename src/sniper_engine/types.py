"""Shared domain types for the launch sniper pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

SOL_MINT = "So11111111111111111111111111111111111111112"
SOL_DECIMALS = 9
LAMPORTS_PER_SOL = 1_000_000_000

FAIR_LAUNCH_SOURCES = frozenset({"pump.fun", "pumpfun", "pumpswap"})

TradeSide = Literal["BUY", "SELL"]


@dataclass(frozen=True, slots=True)
class Candidate:
    """A token proposed for entry by the discovery feed."""

    address: str
    symbol: str
    name: str
    liquidity_usd: float
    source: str = ""
    risk_score: float | None = None
    can_buy: bool = True
    can_sell: bool = True
    is_tradeable: bool = True
    is_fair_launch: bool = False
    price_usd: float | None = None
    buyer_position: int | None = None
    deployer_wallet: str | None = None
    lp_creator_wallet: str | None = None
    buyer_wallets: tuple[str, ...] = ()

    @property
    def fair_launch(self) -> bool:
        """Bonding-curve venues have no separate pool creator funding pattern."""
        return self.is_fair_launch or self.source.strip().lower() in FAIR_LAUNCH_SOURCES


@dataclass(frozen=True, slots=True)
class RiskContext:
    """Trade-size dependent inputs shared by all risk checks."""

    buy_amount_sol: float
    sol_price_usd: float
    current_price_impact_pct: float | None = None


@dataclass(frozen=True, slots=True)
class RiskCheckResult:
    """Output of one risk heuristic."""

    rule: str
    passed: bool
    reason: str
    penalty: int = 0
    hard_block: bool = False
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AggregateDecision:
    """Admission decision derived from a set of risk check results."""

    admitted: bool
    total_penalty: int
    threshold: int
    results: tuple[RiskCheckResult, ...]
    hard_blocked_by: tuple[str, ...] = ()

    @property
    def reasons(self) -> list[str]:
        """Reasons of the checks that failed or contributed a penalty."""
        return [r.reason for r in self.results if r.hard_block or not r.passed or r.penalty > 0]


@dataclass(frozen=True, slots=True)
class ExecutionConfig:
    """Caller-supplied trade parameters, fixed for one execution attempt."""

    buy_amount_sol: float
    slippage: float
    priority_fee_lamports: int
    max_retries: int
    take_profit_pct: float
    stop_loss_pct: float

    @property
    def slippage_bps(self) -> int:
        return int(round(self.slippage * 10_000))


@dataclass(frozen=True, slots=True)
class Quote:
    """Price/route estimate from the swap aggregator."""

    input_mint: str
    output_mint: str
    in_amount_raw: int
    out_amount_raw: int
    price_impact_pct: float
    slippage_bps: int
    route: str
    raw: dict[str, Any] = field(repr=False, compare=False)
    fetched_at: float = field(default_factory=time.monotonic)

    def is_fresh(self, ttl_sec: float, now: float | None = None) -> bool:
        current = time.monotonic() if now is None else now
        return current - self.fetched_at <= ttl_sec


@dataclass(frozen=True, slots=True)
class UnsignedTransaction:
    """Serialized transaction returned by the aggregator build endpoint."""

    serialized: str
    fee_payer: str
    last_valid_block_height: int | None = None


@dataclass(frozen=True, slots=True)
class SignatureStatus:
    """Confirmation status of one submitted signature."""

    confirmation_status: str | None
    slot: int | None = None
    err: Any = None

    @property
    def is_final(self) -> bool:
        return self.confirmation_status in ("confirmed", "finalized")


@dataclass(frozen=True, slots=True)
class PairSnapshot:
    """Current pool liquidity/price and metadata for one token."""

    token_address: str
    liquidity_usd: float | None
    price_usd: float | None
    price_native: float | None
    symbol: str | None
    name: str | None
    pair_address: str | None = None


class ExecutionState(str, Enum):
    """States of the swap execution state machine."""

    QUOTING = "QUOTING"
    BUILDING = "BUILDING"
    SIGNING = "SIGNING"
    SUBMITTED = "SUBMITTED"
    CONFIRMING = "CONFIRMING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    NO_ROUTE = "NO_ROUTE"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionState.SUCCESS, ExecutionState.FAILED, ExecutionState.NO_ROUTE)


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of one pass through the execution state machine."""

    side: TradeSide
    token_address: str
    status: ExecutionState
    states: list[ExecutionState] = field(default_factory=list)
    signature: str | None = None
    price: float | None = None
    token_amount: float | None = None
    token_amount_raw: int | None = None
    token_decimals: int | None = None
    sol_amount: float | None = None
    fee_sol: float | None = None
    quoted_out_raw: int | None = None
    realized_slippage_pct: float | None = None
    price_impact_pct: float | None = None
    route: str | None = None
    error: str | None = None
    error_kind: str | None = None
    integrity_flags: list[str] = field(default_factory=list)
    # Signature final on-chain, even when the fill could not be derived.
    confirmed: bool = False

    @property
    def success(self) -> bool:
        return self.status == ExecutionState.SUCCESS


class PositionStatus(str, Enum):
    """Lifecycle of a persisted position."""

    PENDING = "pending"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(slots=True)
class Position:
    """Durable record of a completed entry."""

    id: str
    user_id: str
    token_address: str
    token_symbol: str
    token_name: str
    entry_price: float
    token_amount: float
    token_amount_raw: int
    token_decimals: int
    sol_spent: float
    entry_tx: str
    take_profit_pct: float
    stop_loss_pct: float
    entry_liquidity_usd: float
    opened_at: str
    status: PositionStatus = PositionStatus.PENDING
    exit_price: float | None = None
    exit_reason: str | None = None
    exit_tx: str | None = None
    closed_at: str | None = None
    needs_reconciliation: bool = False
    integrity_flags: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """Scheduled post-entry re-validation point."""

    label: str
    offset_sec: float
    max_liquidity_drop_pct: float
    max_price_impact_pct: float


@dataclass(frozen=True, slots=True)
class CheckpointResult:
    """Outcome of one post-entry checkpoint."""

    label: str
    seconds_after_buy: float
    sell_route_exists: bool
    price_impact_pct: float | None
    current_liquidity_usd: float | None
    liquidity_drop_pct: float
    passed: bool
    reason: str


@dataclass(slots=True)
class MonitorSession:
    """Runtime state of one post-entry supervision window."""

    token_address: str
    token_symbol: str
    position_id: str | None
    entry_liquidity_usd: float
    token_amount_raw: int
    buy_timestamp: float
    checkpoints: list[CheckpointResult] = field(default_factory=list)
    aborted: bool = False
    exit_triggered: bool = False
    completed: bool = False


@dataclass(slots=True)
class TradeOutcome:
    """What the orchestrator reports back for one execution attempt."""

    success: bool
    token_address: str
    position_id: str | None = None
    signature: str | None = None
    entry_price: float | None = None
    token_amount: float | None = None
    sol_spent: float | None = None
    error: str | None = None
    error_kind: str | None = None
    bookkeeping_degraded: bool = False


NoticeKind = Literal[
    "rejected",
    "trade_executed",
    "trade_failed",
    "retrying",
    "emergency_exit",
    "exit_executed",
    "prerequisites_failed",
]


@dataclass(frozen=True, slots=True)
class Notice:
    """User-facing notification emitted by the orchestrator."""

    kind: NoticeKind
    title: str
    message: str
    token_address: str | None = None


@dataclass(slots=True)
class FeedRunResult:
    """Outcome of processing one discovery feed batch."""

    status: str
    admitted: list[str] = field(default_factory=list)
    rejected: list[dict[str, object]] = field(default_factory=list)
    outcomes: list[dict[str, object]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0
