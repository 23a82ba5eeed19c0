from __future__ import annotations

import json
from pathlib import Path

import pytest

from sniper_engine.config import PRIORITY_FEE_PRESETS, RunMode, Settings
from sniper_engine.errors import MalformedResponseError, PositionStoreError
from sniper_engine.feed import candidate_from_payload, read_feed
from sniper_engine.journal.positions import PositionStore
from sniper_engine.journal.store import JournalStore
from sniper_engine.metadata import is_placeholder
from sniper_engine.types import Position, PositionStatus

_TOKEN = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
_OTHER = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


def _position(position_id: str = "p1", user_id: str = "alice", token: str = _TOKEN) -> Position:
    return Position(
        id=position_id,
        user_id=user_id,
        token_address=token,
        token_symbol="MEME",
        token_name="Meme Coin",
        entry_price=0.0008,
        token_amount=118.0,
        token_amount_raw=118_000_000,
        token_decimals=6,
        sol_spent=0.1,
        entry_tx="sig",
        take_profit_pct=100.0,
        stop_loss_pct=30.0,
        entry_liquidity_usd=25_000.0,
        opened_at="2026-01-01T00:00:00+00:00",
    )


def test_journal_records_carry_user_and_filter_by_type(tmp_path: Path) -> None:
    journal = JournalStore(tmp_path, user_id="alice")
    journal.append("feed_start", {"feed": "a.jsonl"})
    journal.append("execution", {"token": _TOKEN, "status": "SUCCESS"})
    journal.append("feed_end", {"status": "executed"})

    rows = journal.load_recent(10)
    assert [r["event_type"] for r in rows] == ["feed_start", "execution", "feed_end"]
    assert all(r["user_id"] == "alice" for r in rows)
    assert journal.load_recent(10, event_type="execution")[0]["payload"]["token"] == _TOKEN
    assert journal.load_recent(0) == []


def test_journal_rejects_unknown_event_type(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        JournalStore(tmp_path).append("cycle_start", {})


def test_position_lifecycle_round_trips_through_disk(tmp_path: Path) -> None:
    store = PositionStore(tmp_path, "alice")
    store.create(_position())
    assert store.get("p1").status == PositionStatus.PENDING  # type: ignore[union-attr]
    store.mark_open("p1")
    store.close("p1", exit_price=0.0009, exit_reason="take_profit", exit_tx="exit", integrity_flags=["x"])

    reloaded = PositionStore(tmp_path, "alice").get("p1")
    assert reloaded is not None
    assert reloaded.status == PositionStatus.CLOSED
    assert reloaded.exit_reason == "take_profit"
    assert reloaded.integrity_flags == ["x"]
    assert reloaded.closed_at is not None


def test_position_store_is_scoped_per_user(tmp_path: Path) -> None:
    alice = PositionStore(tmp_path, "alice")
    alice.create(_position())

    assert PositionStore(tmp_path, "bob").list() == []
    with pytest.raises(PositionStoreError, match="user_mismatch"):
        alice.create(_position("p2", user_id="bob"))


def test_position_store_rejects_invalid_transitions(tmp_path: Path) -> None:
    store = PositionStore(tmp_path, "alice")
    store.create(_position())
    with pytest.raises(PositionStoreError):
        store.create(_position())
    store.mark_open("p1")
    with pytest.raises(PositionStoreError):
        store.mark_open("p1")
    with pytest.raises(PositionStoreError):
        store.close("missing", exit_price=None, exit_reason="x", exit_tx=None)


def test_position_store_reconciliation_and_metadata(tmp_path: Path) -> None:
    store = PositionStore(tmp_path, "alice")
    store.create(_position())
    store.flag_reconciliation("p1", "exit_unconfirmed")
    store.update_metadata("p1", symbol="REAL", name="Real Token")

    position = store.get("p1")
    assert position is not None
    assert position.needs_reconciliation
    assert position.integrity_flags == ["exit_unconfirmed"]
    assert position.token_symbol == "REAL"


def test_candidate_payload_uses_feed_field_names() -> None:
    candidate = candidate_from_payload(
        {
            "address": _TOKEN,
            "symbol": "MEME",
            "name": "Meme Coin",
            "liquidityUsd": 25000,
            "source": "Raydium",
            "canSell": False,
            "deployerWallet": "dep",
            "lpCreatorWallet": "lp",
            "buyerWallets": ["b1", "b2"],
        }
    )
    assert candidate.liquidity_usd == 25000.0
    assert not candidate.can_sell
    assert candidate.buyer_wallets == ("b1", "b2")
    assert not candidate.fair_launch
    assert candidate_from_payload({"address": _TOKEN, "source": "PumpSwap"}).fair_launch


def test_candidate_payload_rejects_bad_address() -> None:
    with pytest.raises(MalformedResponseError):
        candidate_from_payload({"address": "short"})


def test_read_feed_skips_bad_lines_and_duplicates(tmp_path: Path) -> None:
    feed = tmp_path / "feed.jsonl"
    feed.write_text(
        "\n".join(
            [
                json.dumps({"address": _TOKEN, "symbol": "MEME", "liquidityUsd": 25000}),
                "# comment",
                "{not json",
                json.dumps({"address": "short"}),
                json.dumps({"address": _TOKEN, "symbol": "DUP"}),
                "",
                json.dumps({"address": _OTHER, "symbol": "BONK", "liquidityUsd": 90000}),
            ]
        ),
        encoding="utf-8",
    )
    candidates, warnings = read_feed(feed)

    assert [c.symbol for c in candidates] == ["MEME", "BONK"]
    assert len(warnings) == 2
    assert warnings[0].startswith("line 3:")


def test_placeholder_detection() -> None:
    assert is_placeholder("UNKNOWN")
    assert is_placeholder(" ??? ")
    assert is_placeholder("")
    assert is_placeholder(None)
    assert not is_placeholder("BONK")


def test_settings_defaults_and_execution_config(tmp_path: Path) -> None:
    settings = Settings(journal_dir=tmp_path, slippage_pct=15.0, priority="fast")
    config = settings.execution_config()

    assert settings.mode == RunMode.PAPER
    assert settings.risk_penalty_threshold == 65
    assert config.slippage == pytest.approx(0.15)
    assert config.slippage_bps == 1500
    assert config.priority_fee_lamports == PRIORITY_FEE_PRESETS["fast"]


def test_live_settings_report_missing_keys(tmp_path: Path) -> None:
    settings = Settings(journal_dir=tmp_path, mode="live", wallet_private_key="", helius_api_key="")
    assert settings.validate_for_live() == ["WALLET_PRIVATE_KEY", "HELIUS_API_KEY"]
