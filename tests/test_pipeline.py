from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from sniper_engine.config import Settings
from sniper_engine.data.http import JsonHttpClient
from sniper_engine.pipeline import Engine, build_engine, run_feed
from sniper_engine.types import SOL_MINT

_TOKEN = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
_OTHER = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/quote"):
        return httpx.Response(
            200,
            json={
                "inputMint": SOL_MINT,
                "outputMint": request.url.params["outputMint"],
                "inAmount": request.url.params["amount"],
                "outAmount": "118000000",
                "priceImpactPct": "0.0125",
                "slippageBps": int(request.url.params["slippageBps"]),
                "routePlan": [{"swapInfo": {"label": "Raydium"}, "percent": 100}],
            },
        )
    return httpx.Response(200, json={"pairs": []})


def _engine(tmp_path: Path) -> Engine:
    settings = Settings(
        journal_dir=tmp_path / "journal",
        http_retry_wait_min_sec=0,
        http_retry_wait_max_sec=0,
    )
    http = JsonHttpClient(settings, httpx.AsyncClient(transport=httpx.MockTransport(_handler)))
    return build_engine(settings, http=http)


def _write_feed(tmp_path: Path, rows: list[dict[str, object]]) -> Path:
    feed = tmp_path / "feed.jsonl"
    feed.write_text("\n".join(json.dumps(r) for r in rows), encoding="utf-8")
    return feed


@pytest.mark.asyncio
async def test_paper_run_admits_and_rejects_without_executing(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    feed = _write_feed(
        tmp_path,
        [
            {"address": _TOKEN, "symbol": "MEME", "liquidityUsd": 20000, "source": "pump.fun"},
            {"address": _OTHER, "symbol": "TRAP", "liquidityUsd": 20000, "source": "pump.fun", "canSell": False},
        ],
    )

    result = await run_feed(engine.settings, feed, dry_run=False, engine=engine)
    await engine.aclose()

    assert not engine.can_execute
    assert result.status == "admitted_dry_run"
    assert result.admitted == [_TOKEN]
    assert result.outcomes[0]["action"] == "would_buy"
    assert result.outcomes[0]["price_impact_pct"] == pytest.approx(1.25)
    rejected = result.rejected[0]
    assert rejected["token"] == _OTHER
    assert rejected["stage"] == "risk"
    assert rejected["hard_blocked_by"] == ["TRADABILITY"]
    assert engine.orchestrator.queue_length == 0
    assert engine.orchestrator.attempted_count == 0

    events = [r["event_type"] for r in engine.journal.load_recent(20)]
    assert events[0] == "feed_start"
    assert events[-1] == "feed_end"
    assert events.count("risk_decision") == 2


@pytest.mark.asyncio
async def test_all_rejected_status(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    feed = _write_feed(
        tmp_path,
        [{"address": _TOKEN, "symbol": "MEME", "liquidityUsd": 20000, "source": "pump.fun", "isTradeable": False}],
    )

    result = await run_feed(engine.settings, feed, dry_run=True, engine=engine)
    await engine.aclose()

    assert result.status == "all_rejected"
    assert result.admitted == []
    assert len(result.rejected) == 1


@pytest.mark.asyncio
async def test_feed_without_candidates(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    feed = _write_feed(tmp_path, [{"address": "short"}])

    result = await run_feed(engine.settings, feed, dry_run=True, engine=engine)
    await engine.aclose()

    assert result.status == "no_candidates"
    assert len(result.warnings) == 1
    assert engine.journal.load_recent(1, event_type="feed_end")[0]["payload"]["status"] == "no_candidates"
