"""Discovery feed reader: one JSON candidate record per line."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from sniper_engine.errors import MalformedResponseError
from sniper_engine.schemas import CandidatePayload
from sniper_engine.types import Candidate
from sniper_engine.utils.logging import get_logger

logger = get_logger("sniper_engine.feed")


def candidate_from_payload(payload: Any) -> Candidate:
    """Validate one feed record and convert it to a Candidate."""
    record = CandidatePayload.parse_payload(payload, source="feed")
    return Candidate(
        address=record.address,
        symbol=record.symbol,
        name=record.name,
        liquidity_usd=record.liquidity_usd,
        source=record.source,
        risk_score=record.risk_score,
        can_buy=record.can_buy,
        can_sell=record.can_sell,
        is_tradeable=record.is_tradeable,
        is_fair_launch=record.is_fair_launch,
        price_usd=record.price_usd,
        buyer_position=record.buyer_position,
        deployer_wallet=record.deployer_wallet,
        lp_creator_wallet=record.lp_creator_wallet,
        buyer_wallets=tuple(record.buyer_wallets),
    )


def read_feed(path: Path) -> tuple[list[Candidate], list[str]]:
    """Read candidates from a JSONL file.

    Returns the parsed candidates (first occurrence wins for repeated
    addresses) and a warning per skipped line.
    """
    candidates: list[Candidate] = []
    warnings: list[str] = []
    seen: set[str] = set()

    with path.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                candidate = candidate_from_payload(json.loads(line))
            except json.JSONDecodeError as exc:
                warnings.append(f"line {lineno}: invalid json ({exc.msg})")
                continue
            except MalformedResponseError as exc:
                warnings.append(f"line {lineno}: {exc}")
                continue
            if candidate.address in seen:
                continue
            seen.add(candidate.address)
            candidates.append(candidate)

    if warnings:
        logger.warning("feed_lines_skipped", path=str(path), count=len(warnings))
    logger.info("feed_loaded", path=str(path), candidates=len(candidates))
    return candidates, warnings
