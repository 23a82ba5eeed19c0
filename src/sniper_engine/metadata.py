"""Token metadata reconciliation for placeholder symbols and names."""

from __future__ import annotations

import re

from sniper_engine.data.dexscreener import DexScreenerClient
from sniper_engine.errors import SniperError
from sniper_engine.utils.logging import get_logger

_PLACEHOLDER_RE = re.compile(r"^(unknown|unknown token|token|\?\?\?|n/a)$", re.IGNORECASE)

logger = get_logger("sniper_engine.metadata")


def is_placeholder(value: str | None) -> bool:
    if not value or not value.strip():
        return True
    return bool(_PLACEHOLDER_RE.match(value.strip()))


async def reconcile_metadata(
    market: DexScreenerClient,
    token_address: str,
    symbol: str,
    name: str,
) -> tuple[str, str]:
    """Replace placeholder symbol/name with pool metadata when available.

    Best effort: any lookup failure keeps the values as given.
    """
    if not is_placeholder(symbol) and not is_placeholder(name):
        return symbol, name
    try:
        snapshot = await market.token_snapshot(token_address)
    except SniperError as exc:
        logger.info("metadata_lookup_failed", token=token_address, error=str(exc))
        return symbol, name

    new_symbol = symbol
    new_name = name
    if is_placeholder(symbol) and not is_placeholder(snapshot.symbol):
        new_symbol = snapshot.symbol or symbol
    if is_placeholder(name) and not is_placeholder(snapshot.name):
        new_name = snapshot.name or name
    if (new_symbol, new_name) != (symbol, name):
        logger.info("metadata_reconciled", token=token_address, symbol=new_symbol, name=new_name)
    return new_symbol, new_name
