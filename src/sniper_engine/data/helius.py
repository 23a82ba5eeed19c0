"""Wallet funding graph built from Helius enhanced transaction history."""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from sniper_engine.config import Settings
from sniper_engine.data.http import JsonHttpClient
from sniper_engine.errors import DataUnavailableError, MalformedResponseError
from sniper_engine.types import LAMPORTS_PER_SOL
from sniper_engine.utils.logging import get_logger

KNOWN_CEX_WALLETS = frozenset(
    {
        "5tzFkiKscjHogoZG4S7cjC3v8wSoQ8r4ZX2xNB1VrYCZ",  # Binance
        "9WzDXwBbmPELPRCEo3F7TiMABZEbExnEXGtjMZSW1mDY",  # Binance
        "H8sMJSCQxfKiFTCfDR3DUg2cw3vm73U3KLGAAcvPYMES",  # Coinbase
        "5VCwKtCXgCJ6kit5FybXjvriW3xELsFDhYrPSqtJNmcD",  # OKX
        "FWznbcNXWQuHTawe9RxvQ2LdCENssh12dsznf4RiouN5",  # Kraken
        "AC5RDfQFmDS1deWZos921JfqscXdByf4BKk5r7YdeLXM",  # Bybit
    }
)

_CACHE_TTL_SEC = 60.0
_FRESH_WALLET_HOURS = 24.0
_HISTORY_LIMIT = 5
_MAX_WALLETS = 11


@dataclass(frozen=True, slots=True)
class WalletFunding:
    """Funding lineage of one wallet, two hops deep."""

    wallet: str
    funder: str | None
    funder_of_funder: str | None
    is_fresh: bool
    is_cex_funded: bool
    age_hours: float
    initial_funding_sol: float


@dataclass(frozen=True, slots=True)
class ClusterAnalysis:
    wallets: tuple[WalletFunding, ...]
    shared_origin_pct: float
    shared_origin_wallet: str | None
    cluster_size: int
    fresh_count: int = field(default=0)

    @property
    def fresh_pct(self) -> float:
        if not self.wallets:
            return 0.0
        return self.fresh_count / len(self.wallets) * 100.0


class HeliusWalletGraph:
    """Traces wallet -> funder -> funder's funder and looks for shared origins."""

    def __init__(
        self,
        settings: Settings,
        http: JsonHttpClient,
        *,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._http = http
        self._clock = clock
        self._wall_clock = wall_clock
        self._cache: dict[str, tuple[float, WalletFunding]] = {}
        self._logger = get_logger("sniper_engine.data.helius")

    async def analyze_cluster(
        self,
        wallets: list[str],
        deployer_wallet: str | None = None,
    ) -> ClusterAnalysis:
        """Share of wallets whose lineage meets at one non-exchange ancestor."""
        ordered = list(dict.fromkeys(w for w in wallets if w))
        if deployer_wallet:
            ordered = [deployer_wallet, *[w for w in ordered if w != deployer_wallet]]
        ordered = ordered[:_MAX_WALLETS]

        infos = await asyncio.gather(*(self._trace_depth2(w) for w in ordered))

        origins: Counter[str] = Counter()
        for info in infos:
            ancestors = {a for a in (info.funder, info.funder_of_funder) if a}
            for ancestor in ancestors - KNOWN_CEX_WALLETS:
                origins[ancestor] += 1

        shared_wallet, shared_count = (None, 0)
        if origins:
            shared_wallet, shared_count = origins.most_common(1)[0]
        shared_pct = shared_count / len(ordered) * 100.0 if ordered else 0.0
        analysis = ClusterAnalysis(
            wallets=tuple(infos),
            shared_origin_pct=shared_pct,
            shared_origin_wallet=shared_wallet,
            cluster_size=shared_count,
            fresh_count=sum(1 for i in infos if i.is_fresh),
        )
        self._logger.info(
            "wallet_cluster_analysis",
            wallets=len(ordered),
            shared_origin_pct=round(shared_pct, 1),
            fresh=analysis.fresh_count,
        )
        return analysis

    async def _trace_depth2(self, wallet: str) -> WalletFunding:
        info = await self._funding(wallet)
        if info.funder and info.funder not in KNOWN_CEX_WALLETS:
            parent = await self._funding(info.funder)
            info = replace(info, funder_of_funder=parent.funder)
        return info

    async def _funding(self, wallet: str) -> WalletFunding:
        now = self._clock()
        cached = self._cache.get(wallet)
        if cached is not None and cached[0] > now:
            return cached[1]

        transactions = await self._transactions(wallet)
        info = _funding_from_history(wallet, transactions, self._wall_clock())
        self._prune_cache(self._clock())
        self._cache[wallet] = (now + _CACHE_TTL_SEC, info)
        return info

    def _prune_cache(self, now: float) -> None:
        expired = [w for w, (expires_at, _) in self._cache.items() if expires_at <= now]
        for wallet in expired:
            del self._cache[wallet]

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    async def _transactions(self, wallet: str) -> list[dict[str, Any]]:
        if not self._settings.helius_api_key:
            raise DataUnavailableError("helius_api_key_missing")
        url = f"{self._settings.helius_url.rstrip('/')}/v0/addresses/{wallet}/transactions"
        result = await self._http.get_json(
            url,
            params={"api-key": self._settings.helius_api_key, "limit": _HISTORY_LIMIT},
        )
        if not result.ok:
            raise DataUnavailableError(f"helius_unavailable: {result.error}")
        if not isinstance(result.data, list):
            raise MalformedResponseError("helius_transactions_not_list")
        return [tx for tx in result.data if isinstance(tx, dict)]


def _funding_from_history(
    wallet: str,
    transactions: list[dict[str, Any]],
    now_epoch: float,
) -> WalletFunding:
    if not transactions:
        return WalletFunding(
            wallet=wallet,
            funder=None,
            funder_of_funder=None,
            is_fresh=True,
            is_cex_funded=False,
            age_hours=0.0,
            initial_funding_sol=0.0,
        )

    ordered = sorted(transactions, key=lambda tx: float(tx.get("timestamp") or 0))
    first_ts = float(ordered[0].get("timestamp") or 0)
    age_hours = max(0.0, (now_epoch - first_ts) / 3600.0)

    funder: str | None = None
    initial_sol = 0.0
    for tx in ordered:
        for transfer in tx.get("nativeTransfers") or []:
            if transfer.get("toUserAccount") == wallet and (transfer.get("amount") or 0) > 0:
                funder = transfer.get("fromUserAccount")
                initial_sol = float(transfer["amount"]) / LAMPORTS_PER_SOL
                break
        if funder:
            break

    return WalletFunding(
        wallet=wallet,
        funder=funder,
        funder_of_funder=None,
        is_fresh=age_hours < _FRESH_WALLET_HOURS,
        is_cex_funded=funder in KNOWN_CEX_WALLETS if funder else False,
        age_hours=age_hours,
        initial_funding_sol=initial_sol,
    )
