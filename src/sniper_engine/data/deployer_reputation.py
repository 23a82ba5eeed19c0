"""Deployer history lookups against the reputation service."""

from __future__ import annotations

from sniper_engine.config import Settings
from sniper_engine.data.http import JsonHttpClient
from sniper_engine.errors import DataUnavailableError
from sniper_engine.schemas import DeployerProfilePayload


class DeployerReputationClient:
    """Fetches the behavioural profile recorded for a deployer wallet."""

    def __init__(self, settings: Settings, http: JsonHttpClient) -> None:
        self._settings = settings
        self._http = http

    async def profile(self, wallet: str) -> DeployerProfilePayload | None:
        """Profile for ``wallet``; None when the service has no history for it."""
        base = self._settings.deployer_reputation_url
        if not base:
            raise DataUnavailableError("deployer_reputation_url_missing")
        result = await self._http.get_json(f"{base.rstrip('/')}/{wallet}")
        if result.status == 404:
            return None
        if not result.ok:
            raise DataUnavailableError(f"deployer_reputation_unavailable: {result.error}")
        if result.data in ({}, None):
            return None
        return DeployerProfilePayload.parse_payload(result.data, source="deployer_reputation")
