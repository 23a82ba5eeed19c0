"""Solana JSON-RPC client for confirmation, balances and transaction metadata."""

from __future__ import annotations

import itertools
from typing import Any

from sniper_engine.config import Settings
from sniper_engine.data.http import JsonHttpClient
from sniper_engine.errors import DataUnavailableError, MalformedResponseError, SigningError
from sniper_engine.schemas import SignatureStatusPayload
from sniper_engine.types import LAMPORTS_PER_SOL, SignatureStatus


class RpcError(DataUnavailableError):
    """Raised when the node answered with a JSON-RPC error object."""


class SolanaRpcClient:
    """Minimal JSON-RPC surface needed by the executor and orchestrator."""

    def __init__(self, settings: Settings, http: JsonHttpClient) -> None:
        self._settings = settings
        self._http = http
        self._ids = itertools.count(1)

    async def call(self, method: str, params: list[Any]) -> Any:
        """Invoke one RPC method and return its ``result`` field."""
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        result = await self._http.post_json(self._settings.solana_rpc_url, payload)
        if not result.ok:
            raise DataUnavailableError(f"rpc_{method}_failed: {result.error}")
        body = result.data
        if not isinstance(body, dict):
            raise MalformedResponseError(f"rpc_{method}_not_object")
        if body.get("error") is not None:
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise RpcError(f"rpc_{method}_error: {message}")
        return body.get("result")

    async def get_signature_status(self, signature: str) -> SignatureStatus | None:
        """Status of one signature, or None while the node has not seen it."""
        result = await self.call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        if not isinstance(result, dict):
            raise MalformedResponseError("rpc_getSignatureStatuses_no_result")
        values = result.get("value")
        if not isinstance(values, list) or not values or values[0] is None:
            return None
        status = SignatureStatusPayload.parse_payload(values[0], source="rpc_signature_status")
        return SignatureStatus(
            confirmation_status=status.confirmation_status,
            slot=status.slot,
            err=status.err,
        )

    async def get_transaction(self, signature: str) -> dict[str, Any] | None:
        """Parsed transaction including ``meta`` balances, or None if not yet indexed."""
        result = await self.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": "confirmed",
                },
            ],
        )
        if result is None:
            return None
        if not isinstance(result, dict):
            raise MalformedResponseError("rpc_getTransaction_not_object")
        return result

    async def get_mint_decimals(self, mint: str) -> int | None:
        result = await self.call("getTokenSupply", [mint])
        if not isinstance(result, dict):
            return None
        value = result.get("value")
        if not isinstance(value, dict):
            return None
        decimals = value.get("decimals")
        return int(decimals) if isinstance(decimals, int) else None

    async def get_balance(self, owner: str) -> float:
        """Native balance in SOL."""
        result = await self.call("getBalance", [owner, {"commitment": "confirmed"}])
        if not isinstance(result, dict) or not isinstance(result.get("value"), int):
            raise MalformedResponseError("rpc_getBalance_no_value")
        return result["value"] / LAMPORTS_PER_SOL

    async def send_raw_transaction(self, signed_base64: str) -> str:
        """Broadcast a signed transaction and return its signature."""
        try:
            result = await self.call(
                "sendTransaction",
                [
                    signed_base64,
                    {"encoding": "base64", "skipPreflight": False, "maxRetries": 3},
                ],
            )
        except RpcError as exc:
            raise SigningError(f"send_rejected: {exc}") from exc
        if not isinstance(result, str) or not result:
            raise MalformedResponseError("rpc_sendTransaction_no_signature")
        return result
