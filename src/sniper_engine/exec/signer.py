"""Transaction signers. The executor only depends on the TransactionSigner protocol."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Protocol

from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from sniper_engine.data.solana_rpc import SolanaRpcClient
from sniper_engine.errors import MalformedResponseError, SigningError
from sniper_engine.types import UnsignedTransaction


class TransactionSigner(Protocol):
    """Signs and broadcasts an aggregator-built transaction.

    Implementations raise UserRejectedError when the owner declines, and
    SigningError for any other failure before a signature exists.
    """

    @property
    def public_key(self) -> str | None: ...

    @property
    def is_connected(self) -> bool: ...

    async def sign_and_send(self, transaction: UnsignedTransaction) -> str: ...


def parse_private_key(raw: str) -> Keypair:
    """Accept a base58 secret key or a solana-keygen JSON byte array."""
    s = (raw or "").strip().strip("'").strip('"')
    if not s:
        raise ValueError("empty_private_key")
    if " " in s and len(s.split()) >= 12:
        raise ValueError("seed phrase detected; export the private key instead")

    if s.startswith("[") and s.endswith("]"):
        try:
            arr = json.loads(s)
            key_bytes = bytes(int(x) for x in arr)
        except (ValueError, TypeError) as exc:
            raise ValueError("invalid_private_key_json") from exc
        if len(key_bytes) == 64:
            return Keypair.from_bytes(key_bytes)
        if len(key_bytes) == 32:
            return Keypair.from_seed(key_bytes)
        raise ValueError("private_key_json_wrong_length")

    try:
        return Keypair.from_base58_string(s)
    except ValueError as exc:
        raise ValueError("unsupported_private_key_format") from exc


class KeypairSigner:
    """Unattended signer holding a local keypair; broadcasts through RPC."""

    def __init__(self, keypair: Keypair, rpc: SolanaRpcClient) -> None:
        self._keypair = keypair
        self._rpc = rpc

    @classmethod
    def from_secret(cls, secret: str, rpc: SolanaRpcClient) -> KeypairSigner:
        return cls(parse_private_key(secret), rpc)

    @property
    def public_key(self) -> str | None:
        return str(self._keypair.pubkey())

    @property
    def is_connected(self) -> bool:
        return True

    def sign(self, transaction: UnsignedTransaction) -> bytes:
        if transaction.fee_payer != self.public_key:
            raise SigningError("fee_payer_mismatch")
        try:
            raw = VersionedTransaction.from_bytes(base64.b64decode(transaction.serialized))
        except (binascii.Error, ValueError) as exc:
            raise MalformedResponseError(f"unsigned_transaction_undecodable: {exc}") from exc
        signed = VersionedTransaction(raw.message, [self._keypair])
        return bytes(signed)

    async def sign_and_send(self, transaction: UnsignedTransaction) -> str:
        signed = self.sign(transaction)
        return await self._rpc.send_raw_transaction(base64.b64encode(signed).decode("ascii"))


class DisconnectedSigner:
    """Placeholder for paper mode: never signs, so the executor stops before SIGNING."""

    @property
    def public_key(self) -> str | None:
        return None

    @property
    def is_connected(self) -> bool:
        return False

    async def sign_and_send(self, transaction: UnsignedTransaction) -> str:
        raise SigningError("no wallet connected")
