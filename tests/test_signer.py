from __future__ import annotations

import base64
import json

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from sniper_engine.errors import SigningError
from sniper_engine.exec.signer import DisconnectedSigner, KeypairSigner, parse_private_key
from sniper_engine.types import UnsignedTransaction


class _FakeRpc:
    def __init__(self) -> None:
        self.sent: list[str] = []

    async def send_raw_transaction(self, signed_base64: str) -> str:
        self.sent.append(signed_base64)
        return "5igNaTuRe"


def _unsigned_for(keypair: Keypair) -> tuple[UnsignedTransaction, VersionedTransaction]:
    ix = transfer(TransferParams(from_pubkey=keypair.pubkey(), to_pubkey=Pubkey.new_unique(), lamports=1_000))
    message = MessageV0.try_compile(keypair.pubkey(), [ix], [], Hash.default())
    reference = VersionedTransaction(message, [keypair])
    unsigned = UnsignedTransaction(
        serialized=base64.b64encode(bytes(reference)).decode("ascii"),
        fee_payer=str(keypair.pubkey()),
    )
    return unsigned, reference


def test_parse_private_key_formats() -> None:
    keypair = Keypair()
    assert parse_private_key(str(keypair)).pubkey() == keypair.pubkey()
    assert parse_private_key(json.dumps(list(bytes(keypair)))).pubkey() == keypair.pubkey()
    assert parse_private_key(f'"{keypair}"').pubkey() == keypair.pubkey()


def test_parse_private_key_rejects_seed_phrase_and_garbage() -> None:
    with pytest.raises(ValueError, match="seed phrase"):
        parse_private_key(" ".join(["abandon"] * 12))
    with pytest.raises(ValueError):
        parse_private_key("")
    with pytest.raises(ValueError):
        parse_private_key("[1, 2, 3]")


def test_sign_produces_fee_payer_signature() -> None:
    keypair = Keypair()
    unsigned, reference = _unsigned_for(keypair)
    signer = KeypairSigner(keypair, _FakeRpc())  # type: ignore[arg-type]

    signed = VersionedTransaction.from_bytes(signer.sign(unsigned))
    assert signed.signatures[0] == reference.signatures[0]
    assert signed.message == reference.message


def test_sign_refuses_foreign_fee_payer() -> None:
    keypair = Keypair()
    unsigned, _ = _unsigned_for(Keypair())
    signer = KeypairSigner(keypair, _FakeRpc())  # type: ignore[arg-type]
    with pytest.raises(SigningError):
        signer.sign(unsigned)


@pytest.mark.asyncio
async def test_sign_and_send_broadcasts_base64() -> None:
    keypair = Keypair()
    unsigned, reference = _unsigned_for(keypair)
    rpc = _FakeRpc()
    signer = KeypairSigner.from_secret(str(keypair), rpc)  # type: ignore[arg-type]

    assert signer.is_connected
    assert await signer.sign_and_send(unsigned) == "5igNaTuRe"
    assert base64.b64decode(rpc.sent[0]) == bytes(reference)


@pytest.mark.asyncio
async def test_disconnected_signer_cannot_sign() -> None:
    signer = DisconnectedSigner()
    assert signer.public_key is None
    assert not signer.is_connected
    with pytest.raises(SigningError):
        await signer.sign_and_send(UnsignedTransaction(serialized="", fee_payer=""))
