"""
Tests for keypair loading and the paper/RPC signers.
"""
import json
from datetime import datetime, timezone

import pytest
from solders.keypair import Keypair

from solscalp.exceptions import TransactionSubmitError
from solscalp.execution.solana_signer import PaperSigner, SolanaRpcSigner, load_keypair


def test_load_keypair_from_base58():
    keypair = Keypair()
    assert load_keypair(str(keypair)).pubkey() == keypair.pubkey()


def test_load_keypair_from_json_array():
    keypair = Keypair()
    secret = json.dumps(list(bytes(keypair)))

    assert load_keypair(f"  {secret}\n").pubkey() == keypair.pubkey()


def test_rpc_signer_wallet_is_keypair_pubkey():
    keypair = Keypair()
    signer = SolanaRpcSigner(keypair, "https://rpc.example.org")
    assert signer.wallet_address == str(keypair.pubkey())


def test_rpc_signer_rejects_garbage_transaction():
    signer = SolanaRpcSigner(Keypair(), "https://rpc.example.org")

    with pytest.raises(TransactionSubmitError):
        signer.sign("abc")


@pytest.mark.asyncio
async def test_paper_signer_never_sends():
    at = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
    signer = PaperSigner("PaperWallet", clock=lambda: at)

    reference = await signer.sign_and_send("unsigned-tx")

    assert reference == f"PAPER_TX_{int(at.timestamp() * 1000)}"
    assert signer.wallet_address == "PaperWallet"
