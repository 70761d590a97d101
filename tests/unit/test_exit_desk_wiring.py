"""
Tests for exit desk assembly and shutdown.
"""
import asyncio

import pytest
from solders.keypair import Keypair

from solscalp import main
from solscalp.config.config import Config
from solscalp.execution.solana_signer import PaperSigner, SolanaRpcSigner
from solscalp.main import PAPER_FALLBACK_WALLET, build_desk, build_loops, build_signer, run_desk


def _config(tmp_path, **execution):
    return Config(
        system={"dry_run": execution.pop("dry_run", True), "data_dir": str(tmp_path / "data")},
        execution=execution,
    )


def test_paper_signer_falls_back_to_placeholder_wallet(tmp_path):
    signer = build_signer(_config(tmp_path))

    assert isinstance(signer, PaperSigner)
    assert signer.wallet_address == PAPER_FALLBACK_WALLET


def test_paper_signer_uses_configured_wallet(tmp_path):
    keypair = Keypair()

    assert build_signer(_config(tmp_path, wallet_address="Configured")).wallet_address == "Configured"
    assert build_signer(_config(tmp_path, wallet_secret=str(keypair))).wallet_address == str(keypair.pubkey())


def test_live_signer_requires_secret(tmp_path):
    with pytest.raises(ValueError):
        build_signer(_config(tmp_path, dry_run=False))

    keypair = Keypair()
    signer = build_signer(_config(tmp_path, dry_run=False, wallet_secret=str(keypair)))
    assert isinstance(signer, SolanaRpcSigner)


def test_loops_use_configured_intervals(tmp_path):
    config = _config(tmp_path)
    config.exits.monitor_interval_seconds = 45
    config.exits.fast_stop_loss_interval_seconds = 5
    desk = build_desk(config)

    loops = {loop.name: loop for loop in build_loops(desk, asyncio.Event())}

    assert set(loops) == {"market_guard", "exit_monitor", "fast_stop_loss"}
    assert loops["exit_monitor"].interval_seconds == 45
    assert loops["fast_stop_loss"].interval_seconds == 5


@pytest.mark.asyncio
async def test_run_desk_returns_once_stopped(tmp_path):
    desk = build_desk(_config(tmp_path))
    stop_event = asyncio.Event()
    stop_event.set()

    await asyncio.wait_for(run_desk(desk, stop_event), timeout=5)

    assert (tmp_path / "data").is_dir()


class _HungLoop:
    """A loop whose cycle never returns until cancelled."""

    def __init__(self, name):
        self.name = name
        self.cleaned_up = False

    async def run(self):
        try:
            await asyncio.Event().wait()
        finally:
            self.cleaned_up = True


@pytest.mark.asyncio
async def test_run_desk_cancels_loops_after_shutdown_timeout(tmp_path, monkeypatch):
    hung = [_HungLoop("exit_monitor"), _HungLoop("fast_stop_loss")]
    monkeypatch.setattr(main, "build_loops", lambda desk, stop_event: hung)
    monkeypatch.setattr(main, "SHUTDOWN_TIMEOUT_SECONDS", 0.05)
    desk = build_desk(_config(tmp_path))
    stop_event = asyncio.Event()
    stop_event.set()

    await asyncio.wait_for(run_desk(desk, stop_event), timeout=5)

    assert all(loop.cleaned_up for loop in hung)
    assert not [t for t in asyncio.all_tasks() if t.get_name() in {"exit_monitor", "fast_stop_loss"}]

