"""
Exit desk wiring and the long-running service entrypoint.

Three IntervalLoops share one event loop and one stop event:
    market_guard     polls the guard (which rate-limits itself to its interval)
    exit_monitor     slow full rule evaluation
    fast_stop_loss   batched-price stop-loss catch
"""
import asyncio
import signal
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Callable, List, Optional

from solscalp.config.config import Config
from solscalp.data.coingecko_client import CoinGeckoClient
from solscalp.data.dexscreener_client import DexScreenerClient
from solscalp.data.jupiter_price_client import JupiterPriceClient
from solscalp.domain.models import utc_now
from solscalp.domain.protocols import TransactionSigner
from solscalp.execution.ledger import PositionLedger
from solscalp.execution.raydium_client import RaydiumSwapClient
from solscalp.execution.sell_executor import SellExecutor
from solscalp.execution.solana_signer import PaperSigner, SolanaRpcSigner, load_keypair
from solscalp.execution.submitter import TransactionSubmitter
from solscalp.live.exit_monitor import ExitMonitor
from solscalp.live.exit_rules import ExitSettings
from solscalp.live.fast_stop_loss import FastStopLossMonitor
from solscalp.monitoring.alerting import WebhookNotifier
from solscalp.monitoring.logger import get_logger
from solscalp.risk.cooldown import CooldownRegister
from solscalp.risk.market_guard import MarketGuard
from solscalp.runtime.scheduler import IntervalLoop
from solscalp.storage.json_store import JsonDocumentStore

logger = get_logger("Main")

# The guard decides for itself whether a check is due
GUARD_POLL_SECONDS = 30.0
SHUTDOWN_TIMEOUT_SECONDS = 120.0

# Any valid pubkey works for paper quotes when no wallet is configured
PAPER_FALLBACK_WALLET = "11111111111111111111111111111111"


@dataclass
class ExitDesk:
    """All owned state objects and loops, built once per process."""
    config: Config
    ledger: PositionLedger
    cooldowns: CooldownRegister
    guard: MarketGuard
    executor: SellExecutor
    exit_monitor: ExitMonitor
    fast_monitor: FastStopLossMonitor


def build_state(config: Config, clock: Callable[[], datetime] = utc_now, notifier=None):
    """Ledger and cooldown register from their documents under data_dir."""
    data_dir = Path(config.system.data_dir)
    ledger = PositionLedger(
        JsonDocumentStore(data_dir / "trades.json"),
        JsonDocumentStore(data_dir / "state.json"),
        clock=clock,
        notifier=notifier,
    )
    cooldowns = CooldownRegister(
        JsonDocumentStore(data_dir / "cooldowns.json"),
        token_cooldown=timedelta(minutes=config.cooldowns.token_cooldown_minutes),
        consecutive_window=timedelta(minutes=config.cooldowns.consecutive_window_minutes),
        consecutive_threshold=config.cooldowns.consecutive_threshold,
        pause_duration=timedelta(minutes=config.cooldowns.pause_duration_minutes),
        clock=clock,
    )
    return ledger, cooldowns


def build_guard(config: Config, notifier, clock: Callable[[], datetime] = utc_now) -> MarketGuard:
    guard_cfg = config.market_guard
    return MarketGuard(
        CoinGeckoClient(
            asset_id=guard_cfg.reference_asset_id,
            url=config.data.coingecko_price_url,
            timeout_seconds=config.data.request_timeout_seconds,
        ),
        JsonDocumentStore(Path(config.system.data_dir) / "btc_guard.json"),
        notifier=notifier,
        check_interval=timedelta(seconds=guard_cfg.check_interval_seconds),
        yellow_drop_1h_pct=guard_cfg.yellow_drop_1h_pct,
        orange_drop_4h_pct=guard_cfg.orange_drop_4h_pct,
        red_drop_30m_pct=guard_cfg.red_drop_30m_pct,
        red_volatility_multiplier=guard_cfg.red_volatility_multiplier,
        stable_drop_pct=guard_cfg.stable_drop_pct,
        all_clear_stable_hours=guard_cfg.all_clear_stable_hours,
        clock=clock,
    )


def build_signer(config: Config) -> TransactionSigner:
    execution = config.execution
    keypair = load_keypair(execution.wallet_secret) if execution.wallet_secret else None

    if config.system.dry_run:
        wallet = str(keypair.pubkey()) if keypair else execution.wallet_address
        if not wallet:
            logger.warning("Paper trading without a wallet address — quotes use a placeholder wallet")
            wallet = PAPER_FALLBACK_WALLET
        return PaperSigner(wallet)

    if keypair is None:
        raise ValueError("Live trading requires execution.wallet_secret")
    return SolanaRpcSigner(
        keypair,
        execution.rpc_url,
        confirm_timeout_seconds=execution.confirm_timeout_seconds,
    )


def build_desk(config: Config, clock: Callable[[], datetime] = utc_now) -> ExitDesk:
    notifier = WebhookNotifier(
        webhook_url=config.monitoring.alert_webhook_url,
        chat_id=config.monitoring.alert_chat_id,
        rate_limit_seconds=config.monitoring.alert_rate_limit_seconds,
    )
    ledger, cooldowns = build_state(config, clock, notifier)
    guard = build_guard(config, notifier, clock)

    submitter = TransactionSubmitter(
        build_signer(config),
        max_attempts=config.execution.max_retries,
        retry_interval=config.execution.retry_backoff_seconds,
    )
    executor = SellExecutor(
        ledger,
        cooldowns,
        RaydiumSwapClient(
            base_url=config.execution.raydium_base_url,
            priority_fee_micro_lamports=config.execution.priority_fee_micro_lamports,
        ),
        submitter,
        notifier=notifier,
        sol_price_usd=Decimal(str(config.execution.sol_price_usd)),
    )

    settings = ExitSettings.from_config(config.exits)
    exit_monitor = ExitMonitor(
        ledger,
        guard,
        cooldowns,
        DexScreenerClient(
            base_url=config.data.dexscreener_base_url,
            timeout_seconds=config.data.request_timeout_seconds,
        ),
        executor,
        settings=settings,
    )
    fast_monitor = FastStopLossMonitor(
        ledger,
        guard,
        JupiterPriceClient(
            url=config.data.jupiter_price_url,
            api_key=config.data.jupiter_api_key,
            timeout_seconds=config.data.request_timeout_seconds,
        ),
        executor,
        settings=settings,
    )
    return ExitDesk(
        config=config,
        ledger=ledger,
        cooldowns=cooldowns,
        guard=guard,
        executor=executor,
        exit_monitor=exit_monitor,
        fast_monitor=fast_monitor,
    )


def build_loops(desk: ExitDesk, stop_event: asyncio.Event) -> List[IntervalLoop]:
    exits = desk.config.exits
    return [
        IntervalLoop("market_guard", desk.guard.check, GUARD_POLL_SECONDS, stop_event),
        IntervalLoop("exit_monitor", desk.exit_monitor.run_cycle, exits.monitor_interval_seconds, stop_event),
        IntervalLoop("fast_stop_loss", desk.fast_monitor.run_cycle, exits.fast_stop_loss_interval_seconds, stop_event),
    ]


async def run_desk(desk: ExitDesk, stop_event: asyncio.Event) -> None:
    """Run all loops until `stop_event` is set, then drain in-flight cycles."""
    loops = build_loops(desk, stop_event)
    tasks = [asyncio.create_task(loop.run(), name=loop.name) for loop in loops]

    logger.info(
        "Exit desk running",
        mode="paper" if desk.config.system.dry_run else "live",
        active_positions=len(desk.ledger.active_positions()),
        alert_level=desk.guard.alert_level.value,
    )

    await stop_event.wait()
    logger.info("Stopping loops — draining current cycles")
    try:
        await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout=SHUTDOWN_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        pending = [task.get_name() for task in tasks if not task.done()]
        logger.warning("Timed out waiting for loops to stop — cancelling", pending=pending)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("Exit desk shutdown complete")


async def main_async(config: Config, stop_event: Optional[asyncio.Event] = None) -> None:
    desk = build_desk(config)
    stop_event = stop_event or asyncio.Event()

    def signal_handler():
        logger.info("Shutdown Signal Received.")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    await run_desk(desk, stop_event)
