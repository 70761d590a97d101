"""
CLI entrypoint for the SolScalp exit desk.

Provides commands for run, status, and clear-pause.
"""
import asyncio
from pathlib import Path
from typing import Optional

import typer

from solscalp.config.config import load_config
from solscalp.domain.protocols import NullNotifier
from solscalp.main import build_guard, build_state, main_async
from solscalp.monitoring.logger import get_logger, setup_logging

app = typer.Typer(
    name="solscalp",
    help="SolScalp position risk & exit desk",
    add_completion=False,
)

logger = get_logger(__name__)


@app.command()
def run(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
):
    """
    Start the market guard, slow exit monitor and fast stop-loss loops.

    Stops gracefully on SIGINT/SIGTERM after the current cycles finish.

    Example:
        python run.py run --config solscalp/config/config.yaml
    """
    config = load_config(config_path)
    setup_logging(config.monitoring.log_level, config.monitoring.log_format, config.monitoring.log_file)

    if not config.system.dry_run:
        logger.warning("LIVE MODE — sells will be signed and broadcast", environment=config.environment)

    asyncio.run(main_async(config))


@app.command()
def status(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
):
    """
    Show aggregate P&L, active positions, guard level and pause state.

    Example:
        python run.py status
    """
    config = load_config(config_path)
    setup_logging("WARNING", "text", None)

    ledger, cooldowns = build_state(config)
    guard = build_guard(config, NullNotifier())
    state = ledger.aggregate_state()
    guard_status = guard.status()
    cooldown_status = cooldowns.status()

    typer.echo("=" * 60)
    typer.echo(f"{config.system.name} ({'paper' if config.system.dry_run else 'LIVE'})")
    typer.echo("=" * 60)
    typer.echo(f"Daily P&L:     {state.daily_pnl_sol:+.4f} SOL (limit -{config.risk.daily_loss_limit_sol} SOL)")
    typer.echo(f"Total P&L:     {state.total_pnl_sol:+.4f} SOL over {state.trade_count} trades")
    typer.echo(f"Market guard:  {guard_status['alert_level']} (stable {guard_status['stable_hours']}h)")
    pause = cooldown_status["consecutive_stop_pause_until"]
    typer.echo(f"Entry pause:   {pause or 'none'}")
    typer.echo(f"Cooldowns:     {cooldown_status['tokens_on_record']} tokens on record")

    active = ledger.active_positions()
    typer.echo(f"\nActive positions: {len(active)}")
    for p in active:
        partial = " (partial exited)" if p.partial_exit_executed else ""
        typer.echo(
            f"  {p.token_symbol:<10} {p.strategy.value:<9} entry {p.entry_price} "
            f"pnl {p.pnl_percent:+.2f}% size {p.amount_sol} SOL{partial}"
        )
    typer.echo("=" * 60)


@app.command("clear-pause")
def clear_pause(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
):
    """
    Clear an active consecutive-stop pause so entries can resume.

    Example:
        python run.py clear-pause
    """
    config = load_config(config_path)
    setup_logging(config.monitoring.log_level, config.monitoring.log_format, None)

    _, cooldowns = build_state(config)
    pause = cooldowns.get_consecutive_stop_pause_until()
    if pause is None:
        typer.echo("No consecutive-stop pause is active.")
        return

    cooldowns.clear_consecutive_stop_pause()
    logger.warning("Consecutive stop pause cleared manually", was_until=pause.isoformat())
    typer.echo(f"Cleared pause (was until {pause.isoformat()}).")


if __name__ == "__main__":
    app()
