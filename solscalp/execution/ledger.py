"""
Position Ledger - durable record of every position and aggregate P&L.

The ledger is an append/mutate log, not a queue: positions are created by
the strategy scanners, mutated by the monitors and the sell executor, and
closed but never deleted.

Lifecycle:
    ACTIVE → COMPLETED   (target, guard and trailing exits)
    ACTIVE → STOPPED     (stop-loss exits)

Concurrency:
    All mutations are serialized by one RLock and written through to disk
    before returning. The lock is never held across an await. Callers get
    copies; the in-memory positions are only swapped at mutation boundaries.

    The fast and slow monitors can both decide to sell the same position in
    the same instant. `claim_exit()` lets only one caller proceed to the
    swap, and `close()` is a compare-and-swap on status, so a second caller
    always observes PositionAlreadyClosedError instead of double-selling.
"""
import asyncio
import threading
import uuid
from contextlib import contextmanager
from dataclasses import fields, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from solscalp.domain.models import (
    AggregateState,
    ExitReason,
    Notification,
    NotificationType,
    Position,
    PositionSpec,
    PositionStatus,
    Strategy,
    utc_now,
)
from solscalp.domain.protocols import NotificationSink
from solscalp.exceptions import (
    ExitInProgressError,
    InvalidPositionError,
    PositionAlreadyClosedError,
    PositionNotFoundError,
)
from solscalp.monitoring.logger import get_logger
from solscalp.storage.json_store import JsonDocumentStore

logger = get_logger(__name__)

# Fields only close() may change
_LIFECYCLE_FIELDS = frozenset({"id", "status", "exit_time", "entry_time"})
_POSITION_FIELDS = frozenset(f.name for f in fields(Position))


class PositionLedger:
    """Owns trades.json (positions) and state.json (aggregate P&L)."""

    def __init__(
        self,
        trades_store: JsonDocumentStore,
        state_store: JsonDocumentStore,
        clock: Callable[[], datetime] = utc_now,
        notifier: Optional[NotificationSink] = None,
    ):
        self._trades_store = trades_store
        self._state_store = state_store
        self._clock = clock
        self._notifier = notifier
        self._lock = threading.RLock()
        self._exits_in_flight: Set[str] = set()
        self._pending_notifications: Set[asyncio.Task] = set()

        self._positions: Dict[str, Position] = {}
        # Records we could not parse are kept verbatim so a rewrite never drops them
        self._unparsed: List[Any] = []
        for raw in trades_store.load() or []:
            try:
                position = Position.from_dict(raw)
            except (KeyError, ValueError, TypeError, ArithmeticError) as e:
                logger.error("Unparseable position record kept verbatim", record_id=raw.get("id") if isinstance(raw, dict) else None, error=str(e))
                self._unparsed.append(raw)
                continue
            self._positions[position.id] = position

        saved_state = state_store.load()
        self._state = AggregateState.from_dict(saved_state) if saved_state else AggregateState(
            daily_reset_date=self._today()
        )

        logger.info(
            "Position ledger loaded",
            positions=len(self._positions),
            active=sum(1 for p in self._positions.values() if p.is_active),
            trades_path=str(trades_store.path),
        )

    # ============ MUTATIONS ============

    def create(self, spec: PositionSpec) -> Position:
        """
        Open a new ACTIVE position from a scanner's entry details.

        Raises:
            InvalidPositionError: non-positive entry price, size or quantity
        """
        if spec.entry_price <= 0 or spec.amount_sol <= 0 or spec.token_quantity <= 0:
            raise InvalidPositionError(
                f"Cannot open {spec.token_symbol}: entry_price={spec.entry_price} "
                f"amount_sol={spec.amount_sol} token_quantity={spec.token_quantity}"
            )

        now = self._clock()
        position = Position(
            id=f"trade_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:4]}",
            strategy=spec.strategy,
            token_address=spec.token_address,
            token_symbol=spec.token_symbol,
            entry_price=spec.entry_price,
            amount_sol=spec.amount_sol,
            token_quantity=spec.token_quantity,
            stop_loss_percent=spec.stop_loss_percent,
            target_gain_percent=spec.target_gain_percent,
            entry_time=now,
            entry_market_cap=spec.entry_market_cap,
            exit_market_cap=spec.exit_market_cap,
            highest_price=spec.entry_price,
            entry_tx=spec.entry_tx,
        )
        with self._lock:
            self._positions[position.id] = position
            self._save_positions()

        logger.info(
            "Position created",
            position_id=position.id,
            token=position.token_symbol,
            strategy=position.strategy.value,
            entry_price=str(position.entry_price),
        )
        self._announce(Notification(
            event_type=NotificationType.POSITION_OPENED,
            message=f"{position.token_symbol} opened ({position.strategy.value}) with {position.amount_sol} SOL",
            details={
                "position_id": position.id,
                "token": position.token_symbol,
                "strategy": position.strategy.value,
                "entry_price": str(position.entry_price),
                "amount_sol": str(position.amount_sol),
                "tx": position.entry_tx,
            },
        ))
        return replace(position)

    def update(self, position_id: str, **changes: Any) -> Position:
        """
        Merge `changes` into a position.

        Raises:
            PositionNotFoundError: unknown id
            PositionAlreadyClosedError: position is not ACTIVE
            ValueError: attempt to change lifecycle fields or unknown field
        """
        forbidden = _LIFECYCLE_FIELDS.intersection(changes)
        if forbidden:
            raise ValueError(f"Lifecycle fields cannot be updated directly: {sorted(forbidden)}")

        with self._lock:
            current = self._require(position_id)
            if not current.is_active:
                raise PositionAlreadyClosedError(position_id)
            unknown = [k for k in changes if k not in _POSITION_FIELDS]
            if unknown:
                raise ValueError(f"Unknown position fields: {unknown}")

            new_high = changes.get("highest_price")
            if new_high is not None and new_high < current.highest_price:
                # Trailing high never moves down
                changes = {k: v for k, v in changes.items() if k != "highest_price"}

            updated = replace(current, **changes)
            self._positions[position_id] = updated
            self._save_positions()
            return replace(updated)

    def close(
        self,
        position_id: str,
        exit_price: Decimal,
        exit_tx: str,
        reason: ExitReason,
    ) -> Position:
        """
        Close an ACTIVE position and book realized P&L.

        Raises:
            PositionNotFoundError: unknown id
            PositionAlreadyClosedError: position is not ACTIVE
        """
        with self._lock:
            current = self._require(position_id)
            if not current.is_active:
                raise PositionAlreadyClosedError(position_id)

            pnl_percent = current.pnl_percent_at(exit_price)
            pnl_sol = current.amount_sol * pnl_percent / Decimal("100")

            closed = replace(
                current,
                status=PositionStatus.STOPPED if reason.is_stop else PositionStatus.COMPLETED,
                exit_price=exit_price,
                exit_time=self._clock(),
                exit_tx=exit_tx,
                exit_reason=reason,
                pnl_percent=pnl_percent,
                pnl_sol=pnl_sol,
            )
            self._positions[position_id] = closed
            self._save_positions()

            self._roll_daily_if_needed()
            self._state.daily_pnl_sol += pnl_sol
            self._state.total_pnl_sol += pnl_sol
            self._state.trade_count += 1
            self._save_state()

        logger.info(
            "Position closed",
            position_id=position_id,
            token=closed.token_symbol,
            strategy=closed.strategy.value,
            reason=reason.value,
            status=closed.status.value,
            pnl_percent=f"{pnl_percent:.2f}",
            pnl_sol=f"{pnl_sol:.4f}",
        )
        return replace(closed)

    @contextmanager
    def claim_exit(self, position_id: str) -> Iterator[Position]:
        """
        Hold the exclusive right to sell a position for the duration of the block.

        Yields a fresh copy of the position.

        Raises:
            PositionNotFoundError: unknown id
            PositionAlreadyClosedError: position no longer ACTIVE
            ExitInProgressError: another caller is already selling it
        """
        with self._lock:
            current = self._require(position_id)
            if not current.is_active:
                raise PositionAlreadyClosedError(position_id)
            if position_id in self._exits_in_flight:
                raise ExitInProgressError(position_id)
            self._exits_in_flight.add(position_id)
            snapshot = replace(current)
        try:
            yield snapshot
        finally:
            with self._lock:
                self._exits_in_flight.discard(position_id)

    # ============ QUERIES ============

    def get(self, position_id: str) -> Position:
        with self._lock:
            return replace(self._require(position_id))

    def all_positions(self) -> List[Position]:
        with self._lock:
            return [replace(p) for p in self._positions.values()]

    def active_positions(self) -> List[Position]:
        with self._lock:
            return [replace(p) for p in self._positions.values() if p.is_active]

    def active_positions_for_token(self, token_address: str) -> List[Position]:
        with self._lock:
            return [
                replace(p) for p in self._positions.values()
                if p.is_active and p.token_address == token_address
            ]

    def has_active_position(self, token_address: str, strategy: Strategy) -> bool:
        with self._lock:
            return any(
                p.is_active and p.token_address == token_address and p.strategy == strategy
                for p in self._positions.values()
            )

    def aggregate_state(self) -> AggregateState:
        with self._lock:
            self._roll_daily_if_needed()
            return replace(self._state)

    def is_daily_loss_limit_reached(self, limit_sol: Decimal) -> bool:
        with self._lock:
            self._roll_daily_if_needed()
            return self._state.daily_pnl_sol <= -abs(limit_sol)

    # ============ INTERNALS ============

    def _require(self, position_id: str) -> Position:
        position = self._positions.get(position_id)
        if position is None:
            raise PositionNotFoundError(position_id)
        return position

    def _today(self) -> date:
        # Daily boundary is the host's local calendar day
        return self._clock().astimezone().date()

    def _roll_daily_if_needed(self) -> None:
        today = self._today()
        if self._state.daily_reset_date != today:
            self._state.daily_pnl_sol = Decimal("0")
            self._state.daily_reset_date = today
            self._save_state()
            logger.info("Daily P&L reset for new day", date=today.isoformat())

    def _announce(self, notification: Notification) -> None:
        if self._notifier is None:
            return
        # Fire-and-forget; create() is synchronous and may run outside the loop
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop — notification not sent", event_type=notification.event_type.value)
            return
        task = loop.create_task(self._send_quietly(notification))
        self._pending_notifications.add(task)
        task.add_done_callback(self._pending_notifications.discard)

    async def _send_quietly(self, notification: Notification) -> None:
        try:
            await self._notifier.send(notification)
        except Exception as e:
            logger.warning("Notification failed (non-fatal)", event_type=notification.event_type.value, error=str(e))

    def _save_positions(self) -> None:
        document = [p.to_dict() for p in self._positions.values()] + self._unparsed
        self._trades_store.save(document)

    def _save_state(self) -> None:
        self._state_store.save(self._state.to_dict())
