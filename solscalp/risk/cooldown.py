"""
Stop-loss cooldown and consecutive-stop pause register.

Persists per-token stop-loss timestamps and the consecutive-stop pause to
cooldowns.json so a restart doesn't wipe protection state mid-session.

Two protections live here:
1. Token cooldown: after a stop-loss on token T, re-entry into T is blocked
   for `token_cooldown`.
2. Consecutive-stop pause: when `consecutive_threshold` stop-losses land
   within `consecutive_window`, all entries pause for `pause_duration`.

Strategy scanners read `is_token_on_cooldown()` and
`is_consecutive_stop_pause_active()`; the sell executor writes through
`record_stop_loss()`.
"""
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from solscalp.domain.models import utc_now
from solscalp.monitoring.logger import get_logger
from solscalp.storage.json_store import JsonDocumentStore

logger = get_logger(__name__)


class CooldownRegister:
    """Owns cooldowns.json."""

    def __init__(
        self,
        store: JsonDocumentStore,
        token_cooldown: timedelta = timedelta(minutes=60),
        consecutive_window: timedelta = timedelta(minutes=30),
        consecutive_threshold: int = 2,
        pause_duration: timedelta = timedelta(minutes=90),
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self.token_cooldown = token_cooldown
        self.consecutive_window = consecutive_window
        self.consecutive_threshold = consecutive_threshold
        self.pause_duration = pause_duration
        self._clock = clock
        self._lock = threading.RLock()

        self._stop_loss_cooldowns: Dict[str, datetime] = {}
        self._pause_until: Optional[datetime] = None
        self._recent_stop_losses: List[datetime] = []
        self._restore(store.load())

    def _restore(self, saved: Optional[Dict[str, Any]]) -> None:
        if not saved:
            return
        try:
            self._stop_loss_cooldowns = {
                token: datetime.fromisoformat(ts)
                for token, ts in (saved.get("stop_loss_cooldowns") or {}).items()
            }
            pause = saved.get("consecutive_stop_pause_until")
            self._pause_until = datetime.fromisoformat(pause) if pause else None
            self._recent_stop_losses = [
                datetime.fromisoformat(ts) for ts in saved.get("recent_stop_losses") or []
            ]
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning("Failed to parse cooldowns.json — using defaults", error=str(e))
            self._stop_loss_cooldowns, self._pause_until, self._recent_stop_losses = {}, None, []
            return

        logger.info(
            "Cooldown register restored",
            tokens=len(self._stop_loss_cooldowns),
            recent_stop_losses=len(self._recent_stop_losses),
            pause_until=self._pause_until.isoformat() if self._pause_until else None,
        )

    # ============ TOKEN COOLDOWNS ============

    def get_stop_loss_cooldown(self, token_address: str) -> Optional[datetime]:
        """Timestamp of the last stop-loss for a token, or None."""
        with self._lock:
            return self._stop_loss_cooldowns.get(token_address)

    def set_stop_loss_cooldown(self, token_address: str, at: Optional[datetime] = None) -> None:
        with self._lock:
            self._stop_loss_cooldowns[token_address] = at or self._clock()
            self._save()

    def is_token_on_cooldown(self, token_address: str) -> bool:
        last = self.get_stop_loss_cooldown(token_address)
        return last is not None and self._clock() - last < self.token_cooldown

    def prune_expired_cooldowns(self, window: Optional[timedelta] = None) -> int:
        """Drop tokens whose cooldown has elapsed. Returns number pruned."""
        window = window or self.token_cooldown
        with self._lock:
            now = self._clock()
            expired = [t for t, ts in self._stop_loss_cooldowns.items() if now - ts > window]
            for token in expired:
                del self._stop_loss_cooldowns[token]
            if expired:
                self._save()
        if expired:
            logger.info("Pruned expired cooldowns", count=len(expired))
        return len(expired)

    # ============ CONSECUTIVE-STOP PAUSE ============

    def get_consecutive_stop_pause_until(self) -> Optional[datetime]:
        """Pause expiry, or None. A pause read past its expiry is cleared."""
        with self._lock:
            if self._pause_until is not None and self._clock() >= self._pause_until:
                logger.info("Consecutive stop pause expired", pause_until=self._pause_until.isoformat())
                self._pause_until = None
                self._save()
            return self._pause_until

    def set_consecutive_stop_pause(self, until: datetime) -> None:
        """Start a pause; the recent list is reset so detection starts a fresh window."""
        with self._lock:
            self._pause_until = until
            self._recent_stop_losses = []
            self._save()
        logger.warning("Consecutive stop pause set", pause_until=until.isoformat())

    def clear_consecutive_stop_pause(self) -> None:
        with self._lock:
            self._pause_until = None
            self._save()

    def is_consecutive_stop_pause_active(self) -> bool:
        return self.get_consecutive_stop_pause_until() is not None

    def get_recent_stop_losses(self) -> List[datetime]:
        with self._lock:
            return list(self._recent_stop_losses)

    def save_recent_stop_losses(self, timestamps: List[datetime]) -> None:
        with self._lock:
            self._recent_stop_losses = list(timestamps)
            self._save()

    # ============ STOP-LOSS RECORDING ============

    def record_stop_loss(self, token_address: str) -> bool:
        """
        Record a realized stop-loss exit for a token.

        Sets the token cooldown and runs consecutive-stop detection in a
        single write.

        Returns:
            True if this stop-loss triggered a consecutive-stop pause
        """
        with self._lock:
            now = self._clock()
            self._stop_loss_cooldowns[token_address] = now

            cutoff = now - self.consecutive_window
            recent = [ts for ts in self._recent_stop_losses if ts >= cutoff]
            recent.append(now)

            triggered = len(recent) >= self.consecutive_threshold
            if triggered:
                self._pause_until = now + self.pause_duration
                self._recent_stop_losses = []
            else:
                self._recent_stop_losses = recent
            self._save()

        logger.info(
            "Stop-loss cooldown recorded",
            token=token_address,
            recent_stop_losses=len(recent),
            window_minutes=self.consecutive_window.total_seconds() / 60,
        )
        if triggered:
            logger.warning(
                "Consecutive stop-losses — pausing entries",
                count=len(recent),
                pause_until=self._pause_until.isoformat(),
            )
        return triggered

    def status(self) -> Dict[str, Any]:
        pause = self.get_consecutive_stop_pause_until()
        with self._lock:
            return {
                "tokens_on_record": len(self._stop_loss_cooldowns),
                "recent_stop_losses": len(self._recent_stop_losses),
                "consecutive_stop_pause_until": pause.isoformat() if pause else None,
            }

    def _save(self) -> None:
        self._store.save({
            "stop_loss_cooldowns": {t: ts.isoformat() for t, ts in self._stop_loss_cooldowns.items()},
            "consecutive_stop_pause_until": self._pause_until.isoformat() if self._pause_until else None,
            "recent_stop_losses": [ts.isoformat() for ts in self._recent_stop_losses],
        })
