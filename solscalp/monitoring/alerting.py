"""
Webhook notification sink for exit desk events.

Sends notifications via webhook (Telegram, Discord or a generic JSON
endpoint). Configure via MonitoringConfig / environment variables:
  ALERT_WEBHOOK_URL  - Telegram bot URL or Discord webhook URL
  ALERT_CHAT_ID      - Telegram chat ID (required for Telegram, ignored for Discord)

If no webhook is configured, alerts are logged but not sent. Delivery
failures are logged and never raised.
"""
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import aiohttp

from solscalp.domain.models import Notification
from solscalp.monitoring.logger import get_logger

logger = get_logger(__name__)

_EVENT_PREFIX = {
    "POSITION_OPENED": "🟢",
    "POSITION_CLOSED": "💰",
    "STOP_LOSS": "🛑",
    "PARTIAL_EXIT": "✂️",
    "GUARD_ALERT": "🚨",
    "GUARD_CLEARED": "✅",
}


def _is_telegram(url: str) -> bool:
    return "api.telegram.org" in url


def _is_discord(url: str) -> bool:
    return "discord.com/api/webhooks" in url or "discordapp.com/api/webhooks" in url


class WebhookNotifier:
    """NotificationSink that posts to a webhook."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        chat_id: Optional[str] = None,
        rate_limit_seconds: float = 0,
        timeout_seconds: float = 10,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Args:
            webhook_url: Telegram/Discord/generic URL; None or empty → log only
            chat_id: Telegram chat id
            rate_limit_seconds: Min seconds between non-urgent alerts of the
                same event type (0 disables)
        """
        self.webhook_url = (webhook_url or "").strip()
        self.chat_id = (chat_id or "").strip()
        self.rate_limit_seconds = rate_limit_seconds
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._last_alert_times: Dict[str, datetime] = {}

    async def send(self, notification: Notification) -> None:
        event_type = notification.event_type.value
        if not self.webhook_url:
            logger.info("Alert (no webhook configured)", event_type=event_type, message=notification.message)
            return

        now = self._clock()
        if not notification.urgent and self.rate_limit_seconds > 0:
            last = self._last_alert_times.get(event_type)
            if last and (now - last).total_seconds() < self.rate_limit_seconds:
                logger.debug("Alert rate limited", event_type=event_type)
                return
        self._last_alert_times[event_type] = now

        timestamp = now.strftime("%H:%M:%S UTC")
        prefix = _EVENT_PREFIX.get(event_type, "📊")
        formatted = f"{prefix} [{event_type}] {timestamp}\n{notification.message}"

        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)) as session:
                if _is_telegram(self.webhook_url):
                    payload = {
                        "chat_id": self.chat_id,
                        "text": formatted,
                        "parse_mode": "HTML",
                    }
                    async with session.post(self.webhook_url, json=payload) as resp:
                        if resp.status != 200:
                            body = await resp.text()
                            logger.warning("Telegram alert failed", status=resp.status, body=body[:200])
                elif _is_discord(self.webhook_url):
                    payload = {"content": formatted}
                    async with session.post(self.webhook_url, json=payload) as resp:
                        if resp.status not in (200, 204):
                            body = await resp.text()
                            logger.warning("Discord alert failed", status=resp.status, body=body[:200])
                else:
                    payload = {
                        "event_type": event_type,
                        "message": notification.message,
                        "details": notification.details,
                        "timestamp": now.isoformat(),
                        "urgent": notification.urgent,
                    }
                    async with session.post(self.webhook_url, json=payload) as resp:
                        if resp.status >= 400:
                            logger.warning("Webhook alert failed", status=resp.status)
        except Exception as e:
            # Alert failures must never affect trading state
            logger.warning("Alert send failed (non-fatal)", event_type=event_type, error=str(e))
