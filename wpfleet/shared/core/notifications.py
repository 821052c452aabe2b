"""
Notification Dispatcher

Delivers fleet notifications (offline sites, pending updates, expiring
certificates) to a single incoming-webhook endpoint as JSON. Without a
configured webhook the notifications are only logged.
"""

from typing import Any, Dict, Optional, Sequence

import httpx
import structlog

from wpfleet.modules.fleet.domain.types import Notification
from wpfleet.shared.core.config import get_settings
from wpfleet.shared.core.ops_metrics import NOTIFICATIONS_DISPATCHED

logger = structlog.get_logger()


class NotificationDispatcher:
    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.webhook_url = webhook_url if webhook_url is not None else settings.NOTIFICATION_WEBHOOK_URL
        self.timeout_seconds = timeout_seconds or settings.NOTIFICATION_TIMEOUT_SECONDS
        self._http_client = http_client

    @staticmethod
    def build_payload(notification: Notification) -> Dict[str, Any]:
        return {
            "site_id": notification.site_id,
            "site_name": notification.site_name,
            "type": notification.type.value,
            "severity": notification.severity.value,
            "message": notification.message,
            "created_at": notification.created_at.isoformat(),
        }

    async def dispatch(self, notifications: Sequence[Notification]) -> int:
        """Deliver notifications one by one. Returns how many were delivered."""
        if not notifications:
            return 0

        if not self.webhook_url:
            for notification in notifications:
                logger.info(
                    "notification_logged",
                    site_id=notification.site_id,
                    type=notification.type.value,
                    severity=notification.severity.value,
                    message=notification.message,
                )
                NOTIFICATIONS_DISPATCHED.labels(
                    type=notification.type.value, status="logged"
                ).inc()
            return 0

        owns_client = self._http_client is None
        client = self._http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds)
        )
        delivered = 0
        try:
            for notification in notifications:
                if await self._send(client, notification):
                    delivered += 1
        finally:
            if owns_client:
                await client.aclose()

        logger.info("notifications_dispatched", total=len(notifications), delivered=delivered)
        return delivered

    async def _send(self, client: httpx.AsyncClient, notification: Notification) -> bool:
        try:
            resp = await client.post(self.webhook_url, json=self.build_payload(notification))
        except httpx.HTTPError as e:
            logger.warning(
                "notification_send_failed",
                site_id=notification.site_id,
                type=notification.type.value,
                error=str(e),
            )
            NOTIFICATIONS_DISPATCHED.labels(type=notification.type.value, status="failure").inc()
            return False

        if 200 <= resp.status_code < 300:
            NOTIFICATIONS_DISPATCHED.labels(type=notification.type.value, status="success").inc()
            return True

        logger.warning(
            "notification_send_failed",
            site_id=notification.site_id,
            type=notification.type.value,
            status_code=resp.status_code,
            response=resp.text[:300],
        )
        NOTIFICATIONS_DISPATCHED.labels(type=notification.type.value, status="failure").inc()
        return False
