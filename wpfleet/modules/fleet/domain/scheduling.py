"""
Sync scheduling and notification rules.

Both functions are pure; `now` is injectable so callers and tests get
deterministic results.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, Sequence, TypeVar

from wpfleet.modules.fleet.domain.types import (
    Notification,
    NotificationSeverity,
    NotificationType,
    SiteNotificationView,
    SiteStatus,
)

# Total pending updates (plugins + themes) at which a site gets an updates notification
UPDATES_NOTIFICATION_THRESHOLD = 5
# Days before certificate expiry at which a site gets an SSL notification
SSL_WARNING_WINDOW_DAYS = 7


class _Syncable(Protocol):
    @property
    def last_synced(self) -> Optional[datetime]: ...


SiteT = TypeVar("SiteT", bound=_Syncable)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def sites_due_for_sync(
    sites: Sequence[SiteT],
    interval_minutes: int,
    now: Optional[datetime] = None,
) -> list[SiteT]:
    """
    Sites never synced, or last synced at least `interval_minutes` ago.
    A site synced exactly one interval ago is due.
    """
    if not sites:
        return []

    now = _as_utc(now or datetime.now(timezone.utc))
    interval = timedelta(minutes=interval_minutes)

    return [
        site
        for site in sites
        if site.last_synced is None or now - _as_utc(site.last_synced) >= interval
    ]


def build_notifications(
    sites: Sequence[SiteNotificationView],
    now: Optional[datetime] = None,
    updates_threshold: int = UPDATES_NOTIFICATION_THRESHOLD,
    ssl_window_days: int = SSL_WARNING_WINDOW_DAYS,
) -> list[Notification]:
    """Derive notifications for sites with issues. One site may yield several."""
    now = _as_utc(now or datetime.now(timezone.utc))
    notifications: list[Notification] = []

    for site in sites:
        if site.status == SiteStatus.OFFLINE:
            notifications.append(
                Notification(
                    site_id=site.id,
                    site_name=site.name,
                    type=NotificationType.OFFLINE,
                    severity=NotificationSeverity.CRITICAL,
                    message=f"{site.name} is offline and not responding",
                    created_at=now,
                )
            )

        total_updates = site.plugin_updates + site.theme_updates
        if total_updates >= updates_threshold:
            notifications.append(
                Notification(
                    site_id=site.id,
                    site_name=site.name,
                    type=NotificationType.UPDATES_AVAILABLE,
                    severity=NotificationSeverity.WARNING,
                    message=f"{site.name} has {total_updates} updates available",
                    created_at=now,
                )
            )

        if site.ssl_expiry is not None:
            days_until_expiry = int(
                (_as_utc(site.ssl_expiry) - now).total_seconds() // 86400
            )
            if 0 <= days_until_expiry <= ssl_window_days:
                notifications.append(
                    Notification(
                        site_id=site.id,
                        site_name=site.name,
                        type=NotificationType.SSL_EXPIRING,
                        severity=NotificationSeverity.WARNING,
                        message=f"{site.name} SSL certificate expires in {days_until_expiry} days",
                        created_at=now,
                    )
                )

    return notifications
