"""
Site health scoring.

Pure and deterministic: the score depends only on the view and `now`.
Penalties are additive, so the order they are applied in does not matter.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from wpfleet.modules.fleet.domain.types import SiteHealthView, SiteStatus

MAX_SCORE = 100
MIN_SCORE = 0

UNKNOWN_STATUS_PENALTY = 20
SSL_INVALID_PENALTY = 25
SSL_EXPIRY_CRITICAL_DAYS = 7
SSL_EXPIRY_CRITICAL_PENALTY = 20
SSL_EXPIRY_WARNING_DAYS = 30
SSL_EXPIRY_WARNING_PENALTY = 10
PENALTY_PER_UPDATE = 2
MAX_UPDATE_PENALTY = 30
NEVER_CHECKED_PENALTY = 10
STALE_CHECK_HOURS = 24
STALE_CHECK_PENALTY = 5
VERY_STALE_CHECK_HOURS = 168  # 7 days
VERY_STALE_CHECK_PENALTY = 15

_SECONDS_PER_DAY = 86400
_SECONDS_PER_HOUR = 3600


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _whole_units_between(start: datetime, end: datetime, unit_seconds: int) -> int:
    # Floors toward negative infinity, so an already-expired certificate is < 0 days out.
    return int((_as_utc(end) - _as_utc(start)).total_seconds() // unit_seconds)


def calculate_health_score(site: SiteHealthView, now: Optional[datetime] = None) -> int:
    """Calculate a health score (0-100) for a site."""
    # Offline sites always score 0
    if site.status == SiteStatus.OFFLINE:
        return MIN_SCORE

    now = now or datetime.now(timezone.utc)
    score = MAX_SCORE

    if site.status == SiteStatus.UNKNOWN:
        score -= UNKNOWN_STATUS_PENALTY

    if not site.ssl_valid:
        score -= SSL_INVALID_PENALTY
    elif site.ssl_expiry is not None:
        days_until_expiry = _whole_units_between(now, site.ssl_expiry, _SECONDS_PER_DAY)
        if days_until_expiry < SSL_EXPIRY_CRITICAL_DAYS:
            score -= SSL_EXPIRY_CRITICAL_PENALTY
        elif days_until_expiry < SSL_EXPIRY_WARNING_DAYS:
            score -= SSL_EXPIRY_WARNING_PENALTY

    total_updates = site.plugin_updates + site.theme_updates
    score -= min(total_updates * PENALTY_PER_UPDATE, MAX_UPDATE_PENALTY)

    if site.last_checked is None:
        score -= NEVER_CHECKED_PENALTY
    else:
        hours_since_check = _whole_units_between(site.last_checked, now, _SECONDS_PER_HOUR)
        if hours_since_check > VERY_STALE_CHECK_HOURS:
            score -= VERY_STALE_CHECK_PENALTY
        elif hours_since_check > STALE_CHECK_HOURS:
            score -= STALE_CHECK_PENALTY

    return max(MIN_SCORE, min(MAX_SCORE, score))


def build_health_view(site: Any, plugin_updates: int = 0, theme_updates: int = 0) -> SiteHealthView:
    """Project a stored Site row plus its pending update counts onto a SiteHealthView."""
    try:
        status = SiteStatus(site.status)
    except ValueError:
        status = SiteStatus.UNKNOWN
    return SiteHealthView(
        status=status,
        ssl_valid=bool(site.ssl_valid),
        ssl_expiry=site.ssl_expiry,
        last_checked=site.last_checked,
        plugin_updates=plugin_updates,
        theme_updates=theme_updates,
        wp_version=site.wp_version,
        php_version=site.php_version,
    )
