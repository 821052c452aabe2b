"""
Fleet domain types shared by the sync engine, the bulk update orchestrator
and the pure scoring/scheduling functions.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ItemType(str, Enum):
    PLUGIN = "plugin"
    THEME = "theme"


class SiteStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class UpdateStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class SyncOutcome(str, Enum):
    SYNCED = "synced"
    OFFLINE = "offline"
    FAILED = "failed"


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class NotificationType(str, Enum):
    OFFLINE = "offline"
    UPDATES_AVAILABLE = "updates_available"
    SSL_EXPIRING = "ssl_expiring"


class NotificationSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"


# --- Bulk updates ---

class UpdateRequest(BaseModel):
    """One plugin/theme update to apply on one site."""
    model_config = ConfigDict(frozen=True)

    site_id: int = Field(..., gt=0)
    item_type: ItemType
    slug: str = Field(..., min_length=1)


class UpdateResult(BaseModel):
    site_id: int
    item_type: ItemType
    slug: str
    status: UpdateStatus
    message: Optional[str] = None
    new_version: Optional[str] = None
    # Locally recorded version before the attempt, when known.
    from_version: Optional[str] = None

    @classmethod
    def failed(
        cls, request: UpdateRequest, message: str, from_version: Optional[str] = None
    ) -> "UpdateResult":
        return cls(
            site_id=request.site_id,
            item_type=request.item_type,
            slug=request.slug,
            status=UpdateStatus.FAILED,
            message=message,
            from_version=from_version,
        )

    @classmethod
    def succeeded(
        cls, request: UpdateRequest, new_version: str, from_version: Optional[str] = None
    ) -> "UpdateResult":
        return cls(
            site_id=request.site_id,
            item_type=request.item_type,
            slug=request.slug,
            status=UpdateStatus.SUCCESS,
            new_version=new_version,
            from_version=from_version,
        )


class BulkUpdateSummary(BaseModel):
    total: int
    successful: int
    failed: int


class BulkUpdateResponse(BaseModel):
    results: List[UpdateResult]
    summary: BulkUpdateSummary


class UpdateLogEntry(BaseModel):
    """Persisted, append-only record of one UpdateResult."""
    site_id: int
    item_type: ItemType
    item_slug: str
    item_name: str
    from_version: Optional[str] = None
    to_version: Optional[str] = None
    status: UpdateStatus
    error_message: Optional[str] = None
    completed_at: datetime

    @classmethod
    def from_result(cls, result: UpdateResult, completed_at: datetime) -> "UpdateLogEntry":
        return cls(
            site_id=result.site_id,
            item_type=result.item_type,
            item_slug=result.slug,
            item_name=result.slug,
            from_version=result.from_version,
            to_version=result.new_version,
            status=result.status,
            error_message=result.message,
            completed_at=completed_at,
        )


# --- Fleet sync ---

class SiteSyncResult(BaseModel):
    site_id: int
    outcome: SyncOutcome
    error: Optional[str] = None


class FleetSyncSummary(BaseModel):
    total: int = 0
    synced: int = 0
    offline: int = 0
    failed: int = 0
    sites: List[SiteSyncResult] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: List[SiteSyncResult]) -> "FleetSyncSummary":
        return cls(
            total=len(results),
            synced=sum(1 for r in results if r.outcome == SyncOutcome.SYNCED),
            offline=sum(1 for r in results if r.outcome == SyncOutcome.OFFLINE),
            failed=sum(1 for r in results if r.outcome == SyncOutcome.FAILED),
            sites=results,
        )


# --- Health, prioritization, notifications ---

class SiteHealthView(BaseModel):
    """The observable attributes the health score is computed from."""
    status: SiteStatus
    ssl_valid: bool = True
    ssl_expiry: Optional[datetime] = None
    last_checked: Optional[datetime] = None
    plugin_updates: int = 0
    theme_updates: int = 0
    wp_version: Optional[str] = None
    php_version: Optional[str] = None


class PendingUpdate(BaseModel):
    id: str
    name: str
    item_type: ItemType
    is_security_update: bool = False
    is_active: bool = False
    site_id: Optional[int] = None
    slug: Optional[str] = None


class PrioritizedUpdate(PendingUpdate):
    priority: Priority
    score: int


class SiteNotificationView(BaseModel):
    id: int
    name: str
    status: SiteStatus
    plugin_updates: int = 0
    theme_updates: int = 0
    ssl_expiry: Optional[datetime] = None


class Notification(BaseModel):
    site_id: int
    site_name: str
    type: NotificationType
    severity: NotificationSeverity
    message: str
    created_at: datetime
