from wpfleet.modules.fleet.domain.health import build_health_view, calculate_health_score
from wpfleet.modules.fleet.domain.prioritizer import classify_update, prioritize_updates
from wpfleet.modules.fleet.domain.scheduling import build_notifications, sites_due_for_sync
from wpfleet.modules.fleet.domain.store import InventoryStore, SQLAlchemyInventoryStore
from wpfleet.modules.fleet.domain.sync import FleetSyncEngine
from wpfleet.modules.fleet.domain.updates import BulkUpdateOrchestrator

__all__ = [
    "BulkUpdateOrchestrator",
    "FleetSyncEngine",
    "InventoryStore",
    "SQLAlchemyInventoryStore",
    "build_health_view",
    "build_notifications",
    "calculate_health_score",
    "classify_update",
    "prioritize_updates",
    "sites_due_for_sync",
]
