"""
Inventory store: the persistence boundary of the fleet engines.

The engines only talk to the `InventoryStore` interface. The SQLAlchemy
implementation opens one short-lived session per operation, so concurrent
per-site tasks never share a session, and each task only writes rows of the
site it is handling.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wpfleet.models.inventory import Plugin, Theme
from wpfleet.models.site import Site
from wpfleet.models.update_log import UpdateLog
from wpfleet.modules.fleet.domain.types import (
    ItemType,
    PendingUpdate,
    SiteStatus,
    UpdateLogEntry,
)
from wpfleet.shared.adapters.base import RemoteItem

logger = structlog.get_logger()

InventoryModel = Union[Type[Plugin], Type[Theme]]

# Fields the reconciliation pass may overwrite on an inventory row.
RECONCILABLE_FIELDS = frozenset({"version", "update_available", "new_version", "is_active"})


def inventory_model(item_type: ItemType) -> InventoryModel:
    return Plugin if item_type == ItemType.PLUGIN else Theme


class InventoryStore(ABC):
    """Repository of Site, Plugin, Theme and UpdateLog records."""

    @abstractmethod
    async def list_sites(self, include_archived: bool = False) -> List[Site]:
        raise NotImplementedError()

    @abstractmethod
    async def get_sites_by_ids(self, site_ids: Iterable[int]) -> Dict[int, Site]:
        raise NotImplementedError()

    @abstractmethod
    async def update_site_status(
        self, site_id: int, status: SiteStatus, last_checked: datetime
    ) -> None:
        raise NotImplementedError()

    @abstractmethod
    async def mark_site_synced(self, site_id: int, last_synced: datetime) -> None:
        raise NotImplementedError()

    @abstractmethod
    async def replace_inventory(
        self, site_id: int, item_type: ItemType, items: Sequence[RemoteItem]
    ) -> None:
        """Atomically swap a site's rows of one item type for `items`."""
        raise NotImplementedError()

    @abstractmethod
    async def update_inventory_item(
        self, site_id: int, item_type: ItemType, slug: str, **fields: Any
    ) -> int:
        """Field-level update of the row(s) matching (site_id, slug). Returns rows touched."""
        raise NotImplementedError()

    @abstractmethod
    async def list_inventory(
        self, site_id: int, item_type: ItemType
    ) -> List[Union[Plugin, Theme]]:
        raise NotImplementedError()

    @abstractmethod
    async def count_pending_updates(
        self, site_ids: Optional[Iterable[int]] = None
    ) -> Dict[int, Tuple[int, int]]:
        """Map site_id -> (plugin updates, theme updates)."""
        raise NotImplementedError()

    @abstractmethod
    async def list_pending_updates(
        self, site_ids: Optional[Iterable[int]] = None
    ) -> List[PendingUpdate]:
        """Every plugin/theme row with an update available, on non-archived sites."""
        raise NotImplementedError()

    @abstractmethod
    async def append_update_log(self, entry: UpdateLogEntry) -> None:
        raise NotImplementedError()


class SQLAlchemyInventoryStore(InventoryStore):
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def list_sites(self, include_archived: bool = False) -> List[Site]:
        stmt = select(Site).order_by(Site.id)
        if not include_archived:
            stmt = stmt.where(Site.is_archived.is_(False))
        async with self.session_maker() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def get_sites_by_ids(self, site_ids: Iterable[int]) -> Dict[int, Site]:
        ids = list(set(site_ids))
        if not ids:
            return {}
        async with self.session_maker() as db:
            result = await db.execute(select(Site).where(Site.id.in_(ids)))
            return {site.id: site for site in result.scalars().all()}

    async def update_site_status(
        self, site_id: int, status: SiteStatus, last_checked: datetime
    ) -> None:
        async with self.session_maker() as db:
            async with db.begin():
                await db.execute(
                    update(Site)
                    .where(Site.id == site_id)
                    .values(status=status.value, last_checked=last_checked)
                )

    async def mark_site_synced(self, site_id: int, last_synced: datetime) -> None:
        async with self.session_maker() as db:
            async with db.begin():
                await db.execute(
                    update(Site).where(Site.id == site_id).values(last_synced=last_synced)
                )

    async def replace_inventory(
        self, site_id: int, item_type: ItemType, items: Sequence[RemoteItem]
    ) -> None:
        model = inventory_model(item_type)
        async with self.session_maker() as db:
            # Delete and reinsert in one transaction: readers never see a mix
            # of two remote snapshots for the same site.
            async with db.begin():
                await db.execute(delete(model).where(model.site_id == site_id))
                db.add_all(
                    [
                        model(
                            site_id=site_id,
                            name=item.name,
                            slug=item.slug,
                            version=item.version,
                            update_available=item.update_available,
                            new_version=item.update_version,
                            is_active=item.is_active,
                        )
                        for item in items
                    ]
                )
        logger.debug(
            "inventory_replaced",
            site_id=site_id,
            item_type=item_type.value,
            count=len(items),
        )

    async def update_inventory_item(
        self, site_id: int, item_type: ItemType, slug: str, **fields: Any
    ) -> int:
        unknown = set(fields) - RECONCILABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported inventory fields: {sorted(unknown)}")
        if not fields:
            return 0

        model = inventory_model(item_type)
        async with self.session_maker() as db:
            async with db.begin():
                result = await db.execute(
                    update(model)
                    .where(model.site_id == site_id, model.slug == slug)
                    .values(**fields)
                )
        return result.rowcount or 0

    async def list_inventory(
        self, site_id: int, item_type: ItemType
    ) -> List[Union[Plugin, Theme]]:
        model = inventory_model(item_type)
        async with self.session_maker() as db:
            result = await db.execute(
                select(model).where(model.site_id == site_id).order_by(model.slug)
            )
            return list(result.scalars().all())

    async def count_pending_updates(
        self, site_ids: Optional[Iterable[int]] = None
    ) -> Dict[int, Tuple[int, int]]:
        ids = list(site_ids) if site_ids is not None else None
        counts: Dict[int, List[int]] = {}

        async with self.session_maker() as db:
            for position, model in enumerate((Plugin, Theme)):
                stmt = (
                    select(model.site_id, func.count(model.id))
                    .where(model.update_available.is_(True))
                    .group_by(model.site_id)
                )
                if ids is not None:
                    stmt = stmt.where(model.site_id.in_(ids))
                for site_id, count in (await db.execute(stmt)).all():
                    counts.setdefault(site_id, [0, 0])[position] = count

        return {site_id: (pair[0], pair[1]) for site_id, pair in counts.items()}

    async def list_pending_updates(
        self, site_ids: Optional[Iterable[int]] = None
    ) -> List[PendingUpdate]:
        ids = list(site_ids) if site_ids is not None else None
        pending: List[PendingUpdate] = []

        async with self.session_maker() as db:
            for item_type in (ItemType.PLUGIN, ItemType.THEME):
                model = inventory_model(item_type)
                stmt = (
                    select(model)
                    .join(Site, Site.id == model.site_id)
                    .where(model.update_available.is_(True), Site.is_archived.is_(False))
                    .order_by(model.site_id, model.slug)
                )
                if ids is not None:
                    stmt = stmt.where(model.site_id.in_(ids))
                for row in (await db.execute(stmt)).scalars().all():
                    pending.append(
                        PendingUpdate(
                            id=f"{row.site_id}-{item_type.value}-{row.slug}",
                            name=row.name,
                            item_type=item_type,
                            is_active=bool(row.is_active),
                            site_id=row.site_id,
                            slug=row.slug,
                        )
                    )

        return pending

    async def append_update_log(self, entry: UpdateLogEntry) -> None:
        async with self.session_maker() as db:
            async with db.begin():
                db.add(
                    UpdateLog(
                        site_id=entry.site_id,
                        item_type=entry.item_type.value,
                        item_slug=entry.item_slug,
                        item_name=entry.item_name,
                        from_version=entry.from_version,
                        to_version=entry.to_version,
                        status=entry.status.value,
                        error_message=entry.error_message,
                        completed_at=entry.completed_at,
                    )
                )
