"""
Site Model.
One managed remote WordPress site and its last known health attributes.
"""

from datetime import datetime, timezone
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wpfleet.shared.db.base import Base

if TYPE_CHECKING:
    from wpfleet.models.inventory import Plugin, Theme
    from wpfleet.models.update_log import UpdateLog


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Site(Base):
    __tablename__ = "sites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False, unique=True)

    # WordPress application password credentials; api_password holds ciphertext only
    api_username: Mapped[str] = mapped_column(String(255), nullable=False)
    api_password: Mapped[str] = mapped_column(Text, nullable=False)

    wp_version: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    php_version: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # online | offline | unknown
    status: Mapped[str] = mapped_column(String(16), default="unknown", nullable=False)
    ssl_valid: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    ssl_expiry: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_checked: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_synced: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    plugins: Mapped[List["Plugin"]] = relationship(
        back_populates="site", cascade="all, delete-orphan", passive_deletes=True
    )
    themes: Mapped[List["Theme"]] = relationship(
        back_populates="site", cascade="all, delete-orphan", passive_deletes=True
    )
    update_logs: Mapped[List["UpdateLog"]] = relationship(
        back_populates="site", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Site id={self.id} url={self.url!r} status={self.status}>"
