"""
Plugin and Theme inventory models.

A site's rows are replaced wholesale on every successful sync; rows are
addressed by (site_id, slug) for field-level updates.
"""

from typing import Optional, TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wpfleet.shared.db.base import Base

if TYPE_CHECKING:
    from wpfleet.models.site import Site


class Plugin(Base):
    __tablename__ = "plugins"
    __table_args__ = (Index("ix_plugins_site_slug", "site_id", "slug"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    site_id: Mapped[int] = mapped_column(
        ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    update_available: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    new_version: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    site: Mapped["Site"] = relationship(back_populates="plugins")


class Theme(Base):
    __tablename__ = "themes"
    __table_args__ = (Index("ix_themes_site_slug", "site_id", "slug"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    site_id: Mapped[int] = mapped_column(
        ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    update_available: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    new_version: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    site: Mapped["Site"] = relationship(back_populates="themes")
