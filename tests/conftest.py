"""
Global pytest fixtures for the wpfleet test suite.

Provides:
- Temp-file SQLite database (aiosqlite) with all tables created
- SQLAlchemy inventory store bound to it
- Site factory storing encrypted credentials
- Scriptable fake RemoteSiteClient
"""
import os

# Set test environment BEFORE any wpfleet imports
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENCRYPTION_KEY"] = "32-byte-long-test-encryption-key"
os.environ["KDF_SALT"] = "S0RGX1NBTFRfRk9SX1RFU1RJTkdfMzJfQllURVNfT0s="  # Base64 for 'KDF_SALT_FOR_TESTING_32_BYTES_OK'
os.environ.pop("NOTIFICATION_WEBHOOK_URL", None)

from typing import Any, Awaitable, Callable, Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from wpfleet.models import Plugin, Site, Theme, UpdateLog  # noqa: E402,F401
from wpfleet.modules.fleet.domain.store import SQLAlchemyInventoryStore  # noqa: E402
from wpfleet.shared.adapters.base import (  # noqa: E402
    AppliedUpdate,
    RemoteItem,
    RemoteSiteClient,
    SiteHealthCheck,
)
from wpfleet.shared.core.security import encrypt_string  # noqa: E402
from wpfleet.shared.db.base import Base  # noqa: E402
from wpfleet.shared.db.session import create_engine_and_session_maker  # noqa: E402


class FakeSiteClient(RemoteSiteClient):
    """
    In-memory stand-in for a remote WordPress site.

    Errors are raised by assigning exceptions: `health_error`,
    `plugins_error`, `themes_error`, or per-slug `update_errors`.
    Every call is recorded in `calls` in order.
    """

    def __init__(
        self,
        *,
        online: bool = True,
        plugins: Optional[List[RemoteItem]] = None,
        themes: Optional[List[RemoteItem]] = None,
        update_versions: Optional[Dict[str, str]] = None,
        update_errors: Optional[Dict[str, Exception]] = None,
        health_error: Optional[Exception] = None,
        plugins_error: Optional[Exception] = None,
        themes_error: Optional[Exception] = None,
        before_update: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        self.online = online
        self.plugins = plugins or []
        self.themes = themes or []
        self.update_versions = update_versions or {}
        self.update_errors = update_errors or {}
        self.health_error = health_error
        self.plugins_error = plugins_error
        self.themes_error = themes_error
        self.before_update = before_update
        self.calls: List[tuple] = []
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True

    async def check_health(self) -> SiteHealthCheck:
        self.calls.append(("check_health",))
        if self.health_error:
            raise self.health_error
        return SiteHealthCheck(online=self.online, version="6.4.2", is_ssl=True)

    async def list_plugins(self) -> List[RemoteItem]:
        self.calls.append(("list_plugins",))
        if self.plugins_error:
            raise self.plugins_error
        return list(self.plugins)

    async def list_themes(self) -> List[RemoteItem]:
        self.calls.append(("list_themes",))
        if self.themes_error:
            raise self.themes_error
        return list(self.themes)

    async def _apply(self, call: str, slug: str) -> AppliedUpdate:
        self.calls.append((call, slug))
        if self.before_update:
            await self.before_update(slug)
        error = self.update_errors.get(slug)
        if error:
            raise error
        return AppliedUpdate(slug=slug, version=self.update_versions.get(slug, "2.0.0"))

    async def apply_plugin_update(self, slug: str) -> AppliedUpdate:
        return await self._apply("apply_plugin_update", slug)

    async def apply_theme_update(self, slug: str) -> AppliedUpdate:
        return await self._apply("apply_theme_update", slug)

    def applied_slugs(self) -> List[str]:
        return [c[1] for c in self.calls if c[0].startswith("apply_")]


def remote_item(slug: str, version: str = "1.0.0", update: Optional[str] = None, active: bool = True) -> RemoteItem:
    return RemoteItem(
        slug=slug,
        name=slug.replace("-", " ").title(),
        version=version,
        update_version=update,
        is_active=active,
    )


@pytest.fixture
def fake_client_cls():
    return FakeSiteClient


@pytest.fixture
def make_item():
    return remote_item


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    # A file database: with NullPool every session opens a fresh connection,
    # which would see an empty :memory: database.
    engine, maker = create_engine_and_session_maker(
        f"sqlite+aiosqlite:///{tmp_path / 'wpfleet-test.db'}"
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield maker
    await engine.dispose()


@pytest.fixture
def store(session_maker):
    return SQLAlchemyInventoryStore(session_maker)


@pytest.fixture
def create_site(session_maker):
    """Persist a Site with an encrypted application password."""
    counter = {"n": 0}

    async def _create(**overrides: Any) -> Site:
        counter["n"] += 1
        n = counter["n"]
        values: Dict[str, Any] = {
            "name": f"Site {n}",
            "url": f"https://site{n}.example.com",
            "api_username": "admin",
            "api_password": encrypt_string("abcd efgh ijkl mnop"),
            "status": "unknown",
        }
        values.update(overrides)
        site = Site(**values)
        async with session_maker() as db:
            db.add(site)
            await db.commit()
        return site

    return _create
