from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel


class SiteHealthCheck(BaseModel):
    """Reachability report for one remote site."""
    online: bool
    version: str = "unknown"
    is_ssl: bool = False


class RemoteItem(BaseModel):
    """One installed plugin or theme as reported by the remote site."""
    slug: str
    name: str
    version: Optional[str] = None
    update_version: Optional[str] = None
    is_active: bool = False

    @property
    def update_available(self) -> bool:
        return self.update_version is not None


class AppliedUpdate(BaseModel):
    """Outcome of a successful remote update call."""
    slug: str
    version: str


class RemoteSiteClient(ABC):
    """
    Abstract capability interface over one remote site's management API.

    All methods may raise RemoteTransportError (per-call failure) or
    RemoteConnectionError (site unreachable / credentials rejected).
    """

    async def __aenter__(self) -> "RemoteSiteClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Release transport resources. No-op by default."""
        return None

    @abstractmethod
    async def check_health(self) -> SiteHealthCheck:
        """Report whether the site is reachable."""
        raise NotImplementedError()

    @abstractmethod
    async def list_plugins(self) -> List[RemoteItem]:
        raise NotImplementedError()

    @abstractmethod
    async def list_themes(self) -> List[RemoteItem]:
        raise NotImplementedError()

    @abstractmethod
    async def apply_plugin_update(self, slug: str) -> AppliedUpdate:
        raise NotImplementedError()

    @abstractmethod
    async def apply_theme_update(self, slug: str) -> AppliedUpdate:
        raise NotImplementedError()
