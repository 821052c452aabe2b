"""
WordPress REST API client.

Authenticates with an application password (Basic auth, WP 5.6+). Inventory
comes from the core `wp/v2` endpoints; updates go through the fleet
connector plugin's `wp-manager/v1` namespace.
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from wpfleet.shared.adapters.base import (
    AppliedUpdate,
    RemoteItem,
    RemoteSiteClient,
    SiteHealthCheck,
)
from wpfleet.shared.core.exceptions import RemoteConnectionError, RemoteTransportError

logger = structlog.get_logger()

PLUGINS_PATH = "/wp/v2/plugins"
THEMES_PATH = "/wp/v2/themes"
PLUGIN_UPDATE_PATH = "/wp-manager/v1/plugins/update"
THEME_UPDATE_PATH = "/wp-manager/v1/themes/update"

# Credentials rejected: the whole site is unusable until they are fixed.
_AUTH_STATUS_CODES = {401, 403}
_ERROR_BODY_LIMIT = 300


class WordPressClient(RemoteSiteClient):
    def __init__(
        self,
        site_url: str,
        username: str,
        password: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        user_agent: str = "wpfleet/0.1",
    ):
        self.site_url = site_url.rstrip("/")
        self._auth = httpx.BasicAuth(username, password)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            headers={"User-Agent": user_agent},
        )

    @property
    def api_root(self) -> str:
        return f"{self.site_url}/wp-json"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.api_root}{path}"
        try:
            response = await self._client.request(
                method,
                url,
                json=json_body,
                auth=self._auth,
                headers={"Content-Type": "application/json"},
            )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise RemoteConnectionError(
                f"Connection to {self.site_url} failed: {exc}",
                details={"url": url},
            ) from exc

        if response.status_code in _AUTH_STATUS_CODES:
            raise RemoteConnectionError(
                f"WordPress API rejected credentials: {response.status_code}",
                status_code=response.status_code,
                details={"url": url},
            )
        if response.is_error:
            raise RemoteTransportError(
                f"WordPress API error: {response.status_code} - {response.text[:_ERROR_BODY_LIMIT]}",
                status_code=response.status_code,
                details={"url": url},
            )

        try:
            return response.json()
        except ValueError as exc:
            raise RemoteTransportError(
                "WordPress API returned a non-JSON response",
                status_code=response.status_code,
                details={"url": url},
            ) from exc

    async def check_health(self) -> SiteHealthCheck:
        """Never raises: any failure reports the site as offline."""
        try:
            response = await self._client.get(f"{self.api_root}/", auth=self._auth)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            logger.info("wordpress_health_unreachable", site_url=self.site_url, error=str(exc))
            return SiteHealthCheck(online=False)

        if response.is_error:
            logger.info(
                "wordpress_health_error_status",
                site_url=self.site_url,
                status_code=response.status_code,
            )
            return SiteHealthCheck(online=False)

        version = "unknown"
        try:
            data = response.json()
            if isinstance(data, dict):
                version = str(data.get("description") or "unknown")
        except ValueError:
            pass

        return SiteHealthCheck(
            online=True,
            version=version,
            is_ssl=self.site_url.startswith("https"),
        )

    @staticmethod
    def _parse_items(payload: Any, key_field: str) -> List[RemoteItem]:
        if not isinstance(payload, list):
            raise RemoteTransportError("WordPress API returned an unexpected inventory payload")

        items: List[RemoteItem] = []
        for raw in payload:
            try:
                slug = str(raw[key_field])
                update = raw.get("update")
                items.append(
                    RemoteItem(
                        slug=slug,
                        name=str(raw.get("name") or slug),
                        version=raw.get("version"),
                        update_version=update.get("version") if isinstance(update, dict) else None,
                        is_active=raw.get("status") == "active",
                    )
                )
            except (KeyError, TypeError, AttributeError) as exc:
                raise RemoteTransportError(
                    f"WordPress API returned a malformed inventory entry: missing {key_field}"
                ) from exc
        return items

    async def list_plugins(self) -> List[RemoteItem]:
        payload = await self._request("GET", PLUGINS_PATH)
        return self._parse_items(payload, "plugin")

    async def list_themes(self) -> List[RemoteItem]:
        payload = await self._request("GET", THEMES_PATH)
        return self._parse_items(payload, "stylesheet")

    async def _apply_update(self, path: str, slug: str) -> AppliedUpdate:
        payload = await self._request("POST", path, json_body={"slug": slug})
        version = payload.get("version") if isinstance(payload, dict) else None
        if not version:
            raise RemoteTransportError(
                f"Update of {slug} did not report a new version",
                details={"slug": slug},
            )
        return AppliedUpdate(slug=slug, version=str(version))

    async def apply_plugin_update(self, slug: str) -> AppliedUpdate:
        return await self._apply_update(PLUGIN_UPDATE_PATH, slug)

    async def apply_theme_update(self, slug: str) -> AppliedUpdate:
        return await self._apply_update(THEME_UPDATE_PATH, slug)
