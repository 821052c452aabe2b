from typing import Callable, Optional

import httpx

from wpfleet.models.site import Site
from wpfleet.shared.adapters.base import RemoteSiteClient
from wpfleet.shared.adapters.wordpress import WordPressClient
from wpfleet.shared.core.config import Settings, get_settings
from wpfleet.shared.core.security import decrypt_credential

# Builds a ready-to-use client for a stored site. May raise CredentialError.
SiteClientFactory = Callable[[Site], RemoteSiteClient]


def build_site_client(
    site: Site,
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> RemoteSiteClient:
    """Decrypt the site's application password and build its WordPress client."""
    settings = settings or get_settings()
    password = decrypt_credential(site.api_password)
    return WordPressClient(
        site.url,
        site.api_username,
        password,
        http_client=http_client,
        timeout=settings.REMOTE_TIMEOUT_SECONDS,
        connect_timeout=settings.REMOTE_CONNECT_TIMEOUT_SECONDS,
        user_agent=settings.REMOTE_USER_AGENT,
    )
