"""
Async client for the Instapaper Full API (https://www.instapaper.com/api).

Instapaper uses xAuth: username/password are exchanged once for an OAuth 1.0a
access token, and every later request is signed with HMAC-SHA1. The core only
needs two operations from it:

    list_items(tag=None)      -> [SourceItem]
    fetch_content(item_id)    -> article HTML

Any transport error or non-2xx response is raised as SourceUnavailable.
"""

import logging
from typing import Dict, List, Optional
from urllib.parse import parse_qs, urlencode

import httpx
from oauthlib.oauth1 import SIGNATURE_HMAC_SHA1, Client as OAuth1Client

from instapod.config import SOURCE_TIMEOUT, InstapaperConfig
from instapod.errors import SourceUnavailable
from instapod.models import SourceItem

logger = logging.getLogger(__name__)

BASE_URL = "https://www.instapaper.com"
LIST_LIMIT = 500

_FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


class InstapaperClient:
    """Read-only Instapaper bookmark source.

    Usage:
        async with InstapaperClient(config.instapaper) as client:
            items = await client.list_items(tag="podcast")
    """

    def __init__(self, config: InstapaperConfig, http_client: Optional[httpx.AsyncClient] = None,
                 base_url: str = BASE_URL):
        self.config = config
        self.base_url = base_url.rstrip("/")
        self.http = http_client or httpx.AsyncClient(timeout=SOURCE_TIMEOUT)
        self._token: Optional[str] = None
        self._token_secret: Optional[str] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self) -> None:
        await self.http.aclose()

    # --- OAuth ------------------------------------------------------------

    def _signer(self) -> OAuth1Client:
        return OAuth1Client(
            self.config.consumer_key,
            client_secret=self.config.consumer_secret,
            resource_owner_key=self._token,
            resource_owner_secret=self._token_secret,
            signature_method=SIGNATURE_HMAC_SHA1,
        )

    async def _post(self, path: str, params: Optional[Dict[str, str]] = None) -> httpx.Response:
        url = f"{self.base_url}{path}"
        body = urlencode(params or {})
        signed_url, headers, signed_body = self._signer().sign(
            url, http_method="POST", body=body, headers=dict(_FORM_HEADERS),
        )
        try:
            response = await self.http.post(signed_url, headers=headers, content=signed_body)
        except httpx.HTTPError as e:
            raise SourceUnavailable(f"Instapaper request to {path} failed: {e}") from e
        if response.status_code >= 400:
            if response.status_code in (401, 403):
                # token revoked or expired: log in again on the next call
                self._token = self._token_secret = None
            logger.error(f"[instapaper] API error ({response.status_code}) on {path}: {response.text[:200]}")
            raise SourceUnavailable(f"Instapaper API request failed ({response.status_code})")
        return response

    async def authenticate(self) -> None:
        """Exchange username/password for an access token (once per client)."""
        if self._token:
            return
        response = await self._post("/api/1/oauth/access_token", {
            "x_auth_username": self.config.username,
            "x_auth_password": self.config.password,
            "x_auth_mode": "client_auth",
        })
        params = parse_qs(response.text)
        token = params.get("oauth_token", [""])[0]
        secret = params.get("oauth_token_secret", [""])[0]
        if not token or not secret:
            raise SourceUnavailable("Instapaper authentication returned no token")
        self._token, self._token_secret = token, secret

    # --- Source operations -------------------------------------------------

    async def list_items(self, tag: Optional[str] = None) -> List[SourceItem]:
        """Unread bookmarks, optionally only those carrying `tag`."""
        await self.authenticate()
        params = {"limit": str(LIST_LIMIT)}
        if tag:
            params["tag"] = tag
        response = await self._post("/api/1/bookmarks/list", params)
        try:
            data = response.json()
        except ValueError as e:
            raise SourceUnavailable(f"Instapaper returned invalid JSON: {e}") from e

        # The list endpoint mixes user/meta/bookmark objects
        if isinstance(data, dict):
            data = data.get("bookmarks", [])
        return [_to_source_item(entry) for entry in data
                if isinstance(entry, dict) and entry.get("type") == "bookmark"]

    async def fetch_content(self, item_id: str) -> str:
        """Full processed HTML text of one bookmark."""
        await self.authenticate()
        response = await self._post("/api/1/bookmarks/get_text", {"bookmark_id": str(item_id)})
        return response.text


def _to_source_item(entry: dict) -> SourceItem:
    tags = frozenset(
        t.get("name", "") if isinstance(t, dict) else str(t)
        for t in entry.get("tags") or []
    ) - {""}
    return SourceItem(
        id=str(entry["bookmark_id"]),
        title=entry.get("title") or "",
        source_url=entry.get("url") or "",
        tags=tags,
    )
