from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Dict, Optional

import httpx

from . import config
from .errors import ShopifyApiError

logger = logging.getLogger(__name__)

THROTTLE_STATUSES = (429, 430, 503)


class AdminApi:
    """Authenticated handle on one shop's Admin GraphQL API.

    Callers only see ``graphql()``; where the token came from (embedded session
    or custom-app env) is decided by ``auth.authenticate_admin``.
    """

    def __init__(
        self,
        shop: str,
        access_token: str,
        *,
        api_version: Optional[str] = None,
        max_retries: Optional[int] = None,
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shop = (shop or "").strip().lower()
        self.access_token = access_token
        self.api_version = api_version or config.api_version()
        self.max_retries = max_retries if max_retries is not None else config.graphql_max_retries()
        self.timeout = timeout
        self._transport = transport

    def __repr__(self) -> str:
        # never include the token
        return f"AdminApi(shop={self.shop!r}, api_version={self.api_version!r})"

    @property
    def graphql_url(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}/graphql.json"

    def admin_url(self, gid: str) -> str:
        """'gid://shopify/Collection/123' -> 'https://<shop>/admin/collections/123'."""
        parts = (gid or "").split("/")
        resource = parts[-2].lower() + "s" if len(parts) >= 2 else ""
        return f"https://{self.shop}/admin/{resource}/{parts[-1]}"

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Shopify-Access-Token": self.access_token,
        }
        base_delay = 0.35
        attempts = max(1, self.max_retries)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(attempts):
                last_attempt = attempt >= attempts - 1
                wait = base_delay * (2 ** attempt) + random.uniform(0, 0.15)
                try:
                    r = await client.post(self.graphql_url, headers=headers, json={"query": query, "variables": variables or {}})
                except httpx.HTTPError as e:
                    raise ShopifyApiError(f"Shopify request failed: {e}") from e

                if r.status_code in THROTTLE_STATUSES:
                    if not last_attempt:
                        ra = r.headers.get("Retry-After")
                        try:
                            wait = float(ra) if ra else wait
                        except ValueError:
                            pass
                        logger.warning("Shopify throttled (%s), retry %s in %.2fs", r.status_code, attempt + 1, wait)
                        await asyncio.sleep(wait)
                        continue
                    raise ShopifyApiError("Shopify API is throttling requests. Please try again shortly.", r.status_code)

                if r.status_code >= 400:
                    raise ShopifyApiError(
                        f"Shopify request failed with HTTP {r.status_code}: {(r.text or '')[:500]}",
                        r.status_code,
                    )

                data = r.json()
                errs = data.get("errors") or []
                if errs:
                    is_throttled = any(((e.get("extensions") or {}).get("code") or "").upper() == "THROTTLED" for e in errs)
                    if is_throttled and not last_attempt:
                        logger.warning("Shopify GraphQL throttled, retry %s in %.2fs", attempt + 1, wait)
                        await asyncio.sleep(wait)
                        continue
                    raise ShopifyApiError(f"Shopify GraphQL errors: {errs}", r.status_code)
                return data.get("data") or {}

        raise ShopifyApiError("Shopify API is throttling requests. Please try again shortly.", 429)
