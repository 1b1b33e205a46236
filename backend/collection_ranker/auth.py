from __future__ import annotations

import logging
import re
import urllib.parse
from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .db import get_session
from .errors import SESSION_EXPIRED_MESSAGE, AuthenticationRequired
from .settings_store import get_shop_session
from .shopify_client import AdminApi

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_SHOP_RE = re.compile(r"([a-z0-9][a-z0-9-]*\.myshopify\.com)")


def normalize_shop_domain(raw: str) -> str:
    """
    Strictly normalize a shop domain, accepting bare hosts and pasted URLs
    ('https://Foo.myshopify.com/admin' -> 'foo.myshopify.com').

    Raises ValueError when no *.myshopify.com host can be found.
    """
    s = (raw or "").strip().lower()
    if not s:
        raise ValueError("missing shop")

    host = s
    if "://" in s:
        u = urllib.parse.urlparse(s)
        host = (u.netloc or u.path or "").strip().lower()
    # Remove path/query fragments if any remain
    host = host.split("/")[0].split("?")[0].split("#")[0].strip()

    m = _SHOP_RE.fullmatch(host)
    if not m:
        raise ValueError("invalid shop (expected *.myshopify.com)")
    return m.group(1)


def decode_session_token(token: str) -> Dict[str, Any]:
    """Verify an App Bridge session token and return its claims.

    Tokens are HS256 JWTs signed with the app secret, with the app's API key as
    audience and the shop's admin URL in ``dest``.
    """
    api_key, api_secret = config.api_credentials()
    if not api_key or not api_secret:
        raise AuthenticationRequired("SHOPIFY_API_KEY/SHOPIFY_API_SECRET not configured")
    try:
        payload = jwt.decode(
            token,
            api_secret,
            algorithms=["HS256"],
            audience=api_key,
            options={"leeway": 10},
        )
    except ExpiredSignatureError:
        raise AuthenticationRequired(SESSION_EXPIRED_MESSAGE)
    except JWTError as e:
        raise AuthenticationRequired(f"invalid session token: {e}")
    try:
        payload["shop"] = normalize_shop_domain(str(payload.get("dest") or ""))
    except ValueError:
        raise AuthenticationRequired("invalid session token: bad dest")
    return payload


async def authenticate_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_session),
) -> AdminApi:
    """FastAPI dependency returning the Admin API handle for the calling shop.

    - Bearer session token → offline token stored for that shop
    - no bearer token, SHOPIFY_SHOP + SHOPIFY_ACCESS_TOKEN set → custom-app credentials
    """
    if credentials and (credentials.credentials or "").strip():
        claims = decode_session_token(credentials.credentials.strip())
        shop = claims["shop"]
        rec = await get_shop_session(db, shop)
        if not rec:
            logger.info("No stored session for %s; app must be (re)installed", shop)
            raise AuthenticationRequired("Authentication required")
        return AdminApi(shop, rec.access_token)

    shop, token = config.ambient_shop_credentials()
    if shop and token:
        try:
            return AdminApi(normalize_shop_domain(shop), token)
        except ValueError:
            logger.error("SHOPIFY_SHOP is not a *.myshopify.com domain: %s", shop)
    raise AuthenticationRequired("Authentication required")
