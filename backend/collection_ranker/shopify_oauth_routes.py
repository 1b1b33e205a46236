from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import os
import urllib.parse
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

import requests
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .auth import normalize_shop_domain
from .db import get_session
from .settings_store import delete_shop_session, get_shop_session, store_shop_session

logger = logging.getLogger(__name__)

router = APIRouter()

STATE_TTL_SECONDS = 10 * 60


def _shop_param(raw: str) -> str:
    try:
        return normalize_shop_domain(raw)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _client_creds() -> Tuple[str, str]:
    cid, sec = config.api_credentials()
    if not cid or not sec:
        raise HTTPException(status_code=500, detail="SHOPIFY_API_KEY/SHOPIFY_API_SECRET not configured")
    return cid, sec


def _base_url() -> str:
    base = config.app_url()
    if not base:
        raise HTTPException(status_code=500, detail="SHOPIFY_APP_URL not configured")
    return base


def _now_ts() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def sign_state(payload: Dict[str, Any]) -> str:
    _, secret = _client_creds()
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_state(token: str) -> Dict[str, Any]:
    _, secret = _client_creds()
    try:
        return jwt.decode(token, secret, algorithms=["HS256"])
    except JWTError:
        raise HTTPException(status_code=400, detail="invalid state")


def _canonical_hmac_msg(qp: List[Tuple[str, str]]) -> str:
    # Exclude hmac + signature; keep every other key, sorted.
    keep = [(k, v) for (k, v) in qp if k not in ("hmac", "signature")]
    keep.sort(key=lambda kv: (kv[0], kv[1]))
    return urllib.parse.urlencode(keep, doseq=True)


def verify_query_hmac(qp: List[Tuple[str, str]], client_secret: str) -> bool:
    provided = ""
    for k, v in qp:
        if k == "hmac":
            provided = (v or "").strip().lower()
    if not provided:
        return False
    msg = _canonical_hmac_msg(qp)
    expected = hmac.new(client_secret.encode("utf-8"), msg.encode("utf-8"), hashlib.sha256).hexdigest().lower()
    return hmac.compare_digest(expected, provided)


def verify_webhook_hmac(raw_body: bytes, recv_hmac: str, secret: str) -> bool:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    return hmac.compare_digest(expected, (recv_hmac or "").strip())


@router.get("/auth/status")
async def oauth_status(
    shop: str = Query(...),
    db: AsyncSession = Depends(get_session),
):
    shop_norm = _shop_param(shop)
    rec = await get_shop_session(db, shop_norm)
    if not rec:
        return {"connected": False, "shop": shop_norm, "scopes": None}
    return {"connected": True, "shop": rec.shop, "scopes": rec.scopes}


@router.get("/auth")
async def oauth_start(shop: str = Query(..., description="Shop domain, e.g. best-shop.myshopify.com")):
    shop_norm = _shop_param(shop)
    cid, _ = _client_creds()
    redirect_uri = f"{_base_url()}/auth/callback"
    now = _now_ts()
    state = sign_state(
        {
            "shop": shop_norm,
            "nonce": os.urandom(16).hex(),
            "iat": now,
            "exp": now + STATE_TTL_SECONDS,
        }
    )
    qs = urllib.parse.urlencode(
        {
            "client_id": cid,
            "scope": config.scopes(),
            "redirect_uri": redirect_uri,
            "state": state,
        }
    )
    return RedirectResponse(url=f"https://{shop_norm}/admin/oauth/authorize?{qs}", status_code=302)


@router.get("/auth/callback")
async def oauth_callback(
    request: Request,
    state: str = Query(...),
    shop: str = Query(...),
    code: str = Query(...),
    db: AsyncSession = Depends(get_session),
):
    shop_norm = _shop_param(shop)
    st = verify_state(state)
    shop_in_state = _shop_param(str(st.get("shop") or ""))
    if not hmac.compare_digest(shop_in_state, shop_norm):
        raise HTTPException(status_code=400, detail="state/shop mismatch")

    cid, client_secret = _client_creds()
    qp = [(k, str(v)) for (k, v) in request.query_params.multi_items()]
    if not verify_query_hmac(qp, client_secret):
        logger.warning("OAuth callback with invalid hmac for %s", shop_norm)
        return JSONResponse({"error": "invalid_hmac", "shop": shop_norm}, status_code=400)

    token_url = f"https://{shop_norm}/admin/oauth/access_token"
    try:
        # requests is blocking; keep it off the event loop
        resp = await run_in_threadpool(
            requests.post,
            token_url,
            json={"client_id": cid, "client_secret": client_secret, "code": code},
            timeout=30,
        )
    except requests.RequestException as e:
        logger.error("Token exchange request failed for %s: %s", shop_norm, e)
        return JSONResponse(
            {"error": "token_exchange_failed", "shop": shop_norm, "detail": str(e)},
            status_code=502,
        )
    try:
        resp.raise_for_status()
    except requests.HTTPError:
        logger.error("Token exchange failed for %s: HTTP %s", shop_norm, resp.status_code)
        return JSONResponse(
            {
                "error": "token_exchange_failed",
                "status": resp.status_code,
                "shop": shop_norm,
                "body": (resp.text or "")[:2000],
            },
            status_code=502,
        )
    data = resp.json() if resp.content else {}
    access_token = (data.get("access_token") or "").strip()
    scopes = (data.get("scope") or "").strip()
    if not access_token:
        return JSONResponse({"error": "token_exchange_failed", "shop": shop_norm, "missing": "access_token"}, status_code=502)

    await store_shop_session(db, shop_norm, access_token=access_token, scopes=scopes)
    logger.info("Stored offline session for %s (scopes=%s)", shop_norm, scopes)

    # Back into the embedded admin
    api_key, _ = config.api_credentials()
    return RedirectResponse(url=f"https://{shop_norm}/admin/apps/{urllib.parse.quote(api_key)}", status_code=302)


@router.post("/webhooks/app/uninstalled")
async def app_uninstalled_webhook(
    request: Request,
    x_shopify_hmac_sha256: str = Header(default=""),
    x_shopify_shop_domain: str = Header(default=""),
    db: AsyncSession = Depends(get_session),
):
    _, secret = _client_creds()
    raw = await request.body()
    if not verify_webhook_hmac(raw, x_shopify_hmac_sha256, secret):
        raise HTTPException(status_code=401, detail="invalid webhook hmac")
    shop_norm = _shop_param(x_shopify_shop_domain)
    removed = await delete_shop_session(db, shop_norm)
    logger.info("App uninstalled from %s (session removed=%s)", shop_norm, removed)
    return {"ok": True}
