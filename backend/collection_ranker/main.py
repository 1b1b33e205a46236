import html
import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from . import config
from .auth import authenticate_admin, normalize_shop_domain
from .collections import list_collections
from .db import init_db
from .errors import SESSION_EXPIRED_MESSAGE, AuthenticationRequired, RankSyncError, ShopifyApiError
from .rank_sync import sync_collection_ranks
from .shopify_client import AdminApi
from .shopify_oauth_routes import router as oauth_router

config.configure_logging()
logger = logging.getLogger(__name__)

# ---------- FastAPI ----------
app = FastAPI(title="Collection Ranker", version="1.0.0")
app.include_router(oauth_router)

# Compress JSON responses for large collection pages
app.add_middleware(GZipMiddleware, minimum_size=500)


@app.exception_handler(RankSyncError)
async def _rank_sync_error_handler(request: Request, exc: RankSyncError):
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


# ---------- Schemas ----------
class RenderBody(BaseModel):
    collection_id: str = Field(alias="collectionId")
    collection_handle: str = Field(alias="collectionHandle")


# ---------- API ----------
@app.get("/api/health")
async def health():
    return {"ok": True}


@app.get("/api/collections")
async def get_collections(
    page: int = Query(1, ge=1),
    after: Optional[str] = Query(None),
    api: AdminApi = Depends(authenticate_admin),
):
    per_page = config.collections_per_page()
    try:
        data = await list_collections(api, first=per_page, after=after or None)
    except ShopifyApiError as e:
        if e.is_auth_error:
            raise AuthenticationRequired(SESSION_EXPIRED_MESSAGE) from e
        logger.error("Loading collections failed for %s: %s", api.shop, e.message)
        return JSONResponse({"error": e.message or "Failed to load collections"}, status_code=500)
    except Exception as e:
        logger.exception("Loading collections failed for %s", api.shop)
        return JSONResponse({"error": str(e) or "Failed to load collections"}, status_code=500)
    return {
        **data,
        "currentPage": page,
        "perPage": per_page,
        "shop": api.shop,
    }


@app.post("/api/collections/render")
async def render_collection(body: RenderBody, api: AdminApi = Depends(authenticate_admin)):
    logger.info("Render requested for collection %s (%s) on %s", body.collection_id, body.collection_handle, api.shop)
    try:
        results = await sync_collection_ranks(
            api,
            body.collection_id,
            body.collection_handle,
            max_products=config.rank_max_products(),
        )
    except RankSyncError:
        raise
    except Exception as e:
        logger.exception("Render failed for collection %s", body.collection_id)
        return JSONResponse({"error": str(e) or "An unexpected error occurred"}, status_code=500)
    return {
        "success": True,
        "results": results.model_dump(by_alias=True),
        "message": results.summary(),
    }


# ---------- Embedded admin page ----------
FRONTEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "frontend"))


def _frame_ancestors(shop: Optional[str]) -> str:
    ancestors = ["https://admin.shopify.com"]
    try:
        if shop:
            ancestors.insert(0, f"https://{normalize_shop_domain(shop)}")
    except ValueError:
        pass
    return "frame-ancestors " + " ".join(ancestors) + ";"


@app.get("/")
@app.get("/app")
async def admin_page(shop: Optional[str] = Query(None)):
    index_path = os.path.join(FRONTEND_DIR, "index.html")
    if not os.path.isfile(index_path):
        return JSONResponse({"detail": "Not Found"}, status_code=404)
    with open(index_path, encoding="utf-8") as fh:
        page = fh.read()
    api_key, _ = config.api_credentials()
    page = page.replace("%SHOPIFY_API_KEY%", html.escape(api_key, quote=True))
    return HTMLResponse(page, headers={"Content-Security-Policy": _frame_ancestors(shop)})


# Ensure database tables exist on startup
@app.on_event("startup")
async def _init_db_tables():
    try:
        await init_db()
    except Exception as e:
        logger.error("[DB] Failed to init tables: %s", e)


# Log routes on startup to verify ordering and presence
@app.on_event("startup")
async def _log_routes():
    logger.info("[ROUTES] Registered routes in order:")
    for r in app.router.routes:
        path = getattr(r, "path", "?")
        name = getattr(r, "name", "")
        logger.info(" - %s: %s (%s)", r.__class__.__name__, path, name)
