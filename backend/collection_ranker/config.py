import logging
import os
import sys
from typing import Optional, Tuple

DEFAULT_API_VERSION = "2024-10"
DEFAULT_SCOPES = "write_products,read_products"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./data/app.sqlite"

RANK_NAMESPACE = "custom"
RENDERED_AT_KEY = "rendered_at"


def _env(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _int_env(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


# ---------- Shopify app credentials ----------
def api_credentials() -> Tuple[str, str]:
    """Return (api_key, api_secret); empty strings when unset."""
    return _env("SHOPIFY_API_KEY"), _env("SHOPIFY_API_SECRET")


def api_version() -> str:
    return _env("SHOPIFY_API_VERSION", DEFAULT_API_VERSION)


def app_url() -> str:
    return _env("SHOPIFY_APP_URL").rstrip("/")


def scopes() -> str:
    raw = _env("SCOPES", DEFAULT_SCOPES)
    # Shopify expects comma-separated
    return ",".join([s.strip() for s in raw.split(",") if s.strip()])


def ambient_shop_credentials() -> Tuple[str, str]:
    """Shop + token for the custom-app variant (no embedded session)."""
    return _env("SHOPIFY_SHOP").lower(), _env("SHOPIFY_ACCESS_TOKEN")


def graphql_max_retries() -> int:
    return max(1, _int_env("SHOPIFY_GRAPHQL_MAX_RETRIES", 1))


# ---------- Rank sync knobs ----------
def rank_page_size() -> int:
    # Shopify caps connection pages at 250
    return min(250, max(1, _int_env("RANK_PAGE_SIZE", 100)))


def rank_max_products() -> Optional[int]:
    # unset, 0 or negative means no cap
    cap = _int_env("RANK_MAX_PRODUCTS", 0)
    return cap if cap > 0 else None


def collections_per_page() -> int:
    return min(250, max(1, _int_env("COLLECTIONS_PER_PAGE", 30)))


# ---------- Storage ----------
def database_url() -> str:
    return _env("DATABASE_URL", DEFAULT_DATABASE_URL)


# ---------- Logging ----------
def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or _env("LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
