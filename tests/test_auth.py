"""Tests for session-token verification, the offline session store and authenticate_admin."""

import asyncio
import time

import pytest
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from collection_ranker.auth import authenticate_admin, decode_session_token, normalize_shop_domain
from collection_ranker.db import Base
from collection_ranker.errors import AuthenticationRequired
from collection_ranker.settings_store import delete_shop_session, get_shop_session, store_shop_session

API_KEY = "test-api-key"
API_SECRET = "test-api-secret"
SHOP = "best-shop.myshopify.com"


@pytest.fixture(autouse=True)
def app_credentials(monkeypatch):
    monkeypatch.setenv("SHOPIFY_API_KEY", API_KEY)
    monkeypatch.setenv("SHOPIFY_API_SECRET", API_SECRET)
    monkeypatch.delenv("SHOPIFY_SHOP", raising=False)
    monkeypatch.delenv("SHOPIFY_ACCESS_TOKEN", raising=False)


def session_token(shop=SHOP, *, secret=API_SECRET, aud=API_KEY, exp_in=60, **extra):
    now = int(time.time())
    claims = {
        "iss": f"https://{shop}/admin",
        "dest": f"https://{shop}",
        "aud": aud,
        "sub": "42",
        "exp": now + exp_in,
        "nbf": now - 5,
        "iat": now - 5,
        "jti": "abc",
        "sid": "def",
        **extra,
    }
    return jwt.encode(claims, secret, algorithm="HS256")


def with_db(fn):
    """Run ``fn(session)`` against a fresh in-memory database."""

    async def _run():
        engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        try:
            async with async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)() as session:
                return await fn(session)
        finally:
            await engine.dispose()

    return asyncio.run(_run())


def bearer(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestNormalizeShopDomain:
    def test_bare_host(self):
        assert normalize_shop_domain(" Best-Shop.myshopify.com ") == SHOP

    def test_url(self):
        assert normalize_shop_domain("https://best-shop.myshopify.com/admin/apps") == SHOP

    @pytest.mark.parametrize("raw", ["", "example.com", "best-shop.myshopify.com.evil.com"])
    def test_rejects(self, raw):
        with pytest.raises(ValueError):
            normalize_shop_domain(raw)


class TestDecodeSessionToken:
    def test_valid_token(self):
        claims = decode_session_token(session_token())
        assert claims["shop"] == SHOP
        assert claims["sub"] == "42"

    def test_wrong_secret(self):
        with pytest.raises(AuthenticationRequired):
            decode_session_token(session_token(secret="other-secret"))

    def test_wrong_audience(self):
        with pytest.raises(AuthenticationRequired):
            decode_session_token(session_token(aud="another-app"))

    def test_expired_asks_for_reload(self):
        with pytest.raises(AuthenticationRequired) as exc:
            decode_session_token(session_token(exp_in=-120))
        assert exc.value.message == "Session expired. Please refresh the page."

    def test_bad_signature_is_not_reported_as_expired(self):
        with pytest.raises(AuthenticationRequired) as exc:
            decode_session_token(session_token(secret="wrong-secret"))
        assert exc.value.message.startswith("invalid session token")

    def test_bad_dest(self):
        token = session_token(dest="https://example.com")
        with pytest.raises(AuthenticationRequired):
            decode_session_token(token)

    def test_unconfigured_app(self, monkeypatch):
        monkeypatch.delenv("SHOPIFY_API_SECRET")
        with pytest.raises(AuthenticationRequired):
            decode_session_token(session_token())


class TestSettingsStore:
    def test_store_and_get(self):
        async def scenario(db):
            await store_shop_session(db, "Best-Shop.myshopify.com", access_token="shpat_1", scopes="read_products")
            return await get_shop_session(db, SHOP)

        rec = with_db(scenario)
        assert rec.id == f"offline_{SHOP}"
        assert rec.access_token == "shpat_1"
        assert rec.scopes == "read_products"

    def test_store_overwrites(self):
        async def scenario(db):
            await store_shop_session(db, SHOP, access_token="shpat_1", scopes="read_products")
            await store_shop_session(db, SHOP, access_token="shpat_2", scopes="read_products,write_products")
            return await get_shop_session(db, SHOP)

        rec = with_db(scenario)
        assert rec.access_token == "shpat_2"
        assert rec.scopes == "read_products,write_products"

    def test_delete(self):
        async def scenario(db):
            await store_shop_session(db, SHOP, access_token="shpat_1", scopes="")
            removed = await delete_shop_session(db, SHOP)
            return removed, await get_shop_session(db, SHOP)

        removed, rec = with_db(scenario)
        assert removed is True
        assert rec is None

    def test_missing(self):
        async def scenario(db):
            return await get_shop_session(db, SHOP)

        assert with_db(scenario) is None


class TestAuthenticateAdmin:
    def test_session_token_uses_stored_token(self):
        async def scenario(db):
            await store_shop_session(db, SHOP, access_token="shpat_1", scopes="write_products")
            return await authenticate_admin(bearer(session_token()), db)

        api = with_db(scenario)
        assert api.shop == SHOP
        assert api.access_token == "shpat_1"

    def test_session_token_without_install(self):
        async def scenario(db):
            return await authenticate_admin(bearer(session_token()), db)

        with pytest.raises(AuthenticationRequired):
            with_db(scenario)

    def test_invalid_session_token(self):
        async def scenario(db):
            await store_shop_session(db, SHOP, access_token="shpat_1", scopes="")
            return await authenticate_admin(bearer("not-a-jwt"), db)

        with pytest.raises(AuthenticationRequired):
            with_db(scenario)

    def test_ambient_credentials(self, monkeypatch):
        monkeypatch.setenv("SHOPIFY_SHOP", SHOP)
        monkeypatch.setenv("SHOPIFY_ACCESS_TOKEN", "shpat_env")

        async def scenario(db):
            return await authenticate_admin(None, db)

        api = with_db(scenario)
        assert api.shop == SHOP
        assert api.access_token == "shpat_env"

    def test_nothing_configured(self):
        async def scenario(db):
            return await authenticate_admin(None, db)

        with pytest.raises(AuthenticationRequired) as exc:
            with_db(scenario)
        assert exc.value.status_code == 401
