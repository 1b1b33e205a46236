"""Shared fixtures: an in-memory database and a scripted Admin API."""

import os

# db.py builds its engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from typing import Any, Dict, Iterable, List, Optional

import pytest

from collection_ranker.errors import ShopifyApiError


class FakeAdminApi:
    """Answers the queries the app sends, and records every call."""

    def __init__(
        self,
        products: Iterable[tuple] = (),
        *,
        collection_id: str = "gid://shopify/Collection/1",
        handle: str = "best-sellers",
        sort_order: str = "MANUAL",
        exists: bool = True,
        fail_ids: Iterable[str] = (),
        user_error_ids: Iterable[str] = (),
        fetch_error: Optional[Exception] = None,
        stamp_error: Optional[Exception] = None,
        collections_payload: Optional[Dict[str, Any]] = None,
        collections_error: Optional[Exception] = None,
    ):
        self.shop = "best-shop.myshopify.com"
        self.products = [{"id": pid, "title": title} for pid, title in products]
        self.collection_id = collection_id
        self.handle = handle
        self.sort_order = sort_order
        self.exists = exists
        self.fail_ids = set(fail_ids)
        self.user_error_ids = set(user_error_ids)
        self.fetch_error = fetch_error
        self.stamp_error = stamp_error
        self.collections_payload = collections_payload
        self.collections_error = collections_error
        self.calls: List[tuple] = []
        self.writes: List[tuple] = []
        self.stamps: List[tuple] = []

    def admin_url(self, gid: str) -> str:
        return f"https://{self.shop}/admin/collections/{gid.split('/')[-1]}"

    @property
    def fetch_count(self) -> int:
        return sum(1 for q, _ in self.calls if "query getCollection(" in q)

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        variables = variables or {}
        self.calls.append((query, variables))

        if "query getCollection(" in query:
            if self.fetch_error is not None:
                raise self.fetch_error
            if not self.exists:
                return {"collection": None}
            start = int(variables.get("after") or 0)
            end = start + int(variables["first"])
            page = self.products[start:end]
            return {
                "collection": {
                    "id": self.collection_id,
                    "title": self.handle.title(),
                    "handle": self.handle,
                    "sortOrder": self.sort_order,
                    "products": {
                        "pageInfo": {"hasNextPage": end < len(self.products), "endCursor": str(end)},
                        "edges": [{"node": p} for p in page],
                    },
                }
            }

        if "mutation productUpdate" in query:
            inp = variables["input"]
            mf = inp["metafields"][0]
            if inp["id"] in self.fail_ids:
                raise ShopifyApiError("Shopify request failed: connection reset")
            if inp["id"] in self.user_error_ids:
                return {"productUpdate": {"product": None, "userErrors": [{"field": ["metafields"], "message": "Value is invalid"}]}}
            self.writes.append((inp["id"], mf["namespace"], mf["key"], mf["type"], mf["value"]))
            return {"productUpdate": {"product": {"id": inp["id"]}, "userErrors": []}}

        if "mutation collectionUpdate" in query:
            if self.stamp_error is not None:
                raise self.stamp_error
            inp = variables["input"]
            mf = inp["metafields"][0]
            self.stamps.append((inp["id"], mf["key"], mf["value"]))
            return {"collectionUpdate": {"collection": {"id": inp["id"]}, "userErrors": []}}

        if "query getCollections(" in query:
            if self.collections_error is not None:
                raise self.collections_error
            return self.collections_payload or {}

        raise AssertionError(f"unexpected query: {query}")


@pytest.fixture
def make_api():
    return FakeAdminApi


@pytest.fixture
def best_sellers():
    return FakeAdminApi(
        [
            ("gid://shopify/Product/A", "Product A"),
            ("gid://shopify/Product/B", "Product B"),
            ("gid://shopify/Product/C", "Product C"),
        ]
    )


@pytest.fixture
def client(monkeypatch):
    """TestClient whose sessions come from a private in-memory database."""
    from fastapi.testclient import TestClient
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
    from sqlalchemy.pool import StaticPool

    from collection_ranker.db import Base, get_session
    from collection_ranker import main
    from collection_ranker.main import app

    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    Session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    ready = []

    async def _get_session():
        if not ready:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            ready.append(True)
        async with Session() as session:
            yield session

    async def _no_init():
        return None

    monkeypatch.setattr(main, "init_db", _no_init)
    app.dependency_overrides[get_session] = _get_session
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
