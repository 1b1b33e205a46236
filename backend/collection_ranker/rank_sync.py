"""Write each product's position in a manually sorted collection to a metafield.

The product list is read once (all pages) before any write happens, so the
ranks reflect that single snapshot. Writes are sequential and each product gets
exactly one attempt; a failed product is recorded and the batch carries on.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from . import config
from .errors import (
    AuthenticationRequired,
    CollectionNotFound,
    InvalidSortOrder,
    SESSION_EXPIRED_MESSAGE,
    ShopifyApiError,
    UnexpectedSyncError,
)

logger = logging.getLogger(__name__)

MANUAL_SORT_ORDER = "MANUAL"


# ---------- Schemas ----------
class Product(BaseModel):
    id: str
    title: str = ""


class Collection(BaseModel):
    id: str
    handle: str = ""
    title: str = ""
    sort_order: Optional[str] = None
    products: List[Product] = []

    @property
    def is_manual(self) -> bool:
        return (self.sort_order or "").upper() == MANUAL_SORT_ORDER


class RankFailure(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(alias="productId")
    title: str = ""
    error: str


class RankUpdateResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: int = 0
    failed: int = 0
    errors: List[RankFailure] = []
    rendered_at: Optional[str] = Field(default=None, alias="renderedAt")

    def summary(self) -> str:
        msg = f"Successfully updated {self.success} products"
        if self.failed > 0:
            msg += f", {self.failed} failed"
        return msg


def rank_key(handle: str) -> str:
    return f"{(handle or '').strip()}_rank"


# ---------- GraphQL ----------
COLLECTION_QUERY = """
query getCollection($id: ID!, $first: Int!, $after: String) {
  collection(id: $id) {
    id
    title
    handle
    sortOrder
    products(first: $first, after: $after, sortKey: MANUAL) {
      pageInfo { hasNextPage endCursor }
      edges { node { id title } }
    }
  }
}
"""

PRODUCT_UPDATE = """
mutation productUpdate($input: ProductInput!) {
  productUpdate(input: $input) {
    product { id }
    userErrors { field message }
  }
}
"""

COLLECTION_UPDATE = """
mutation collectionUpdate($input: CollectionInput!) {
  collectionUpdate(input: $input) {
    collection { id }
    userErrors { field message }
  }
}
"""


async def fetch_collection(
    api,
    collection_id: str,
    *,
    page_size: int = 100,
    max_products: Optional[int] = None,
) -> Optional[Collection]:
    """Return the collection with its products in manual order, or None if it does not exist.

    Follows product pages until exhausted, or until ``max_products`` have been read.
    """
    collection: Optional[Collection] = None
    after: Optional[str] = None
    while True:
        data = await api.graphql(COLLECTION_QUERY, {"id": collection_id, "first": page_size, "after": after})
        node = (data or {}).get("collection")
        if not node:
            return collection
        if collection is None:
            collection = Collection(
                id=node.get("id") or collection_id,
                title=node.get("title") or "",
                handle=node.get("handle") or "",
                sort_order=node.get("sortOrder"),
            )
            # No point paging through products we will refuse to rank
            if not collection.is_manual:
                return collection

        conn = node.get("products") or {}
        for edge in conn.get("edges") or []:
            p = edge.get("node") or {}
            collection.products.append(Product(id=p["id"], title=p.get("title") or ""))

        if max_products is not None and len(collection.products) >= max_products:
            if len(collection.products) > max_products or (conn.get("pageInfo") or {}).get("hasNextPage"):
                logger.warning(
                    "Collection %s truncated to the first %s products (RANK_MAX_PRODUCTS)",
                    collection_id, max_products,
                )
            del collection.products[max_products:]
            return collection

        page_info = conn.get("pageInfo") or {}
        if not page_info.get("hasNextPage") or not page_info.get("endCursor"):
            return collection
        after = page_info["endCursor"]


def _user_errors(data: Dict[str, Any], field: str) -> List[Dict[str, Any]]:
    return (((data or {}).get(field) or {}).get("userErrors")) or []


async def set_product_rank(api, product_id: str, key: str, value: int) -> Dict[str, Any]:
    variables = {
        "input": {
            "id": product_id,
            "metafields": [
                {
                    "namespace": config.RANK_NAMESPACE,
                    "key": key,
                    "type": "number_integer",
                    "value": str(value),
                }
            ],
        }
    }
    data = await api.graphql(PRODUCT_UPDATE, variables)
    errs = _user_errors(data, "productUpdate")
    if errs:
        raise ShopifyApiError("; ".join(str(e.get("message") or e) for e in errs))
    return data


async def stamp_rendered_at(api, collection_id: str, when: Optional[datetime] = None) -> str:
    stamp = (when or datetime.now(timezone.utc)).isoformat()
    variables = {
        "input": {
            "id": collection_id,
            "metafields": [
                {
                    "namespace": config.RANK_NAMESPACE,
                    "key": config.RENDERED_AT_KEY,
                    "type": "single_line_text_field",
                    "value": stamp,
                }
            ],
        }
    }
    data = await api.graphql(COLLECTION_UPDATE, variables)
    errs = _user_errors(data, "collectionUpdate")
    if errs:
        raise ShopifyApiError("; ".join(str(e.get("message") or e) for e in errs))
    return stamp


async def sync_collection_ranks(
    api,
    collection_id: str,
    handle: str,
    *,
    page_size: Optional[int] = None,
    max_products: Optional[int] = None,
    stamp: bool = True,
) -> RankUpdateResult:
    """Write ``custom.<handle>_rank`` = 1-based position for every product in the collection.

    Raises CollectionNotFound / InvalidSortOrder before any write, AuthenticationRequired
    or UnexpectedSyncError when the fetch itself fails. Per-product failures only show
    up in the returned result.
    """
    try:
        collection = await fetch_collection(
            api,
            collection_id,
            page_size=page_size or config.rank_page_size(),
            max_products=max_products,
        )
    except ShopifyApiError as e:
        if e.is_auth_error:
            raise AuthenticationRequired(SESSION_EXPIRED_MESSAGE) from e
        raise UnexpectedSyncError(e.message or "An unexpected error occurred") from e
    except Exception as e:
        raise UnexpectedSyncError(str(e) or "An unexpected error occurred") from e

    if collection is None:
        logger.error("Collection not found: %s", collection_id)
        raise CollectionNotFound("Collection not found")
    if not collection.is_manual:
        logger.warning("Collection %s is not manual sort: %s", collection_id, collection.sort_order)
        raise InvalidSortOrder("Collection is not manual sort")

    key = rank_key(handle)
    result = RankUpdateResult()
    for i, product in enumerate(collection.products):
        logger.debug("Updating product %s (%s) with key %s = %s", product.id, product.title, key, i + 1)
        try:
            await set_product_rank(api, product.id, key, i + 1)
            result.success += 1
        except Exception as e:
            logger.error("Failed to update product %s: %s", product.id, e)
            result.failed += 1
            result.errors.append(RankFailure(product_id=product.id, title=product.title, error=str(e)))

    logger.info(
        "Updated %s products, failed: %s for collection %s",
        result.success, result.failed, handle,
    )

    if stamp:
        try:
            result.rendered_at = await stamp_rendered_at(api, collection.id)
        except Exception as e:
            logger.warning("Could not stamp %s on collection %s: %s", config.RENDERED_AT_KEY, collection.id, e)
    return result
