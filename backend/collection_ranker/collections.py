from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from . import config

logger = logging.getLogger(__name__)

MALFORMED_MESSAGE = "Collections data is missing or malformed."

COLLECTIONS_QUERY = """
query getCollections($first: Int!, $after: String, $metafieldNamespace: String!, $metafieldKey: String!) {
  collections(first: $first, after: $after, query: "sortOrder:MANUAL") {
    pageInfo { hasNextPage hasPreviousPage endCursor startCursor }
    edges {
      cursor
      node {
        id
        title
        handle
        sortOrder
        productsCount { count }
        metafield(namespace: $metafieldNamespace, key: $metafieldKey) { value }
      }
    }
  }
}
"""


class CollectionRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str = ""
    handle: str = ""
    sort_order: Optional[str] = Field(default=None, alias="sortOrder")
    total_products: int = Field(default=0, alias="totalProducts")
    rendered_at: Optional[str] = Field(default=None, alias="renderedAt")
    cursor: Optional[str] = None
    admin_url: Optional[str] = Field(default=None, alias="adminUrl")


def map_collection_node(node: Dict[str, Any], cursor: Optional[str] = None) -> CollectionRow:
    return CollectionRow(
        id=node["id"],
        title=node.get("title") or "",
        handle=node.get("handle") or "",
        sort_order=node.get("sortOrder"),
        total_products=((node.get("productsCount") or {}).get("count")) or 0,
        rendered_at=((node.get("metafield") or {}).get("value")) or None,
        cursor=cursor,
    )


async def list_collections(api, *, first: int = 30, after: Optional[str] = None) -> Dict[str, Any]:
    """One page of manually sorted collections, formatted for the admin table."""
    data = await api.graphql(
        COLLECTIONS_QUERY,
        {
            "first": first,
            "after": after,
            "metafieldNamespace": config.RANK_NAMESPACE,
            "metafieldKey": config.RENDERED_AT_KEY,
        },
    )
    conn = (data or {}).get("collections") or {}
    edges = conn.get("edges")
    if not isinstance(edges, list):
        logger.warning("Collections response without edges: %s", data)
        return {
            "collections": [],
            "pageInfo": {"hasNextPage": False, "hasPreviousPage": False},
            "error": MALFORMED_MESSAGE,
        }

    rows: List[Dict[str, Any]] = []
    for edge in edges:
        node = (edge or {}).get("node") or {}
        if not node.get("id"):
            continue
        row = map_collection_node(node, edge.get("cursor"))
        if hasattr(api, "admin_url"):
            row.admin_url = api.admin_url(row.id)
        rows.append(row.model_dump(by_alias=True))
    return {"collections": rows, "pageInfo": conn.get("pageInfo") or {}}
