from __future__ import annotations

from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ShopSession, offline_session_id


def _norm_shop(shop: str) -> str:
    return (shop or "").strip().lower()


async def get_shop_session(db: AsyncSession, shop: str) -> Optional[ShopSession]:
    row = await db.scalar(select(ShopSession).where(ShopSession.shop == _norm_shop(shop)))
    if not row or not (row.access_token or "").strip():
        return None
    return row


async def store_shop_session(
    db: AsyncSession,
    shop: str,
    *,
    access_token: str,
    scopes: str,
) -> ShopSession:
    shop_norm = _norm_shop(shop)
    row = await db.scalar(select(ShopSession).where(ShopSession.shop == shop_norm))
    if not row:
        row = ShopSession(id=offline_session_id(shop_norm), shop=shop_norm, is_online=False)
        db.add(row)
    row.access_token = (access_token or "").strip()
    row.scopes = (scopes or "").strip()
    await db.commit()
    return row


async def delete_shop_session(db: AsyncSession, shop: str) -> bool:
    res = await db.execute(delete(ShopSession).where(ShopSession.shop == _norm_shop(shop)))
    await db.commit()
    return (res.rowcount or 0) > 0
