from sqlalchemy import Boolean, Column, DateTime, String, Text, func

from .db import Base


def offline_session_id(shop: str) -> str:
    return f"offline_{(shop or '').strip().lower()}"


class ShopSession(Base):
    """
    Offline Admin API access token for an installed shop.

    One row per shop, written by the OAuth callback:
      id = "offline_{shop}", shop = "...myshopify.com", access_token = "shpat_...", scopes = "read_products,..."
    """

    __tablename__ = "shop_sessions"

    id = Column(String(255), primary_key=True)
    shop = Column(String(255), unique=True, nullable=False, index=True)
    access_token = Column(Text, nullable=False)
    scopes = Column(String(1024), nullable=True)
    is_online = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
