import os
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base

from .config import database_url

DATABASE_URL = database_url()

# Async SQLAlchemy setup
_engine_kwargs = {"echo": False, "future": True}
db_url_l = (DATABASE_URL or "").lower()
is_sqlite = db_url_l.startswith("sqlite")
if is_sqlite and ":///" in DATABASE_URL:
    # SQLite refuses to create the parent directory itself
    _path = DATABASE_URL.split(":///", 1)[1]
    if _path and _path != ":memory:":
        _parent = os.path.dirname(os.path.abspath(_path))
        os.makedirs(_parent, exist_ok=True)
elif not is_sqlite:
    # Postgres connections can be dropped when idle; pre-ping avoids "connection is closed" errors.
    _engine_kwargs.update({
        "pool_pre_ping": True,
        "pool_recycle": int(os.environ.get("DB_POOL_RECYCLE_SECONDS", "300").strip() or 300),
    })

engine = create_async_engine(DATABASE_URL, **_engine_kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
Base = declarative_base()


async def get_session() -> AsyncSession:
    """FastAPI dependency that yields an async session."""
    async with SessionLocal() as session:
        yield session


async def init_db():
    """Create tables (safe to run repeatedly)."""
    from . import models  # ensure models are imported

    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
