"""
SQLAlchemy database models for persistent storage.

The only state that outlives a command is the portal session's cookie jar,
stored as one JSON row per jar together with the time it was saved so that
stale jars can be expired on load.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app.config import settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class CookieJarRecord(Base):
    """
    Database model for a persisted portal cookie jar.

    Columns:
        id: Auto-incrementing primary key.
        jar_name: Logical jar identifier; one row per jar.
        cookies_json: JSON object of cookie name -> value.
        saved_at: When the jar was last written (naive UTC). Jars older than
            the configured TTL are treated as absent.
    """

    __tablename__ = "cookie_jars"

    id = Column(Integer, primary_key=True, autoincrement=True)
    jar_name = Column(String(50), unique=True, nullable=False, index=True)
    cookies_json = Column(Text, nullable=False, default="{}")
    saved_at = Column(DateTime, nullable=False, default=datetime.utcnow)


engine = create_async_engine(
    settings.database_url.replace("sqlite://", "sqlite+aiosqlite://")
    if settings.database_url.startswith("sqlite://")
    else settings.database_url,
    echo=False,
)

AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
