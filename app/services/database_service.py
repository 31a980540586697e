"""
Database service for the persisted portal cookie jar.

Cookies are read once when a command starts and written once when it ends
(only after a fresh login), so every operation here is a single short
transaction.
"""

import json
import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select

from app.config import settings
from app.models.database import AsyncSessionLocal, CookieJarRecord

logger = logging.getLogger(__name__)

DEFAULT_JAR = "portal"


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class DatabaseService:
    """Load/save/clear contract for the cookie store with a freshness window."""

    def __init__(self, ttl: timedelta | None = None) -> None:
        self.ttl = ttl or timedelta(hours=settings.cookie_ttl_hours)

    async def load_cookies(self, jar: str = DEFAULT_JAR, now: datetime | None = None) -> dict[str, str]:
        """
        Load a cookie jar, or ``{}`` if it is absent or older than the TTL.

        Expired jars are deleted as a side effect.
        """
        now = now or _utcnow()
        async with AsyncSessionLocal() as db:
            result = await db.execute(select(CookieJarRecord).where(CookieJarRecord.jar_name == jar))
            record = result.scalar_one_or_none()
            if record is None:
                return {}

            if now - record.saved_at > self.ttl:
                logger.info(f"Cookie jar '{jar}' expired (saved {record.saved_at.isoformat()})")
                await db.delete(record)
                await db.commit()
                return {}

            cookies = json.loads(record.cookies_json or "{}")
            logger.debug(f"Loaded {len(cookies)} cookies from jar '{jar}'")
            return {str(name): str(value) for name, value in cookies.items()}

    async def save_cookies(self, cookies: dict[str, str], jar: str = DEFAULT_JAR, now: datetime | None = None) -> None:
        """Overwrite the whole jar in one transaction."""
        async with AsyncSessionLocal() as db:
            result = await db.execute(select(CookieJarRecord).where(CookieJarRecord.jar_name == jar))
            record = result.scalar_one_or_none()
            if record is None:
                record = CookieJarRecord(jar_name=jar)
                db.add(record)
            record.cookies_json = json.dumps(cookies, sort_keys=True)  # type: ignore[assignment]
            record.saved_at = now or _utcnow()  # type: ignore[assignment]
            await db.commit()
        logger.info(f"Saved {len(cookies)} cookies to jar '{jar}'")

    async def clear_cookies(self, jar: str = DEFAULT_JAR) -> None:
        async with AsyncSessionLocal() as db:
            await db.execute(delete(CookieJarRecord).where(CookieJarRecord.jar_name == jar))
            await db.commit()
        logger.info(f"Cleared cookie jar '{jar}'")


database_service = DatabaseService()
