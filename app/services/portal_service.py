"""
Portal service: the async facade over the synchronous portal driver.

Owns the one portal ``Session`` of this process, serialises commands on it,
loads persisted cookies before the first command, runs each driver call in a
worker thread and saves cookies after a command that had to log in afresh.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import date
from typing import TypeVar

from app.config import PortalEngine, settings
from app.providers.base import (
    Availability,
    BookingOutcome,
    CancelOutcome,
    PortalCredentials,
    PortalSubstrate,
    Reservation,
)
from app.providers.browser_substrate import BrowserPortalSubstrate
from app.providers.exceptions import ConfigurationError
from app.providers.extractor import parse_time
from app.providers.http_substrate import HttpPortalSubstrate
from app.providers.portal_driver import PortalDriver
from app.providers.state import Session
from app.services.database_service import database_service

logger = logging.getLogger(__name__)

T = TypeVar("T")


def load_credentials() -> PortalCredentials:
    """Credentials and base URL from settings; raises ConfigurationError when incomplete."""
    if not settings.portal_base_url:
        raise ConfigurationError("No base URL configured. Set PORTAL_BASE_URL.")
    if not settings.portal_username or not settings.portal_password:
        raise ConfigurationError(
            "No credentials configured. Set PORTAL_USERNAME and PORTAL_PASSWORD."
        )
    return PortalCredentials(
        username=settings.portal_username,
        password=settings.portal_password,
        base_url=settings.portal_base_url.rstrip("/"),
    )


def create_substrate(base_url: str, engine: PortalEngine | None = None) -> PortalSubstrate:
    engine = engine or settings.portal_engine
    if engine == PortalEngine.BROWSER:
        return BrowserPortalSubstrate(base_url)
    return HttpPortalSubstrate(base_url)


def sort_by_proximity(available: dict[str, list[str]], target_time: str) -> list[tuple[str, list[str]]]:
    """Open slots ordered by distance from ``target_time``; unparseable times go last."""
    target = parse_time(target_time)

    def distance(item: tuple[str, list[str]]) -> float:
        slot_time = parse_time(item[0])
        if target is None or slot_time is None:
            return float("inf")
        target_minutes = target.hour * 60 + target.minute
        return abs(slot_time.hour * 60 + slot_time.minute - target_minutes)

    return sorted(available.items(), key=distance)


class PortalService:
    """
    Runs portal commands one at a time against a shared session.

    Attributes:
        _driver: Lazily created driver, reused so the verified session and
            (for the browser substrate) the running browser survive between commands.
        _lock: Serialises commands; the session is never used concurrently.
    """

    def __init__(self, substrate_factory: Callable[[str], PortalSubstrate] | None = None) -> None:
        self._substrate_factory = substrate_factory or create_substrate
        self._driver: PortalDriver | None = None
        self._cookies_loaded = False
        self._lock = asyncio.Lock()

    async def _get_driver(self) -> PortalDriver:
        credentials = load_credentials()
        if self._driver is None:
            substrate = self._substrate_factory(credentials.base_url)
            self._driver = PortalDriver(substrate, credentials, Session())
            logger.info(f"Portal driver created for {credentials.base_url}")

        if not self._cookies_loaded:
            self._driver.session.cookies.update(await database_service.load_cookies())
            self._cookies_loaded = True
        return self._driver

    async def _run(self, command: Callable[[PortalDriver], T]) -> T:
        async with self._lock:
            driver = await self._get_driver()
            driver.session.refreshed = False
            try:
                return await asyncio.to_thread(command, driver)
            finally:
                # A login that succeeded stays valid even if the command failed afterwards
                if driver.session.refreshed and driver.session.authenticated:
                    await database_service.save_cookies(dict(driver.session.cookies))
                    driver.session.refreshed = False

    async def check_availability(self, target_date: date, activity: str | None = None) -> Availability:
        return await self._run(lambda d: d.check_availability(target_date, activity))

    async def book(
        self,
        target_time: str,
        target_date: date,
        court: str | None = None,
        activity: str | None = None,
        dry_run: bool = False,
    ) -> BookingOutcome:
        return await self._run(lambda d: d.book(target_time, target_date, court, activity, dry_run))

    async def list_reservations(self, include_household: bool = False) -> list[Reservation]:
        return await self._run(lambda d: d.list_reservations(include_household))

    async def cancel(self, cancel_token: str, dry_run: bool = False) -> CancelOutcome:
        return await self._run(lambda d: d.cancel(cancel_token, dry_run))

    async def close(self) -> None:
        if self._driver is not None:
            await asyncio.to_thread(self._driver.close)
            self._driver = None
            self._cookies_loaded = False


portal_service = PortalService()
