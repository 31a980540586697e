import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api import availability, bookings, health, reservations
from app.config import settings
from app.models.database import init_db
from app.providers.exceptions import (
    AuthenticationError,
    ConfigurationError,
    NotFoundError,
    PortalError,
    ProtocolStateError,
    TransportError,
    TransportTimeoutError,
)
from app.services.portal_service import portal_service

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Most specific first; TransportTimeoutError is a TransportError
ERROR_STATUS: list[tuple[type[PortalError], int]] = [
    (ConfigurationError, 503),
    (AuthenticationError, 401),
    (NotFoundError, 404),
    (ProtocolStateError, 502),
    (TransportTimeoutError, 504),
    (TransportError, 502),
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await init_db()

    if not settings.portal_base_url or not settings.portal_username or not settings.portal_password:
        logger.warning(
            "Portal credentials not configured. All portal endpoints will return 503. "
            "Set PORTAL_BASE_URL, PORTAL_USERNAME and PORTAL_PASSWORD."
        )
    else:
        logger.info(f"Portal configured: {settings.portal_base_url} (engine={settings.portal_engine.value})")

    yield

    await portal_service.close()


app = FastAPI(
    title="TrueNorth",
    description="Facility booking assistant for NorthStar member portals",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path}: {type(exc).__name__}: {exc}")
    content: dict[str, object] = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, TransportError) and exc.status_code is not None:
        content["status_code"] = exc.status_code
    return JSONResponse(status_code=status_code, content=content)


app.include_router(health.router)
app.include_router(availability.router)
app.include_router(bookings.router)
app.include_router(reservations.router)
