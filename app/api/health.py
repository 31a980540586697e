from fastapi import APIRouter

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "service": "truenorth"}


@router.get("/")
async def root() -> dict[str, str | dict[str, str]]:
    return {
        "service": "TrueNorth - Facility Booking Assistant",
        "version": "0.1.0",
        "endpoints": {
            "health": "/health",
            "availability": "/availability",
            "bookings": "/bookings",
            "reservations": "/reservations",
            "cancel": "/reservations/cancel",
        },
    }
