from datetime import date

from fastapi import APIRouter, Query

from app.models.schemas import AvailabilityResponse
from app.services.portal_service import portal_service

router = APIRouter(prefix="/availability", tags=["availability"])


@router.get("", response_model=AvailabilityResponse)
async def check_availability(
    date: date = Query(..., description="Date to check (YYYY-MM-DD)"),
    activity: str | None = None,
) -> AvailabilityResponse:
    availability = await portal_service.check_availability(date, activity)
    return AvailabilityResponse(
        date=availability.date,
        activity=availability.activity,
        slots=availability.slots,
    )
