from fastapi import APIRouter, HTTPException

from app.models.schemas import Alternative, BookingOutcomeResponse, BookingRequest
from app.providers.exceptions import NotFoundError
from app.services.portal_service import portal_service, sort_by_proximity

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingOutcomeResponse)
async def create_booking(request: BookingRequest) -> BookingOutcomeResponse:
    """
    Book a slot, or with ``dry_run`` stop after selecting it.

    When no slot matches, answers 404 with the open slots for that date
    ordered by distance from the requested time.
    """
    try:
        outcome = await portal_service.book(
            request.time,
            request.date,
            court=request.court,
            activity=request.activity,
            dry_run=request.dry_run,
        )
    except NotFoundError as e:
        alternatives = [
            Alternative(time=slot_time, courts=courts).model_dump()
            for slot_time, courts in sort_by_proximity(e.available, request.time)
        ]
        raise HTTPException(
            status_code=404, detail={"message": str(e), "alternatives": alternatives}
        ) from e

    return BookingOutcomeResponse(
        status=outcome.status,
        success=outcome.success,
        detail=outcome.detail,
        dry_run=outcome.dry_run,
        court=outcome.court,
        time=outcome.time,
        end_time=outcome.end_time,
        confirmation=outcome.confirmation,
    )
