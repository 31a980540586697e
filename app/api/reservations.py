from fastapi import APIRouter

from app.models.schemas import CancelOutcomeResponse, CancelRequest, ReservationResponse
from app.services.portal_service import portal_service

router = APIRouter(prefix="/reservations", tags=["reservations"])


@router.get("", response_model=list[ReservationResponse])
async def list_reservations(include_household: bool = False) -> list[ReservationResponse]:
    reservations = await portal_service.list_reservations(include_household)
    return [
        ReservationResponse(
            date=r.date,
            time_range=r.time_range,
            activity=r.activity_label,
            court=r.court_label,
            member=r.member_label,
            cancel_token=r.cancel_token,
        )
        for r in reservations
    ]


@router.post("/cancel", response_model=CancelOutcomeResponse)
async def cancel_reservation(request: CancelRequest) -> CancelOutcomeResponse:
    outcome = await portal_service.cancel(request.cancel_token, dry_run=request.dry_run)
    return CancelOutcomeResponse(
        status=outcome.status,
        success=outcome.success,
        message=outcome.message,
        dry_run=outcome.dry_run,
    )
