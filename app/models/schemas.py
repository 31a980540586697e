from datetime import date

from pydantic import BaseModel, Field

from app.providers.base import OutcomeStatus


class AvailabilityResponse(BaseModel):
    date: date
    activity: str
    slots: dict[str, list[str]] = Field(
        default_factory=dict, description="Displayed start time -> open court labels"
    )


class BookingRequest(BaseModel):
    time: str = Field(..., description="Requested start time, e.g. '9:00 AM'")
    date: date
    court: str | None = Field(default=None, description="Case-insensitive court label substring")
    activity: str | None = None
    dry_run: bool = False


class BookingOutcomeResponse(BaseModel):
    status: OutcomeStatus
    success: bool
    detail: str
    dry_run: bool = False
    court: str | None = None
    time: str | None = None
    end_time: str | None = None
    confirmation: str | None = None


class Alternative(BaseModel):
    time: str
    courts: list[str]


class ReservationResponse(BaseModel):
    date: str
    time_range: str | None = None
    activity: str | None = None
    court: str | None = None
    member: str | None = None
    cancel_token: str | None = None


class CancelRequest(BaseModel):
    cancel_token: str
    dry_run: bool = False


class CancelOutcomeResponse(BaseModel):
    status: OutcomeStatus
    success: bool
    message: str
    dry_run: bool = False
