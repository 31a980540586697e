from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from enum import Enum

from app.providers.state import PageState, Session


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    UNCERTAIN = "uncertain"


@dataclass(frozen=True)
class PortalCredentials:
    username: str
    password: str
    base_url: str


@dataclass(frozen=True)
class Slot:
    """One open, bookable court/time cell on the availability grid."""

    area_id: str
    court_label: str
    start_time: str
    end_time: str | None
    raw_id: str | None


@dataclass(frozen=True)
class Reservation:
    date: str
    time_range: str | None
    activity_label: str | None
    court_label: str | None
    member_label: str | None = None
    cancel_token: str | None = None

    @property
    def is_own(self) -> bool:
        return self.member_label is None


@dataclass
class Availability:
    date: date
    activity: str
    slots: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class BookingOutcome:
    status: OutcomeStatus
    detail: str
    court: str | None = None
    time: str | None = None
    end_time: str | None = None
    dry_run: bool = False
    confirmation: str | None = None

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS


@dataclass
class CancelOutcome:
    status: OutcomeStatus
    message: str
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS


@dataclass(frozen=True)
class ActionResponse:
    """Raw result of a committing action (save booking, confirm cancel)."""

    status_code: int
    body: str
    partial: bool


class PortalSubstrate(ABC):
    """
    Execution substrate for the portal protocol.

    Both implementations trigger the same framework behaviours, one by
    replaying JSF partial postbacks over HTTP and one by driving a real
    browser. Every method takes the current ``PageState`` and returns the
    state observed afterwards; the driver never needs to know which
    substrate it holds.
    """

    @abstractmethod
    def authenticate(self, session: Session, credentials: PortalCredentials) -> None:
        """Log in; raise AuthenticationError unless a positive marker is seen."""
        pass

    @abstractmethod
    def verify_session(self, session: Session) -> bool:
        """Fetch an authenticated-only page and report whether the marker is there."""
        pass

    @abstractmethod
    def open_booking_page(self, session: Session) -> PageState:
        pass

    @abstractmethod
    def navigate_date(self, session: Session, state: PageState, portal_date: str) -> PageState:
        pass

    @abstractmethod
    def navigate_activity(self, session: Session, state: PageState, activity_id: str) -> PageState:
        pass

    @abstractmethod
    def select_slot(self, session: Session, state: PageState, slot: Slot) -> PageState:
        pass

    @abstractmethod
    def confirm_save(self, session: Session, state: PageState, slot: Slot) -> ActionResponse:
        pass

    @abstractmethod
    def open_reservations(self, session: Session) -> PageState:
        pass

    @abstractmethod
    def click_cancel(self, session: Session, state: PageState, cancel_token: str) -> PageState:
        pass

    @abstractmethod
    def confirm_cancel(self, session: Session, state: PageState, button_id: str) -> ActionResponse:
        pass

    @abstractmethod
    def close(self) -> None:
        pass
