"""
Substrate-agnostic portal protocol driver.

Runs the authenticate -> navigate(date) -> navigate(activity) -> select(slot)
-> save sequence and the reservations -> click(cancel) -> confirm(yes)
sequence against whichever ``PortalSubstrate`` it is given. Each step hands
the ``PageState`` it got back to the next one; nothing here knows whether
the steps are HTTP postbacks or browser actions.

No step is retried. A failing step aborts the command with a typed error;
only a timeout on a committing step is softened into an UNCERTAIN outcome,
since the action may already have reached the portal.
"""

import logging
from collections.abc import Callable
from datetime import date, timedelta
from typing import TypeVar

from app.config import settings
from app.providers.base import (
    ActionResponse,
    Availability,
    BookingOutcome,
    CancelOutcome,
    OutcomeStatus,
    PortalCredentials,
    PortalSubstrate,
    Reservation,
)
from app.providers.exceptions import (
    NotFoundError,
    ProtocolStateError,
    TransportTimeoutError,
    UncertainOutcomeError,
)
from app.providers.extractor import (
    current_activity_id,
    current_date_value,
    dialog_opened,
    find_confirm_button,
    find_slot,
    format_portal_date,
    group_slots,
    has_cancel_control,
    normalize_time,
    parse_reservations,
    parse_slots,
    resolve_activity_id,
)
from app.providers.interpreter import (
    DIRECT_CANCEL_RESPONSE_BYTES,
    interpret_cancel,
    interpret_save,
    is_session_redirect,
)
from app.providers.state import PageState, Session

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PortalDriver:
    """
    One engine for the four portal operations.

    Args:
        substrate: HTTP or browser execution substrate
        credentials: Member credentials and portal base URL
        session: Existing session (e.g. seeded with persisted cookies)
        verify_window: Sessions verified more recently than this skip re-verification
    """

    def __init__(
        self,
        substrate: PortalSubstrate,
        credentials: PortalCredentials,
        session: Session | None = None,
        verify_window: timedelta | None = None,
    ) -> None:
        self.substrate = substrate
        self.credentials = credentials
        self.session = session or Session()
        if verify_window is None:
            verify_window = timedelta(seconds=settings.session_verify_window_seconds)
        self.verify_window = verify_window

    # ---- session ----

    def ensure_session(self) -> None:
        """
        Make sure the session is authenticated before an operation runs.

        Cached cookies are verified against an authenticated-only page; when
        that fails they are discarded and exactly one login is attempted.
        """
        if self.session.is_recently_verified(self.verify_window):
            logger.debug("Session verified recently, skipping verification")
            return

        if self.session.cookies:
            if self.substrate.verify_session(self.session):
                logger.info("Reusing cached portal session")
                return
            logger.info("Cached session is stale, logging in again")
            self.session.invalidate()

        self.substrate.authenticate(self.session, self.credentials)

    # ---- availability and booking ----

    def _navigate(self, target_date: date, activity: str) -> PageState:
        state = self.substrate.open_booking_page(self.session)
        if not state.view_state or not state.form_id:
            raise ProtocolStateError("open booking page", "form state")

        portal_date = format_portal_date(target_date)
        if current_date_value(state.fields, state.components) != portal_date:
            state = self.substrate.navigate_date(self.session, state, portal_date)
        else:
            logger.debug(f"Booking page already shows {portal_date}")

        activity_id = resolve_activity_id(state.document, state.components, activity)
        if current_activity_id(state.fields, state.form_id, state.components) != activity_id:
            state = self.substrate.navigate_activity(self.session, state, activity_id)
        else:
            logger.debug(f"Activity {activity_id} already selected")

        if not state.view_state:
            raise ProtocolStateError("navigate", "view state")
        return state

    def check_availability(self, target_date: date, activity: str | None = None) -> Availability:
        activity = activity or settings.default_activity
        logger.info(f"Checking availability: date={target_date}, activity={activity}")
        self.ensure_session()

        state = self._navigate(target_date, activity)
        slots = parse_slots(state.document)
        grouped = group_slots(slots)
        logger.info(f"Found {len(slots)} open slots across {len(grouped)} start times")
        return Availability(date=target_date, activity=activity, slots=grouped)

    def book(
        self,
        target_time: str,
        target_date: date,
        court: str | None = None,
        activity: str | None = None,
        dry_run: bool = False,
    ) -> BookingOutcome:
        """
        Book the slot at ``target_time`` on ``target_date``.

        Raises:
            NotFoundError: no open slot matches the time/court; ``available``
                holds the open slots so the caller can offer alternatives.
        """
        activity = activity or settings.default_activity
        logger.info(
            f"Booking: time={target_time}, date={target_date}, court={court or 'any'}, "
            f"activity={activity}, dry_run={dry_run}"
        )
        self.ensure_session()

        state = self._navigate(target_date, activity)
        slots = parse_slots(state.document)
        slot = find_slot(slots, target_time, court)
        if slot is None:
            wanted = f"{target_time}" + (f" on {court}" if court else "")
            raise NotFoundError(f"No open slot at {wanted}", available=group_slots(slots))

        logger.info(f"Selected slot: {slot.court_label} at {slot.start_time}")
        state = self.substrate.select_slot(self.session, state, slot)

        outcome = BookingOutcome(
            status=OutcomeStatus.SUCCESS,
            detail="",
            court=slot.court_label,
            time=normalize_time(slot.start_time),
            end_time=normalize_time(slot.end_time),
            dry_run=dry_run,
        )
        if dry_run:
            outcome.detail = "Dry run - booking not submitted"
            logger.info(f"Dry run: would book {slot.court_label} at {slot.start_time}")
            return outcome

        try:
            response = self._commit("save booking", lambda: self.substrate.confirm_save(self.session, state, slot))
        except UncertainOutcomeError as e:
            outcome.status = OutcomeStatus.UNCERTAIN
            outcome.detail = str(e)
            return outcome

        self._forget_expired_session(response)
        outcome.status, outcome.detail = interpret_save(response)
        if outcome.status == OutcomeStatus.SUCCESS:
            outcome.confirmation = outcome.detail
        logger.info(f"Booking outcome: {outcome.status.value} ({outcome.detail})")
        return outcome

    # ---- reservations ----

    def list_reservations(self, include_household: bool = False) -> list[Reservation]:
        self.ensure_session()
        state = self.substrate.open_reservations(self.session)
        reservations = parse_reservations(state.document)
        if not include_household:
            reservations = [r for r in reservations if r.is_own]
        logger.info(f"Listed {len(reservations)} reservations")
        return reservations

    def cancel(self, cancel_token: str, dry_run: bool = False) -> CancelOutcome:
        logger.info(f"Cancelling reservation {cancel_token} (dry_run={dry_run})")
        self.ensure_session()

        state = self.substrate.open_reservations(self.session)
        if not has_cancel_control(state.document, cancel_token):
            raise NotFoundError(f"No reservation with cancel control {cancel_token}")

        if dry_run:
            return CancelOutcome(
                status=OutcomeStatus.SUCCESS,
                message="Dry run - would cancel reservation",
                dry_run=True,
            )

        try:
            state = self._commit(
                "cancel reservation",
                lambda: self.substrate.click_cancel(self.session, state, cancel_token),
            )
        except UncertainOutcomeError as e:
            return CancelOutcome(status=OutcomeStatus.UNCERTAIN, message=str(e))

        if not dialog_opened(state.document):
            # No confirmation dialog: the click itself was the cancellation
            logger.info("No confirmation dialog opened; classifying first response")
            response = ActionResponse(status_code=200, body=state.document.raw, partial=state.document.is_partial)
            self._forget_expired_session(response)
            status, message = interpret_cancel(response, DIRECT_CANCEL_RESPONSE_BYTES)
            return CancelOutcome(status=status, message=message)

        button_id = find_confirm_button(state.document)
        if button_id is None:
            raise ProtocolStateError("confirm cancel", "enabled YES button")

        try:
            confirm_state = state
            response = self._commit(
                "confirm cancel",
                lambda: self.substrate.confirm_cancel(self.session, confirm_state, button_id),
            )
        except UncertainOutcomeError as e:
            return CancelOutcome(status=OutcomeStatus.UNCERTAIN, message=str(e))

        self._forget_expired_session(response)
        status, message = interpret_cancel(response)
        logger.info(f"Cancel outcome: {status.value} ({message})")
        return CancelOutcome(status=status, message=message)

    # ---- helpers ----

    def _forget_expired_session(self, response: ActionResponse) -> None:
        if is_session_redirect(response):
            logger.warning("Portal redirected a committing action; the session has expired")
            self.session.invalidate()

    def _commit(self, action: str, step: Callable[[], T]) -> T:
        try:
            return step()
        except TransportTimeoutError as e:
            logger.warning(f"{action} timed out: {e}")
            raise UncertainOutcomeError(
                f"{action} timed out - it may have reached the portal, please verify in My Reservations"
            ) from e

    def close(self) -> None:
        self.substrate.close()
