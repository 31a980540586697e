"""
Tests for the HTTP substrate.

A real ``requests.Session`` is used with ``get``/``post`` patched to return
fixture-backed responses, so cookie mirroring, payload construction and
error mapping run exactly as in production.
"""

from datetime import date
from unittest.mock import patch
from urllib.parse import unquote

import pytest
import requests

from app.providers.base import OutcomeStatus, PortalCredentials
from app.providers.exceptions import (
    AuthenticationError,
    ProtocolStateError,
    TransportError,
    TransportTimeoutError,
)
from app.providers.faces import booking_ajax_url, reservations_ajax_url
from app.providers.http_substrate import HttpPortalSubstrate
from app.providers.portal_driver import PortalDriver
from app.providers.state import Session
from tests.fixtures.loader import (
    BASE_URL,
    BOOKING_FORM_ID,
    RESERVATIONS_FORM_ID,
    fixture_response,
)

F = BOOKING_FORM_ID
R = RESERVATIONS_FORM_ID
VIEW_STATE = "javax.faces.ViewState"


@pytest.fixture
def http() -> requests.Session:
    return requests.Session()


@pytest.fixture
def substrate(http: requests.Session) -> HttpPortalSubstrate:
    return HttpPortalSubstrate(BASE_URL, http=http, timeout=5)


@pytest.fixture
def credentials() -> PortalCredentials:
    return PortalCredentials(username="12345", password="secret", base_url=BASE_URL)


def sent_data(mock_post, index: int) -> dict[str, str]:
    return mock_post.call_args_list[index].kwargs["data"]


class TestAuthenticate:
    """Tests for the Liferay login exchange."""

    def test_successful_login(
        self, http: requests.Session, substrate: HttpPortalSubstrate, credentials: PortalCredentials
    ) -> None:
        """Login posts the namespaced form and captures the new session cookie."""
        session = Session()

        def login(url, **kwargs):
            http.cookies.set("JSESSIONID", "fresh")
            return fixture_response("login_success.html")

        with patch.object(http, "get", return_value=fixture_response("login_page.html")), \
                patch.object(http, "post", side_effect=login) as mock_post:
            substrate.authenticate(session, credentials)

        url = mock_post.call_args.args[0]
        data = mock_post.call_args.kwargs["data"]
        ns = "_com_liferay_login_web_portlet_LoginPortlet_"
        assert url.startswith(f"{BASE_URL}/en/web/pages/login?")
        assert data[f"{ns}login"] == "12345"
        assert data[f"{ns}password"] == "c2VjcmV0"
        assert data[f"{ns}formDate"] == "1760700000000"
        assert data[f"{ns}checkboxNames"] == "rememberMe"
        assert data["p_auth"] == "Xk2aLp9Q"
        assert mock_post.call_args.kwargs["headers"]["Origin"] == BASE_URL

        assert session.cookies["JSESSIONID"] == "fresh"
        assert session.authenticated
        assert session.refreshed

    def test_rejected_login(
        self, http: requests.Session, substrate: HttpPortalSubstrate, credentials: PortalCredentials
    ) -> None:
        """A response without the signed-in marker raises with the portal's message."""
        session = Session()
        with patch.object(http, "get", return_value=fixture_response("login_page.html")), \
                patch.object(http, "post", return_value=fixture_response("login_failed.html")):
            with pytest.raises(AuthenticationError) as exc_info:
                substrate.authenticate(session, credentials)

        assert str(exc_info.value) == "Authentication failed. Please try again."
        assert not session.authenticated

    def test_missing_login_form(
        self, http: requests.Session, substrate: HttpPortalSubstrate, credentials: PortalCredentials
    ) -> None:
        """A login page without the form cannot be submitted."""
        with patch.object(http, "get", return_value=fixture_response(body="<html></html>")):
            with pytest.raises(AuthenticationError):
                substrate.authenticate(Session(), credentials)


class TestVerifySession:
    """Tests for cached session verification."""

    def test_valid_session(self, http: requests.Session, substrate: HttpPortalSubstrate) -> None:
        """A page carrying the signed-in marker verifies the session."""
        session = Session(cookies={"JSESSIONID": "cached"})
        sent_cookies = []

        def get(url, **kwargs):
            sent_cookies.append(http.cookies.get_dict())
            return fixture_response("booking_page.html")

        with patch.object(http, "get", side_effect=get):
            assert substrate.verify_session(session)

        assert sent_cookies == [{"JSESSIONID": "cached"}]
        assert session.authenticated
        assert not session.refreshed

    def test_expired_cookie_dropped(self, http: requests.Session, substrate: HttpPortalSubstrate) -> None:
        """A cookie the portal expires is removed from the session, not carried forward."""
        session = Session(cookies={"JSESSIONID": "cached", "LFR_SESSION_STATE": "old"})

        def get(url, **kwargs):
            # Max-Age=0 on the response removes the cookie from the jar
            http.cookies.clear(name="LFR_SESSION_STATE", domain="", path="/")
            http.cookies.set("GUEST_LANGUAGE_ID", "en_US")
            return fixture_response("booking_page.html")

        with patch.object(http, "get", side_effect=get):
            assert substrate.verify_session(session)

        assert session.cookies == {"JSESSIONID": "cached", "GUEST_LANGUAGE_ID": "en_US"}

    def test_stale_session(self, http: requests.Session, substrate: HttpPortalSubstrate) -> None:
        """A redirect to the login page means the cookies are stale."""
        session = Session(cookies={"JSESSIONID": "stale"})
        with patch.object(http, "get", return_value=fixture_response("login_page.html")):
            assert not substrate.verify_session(session)
        assert not session.authenticated


class TestTransportErrors:
    """Tests for transport error mapping."""

    def test_non_2xx_status(self, http: requests.Session, substrate: HttpPortalSubstrate) -> None:
        """Non-success statuses raise TransportError with the status code."""
        with patch.object(http, "get", return_value=fixture_response(body="down", status_code=503)):
            with pytest.raises(TransportError) as exc_info:
                substrate.open_booking_page(Session())
        assert exc_info.value.status_code == 503

    def test_timeout(self, http: requests.Session, substrate: HttpPortalSubstrate) -> None:
        """Request timeouts raise TransportTimeoutError."""
        with patch.object(http, "get", side_effect=requests.Timeout("read timed out")):
            with pytest.raises(TransportTimeoutError):
                substrate.open_booking_page(Session())

    def test_connection_error(self, http: requests.Session, substrate: HttpPortalSubstrate) -> None:
        """Other request failures raise a plain TransportError."""
        with patch.object(http, "get", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(TransportError) as exc_info:
                substrate.open_booking_page(Session())
        assert not isinstance(exc_info.value, TransportTimeoutError)

    def test_booking_page_without_form(self, http: requests.Session, substrate: HttpPortalSubstrate) -> None:
        """A page without the booking form is a protocol error."""
        with patch.object(http, "get", return_value=fixture_response("login_success.html")):
            with pytest.raises(ProtocolStateError):
                substrate.open_booking_page(Session())


class TestBookingFlow:
    """End-to-end booking sequences through the driver."""

    @pytest.fixture
    def pages(self) -> list[requests.Response]:
        return [fixture_response("login_page.html"), fixture_response("booking_page.html")]

    @pytest.fixture
    def postbacks(self) -> list[requests.Response]:
        return [
            fixture_response("login_success.html"),
            fixture_response("date_changed.xml"),
            fixture_response("activity_changed.xml"),
            fixture_response("slot_selected.xml"),
        ]

    def test_dry_run(
        self,
        http: requests.Session,
        substrate: HttpPortalSubstrate,
        credentials: PortalCredentials,
        pages: list[requests.Response],
        postbacks: list[requests.Response],
    ) -> None:
        """Login, date, activity and slot selection run in order and nothing is saved."""
        driver = PortalDriver(substrate, credentials, Session())

        with patch.object(http, "get", side_effect=pages), \
                patch.object(http, "post", side_effect=postbacks) as mock_post:
            outcome = driver.book("9:00 AM", date(2026, 10, 20), activity="squash", dry_run=True)

        assert outcome.status == OutcomeStatus.SUCCESS
        assert outcome.dry_run
        assert outcome.court == "Squash Court 2"
        assert outcome.time == "9:00 AM"
        assert mock_post.call_count == 4

        date_data = sent_data(mock_post, 1)
        assert mock_post.call_args_list[1].args[0] == booking_ajax_url(BASE_URL)
        assert date_data["javax.faces.source"] == f"{F}:j_idt60"
        assert date_data[f"{F}:j_idt60_input"] == "10/20/2026"
        assert date_data[f"{F}:showAllAreas"] == "true"
        assert date_data[VIEW_STATE] == "VS-1:-20419"
        assert unquote(date_data["javax.faces.encodedURL"]) == booking_ajax_url(BASE_URL)

        activity_data = sent_data(mock_post, 2)
        assert activity_data["javax.faces.source"] == f"{F}:j_idt67"
        assert activity_data[f"{F}:j_idt67_input"] == "5"
        assert activity_data[f"{F}:j_idt60_input"] == "10/20/2026"
        assert activity_data[VIEW_STATE] == "VS-2:-48811"

        select_data = sent_data(mock_post, 3)
        assert select_data["javax.faces.source"] == f"{F}:j_idt150"
        assert select_data["activityAreaId"] == "17"
        assert select_data["startTime"] == "9:00 AM"
        assert select_data[VIEW_STATE] == "VS-3:77120"

    def test_confirmed_booking(
        self,
        http: requests.Session,
        substrate: HttpPortalSubstrate,
        credentials: PortalCredentials,
        pages: list[requests.Response],
        postbacks: list[requests.Response],
    ) -> None:
        """The save postback uses the derived save button and the latest ViewState."""
        driver = PortalDriver(substrate, credentials, Session())
        postbacks.append(fixture_response("save_confirmed.xml"))

        with patch.object(http, "get", side_effect=pages), \
                patch.object(http, "post", side_effect=postbacks) as mock_post:
            outcome = driver.book("9:00 AM", date(2026, 10, 20), activity="squash")

        save_data = sent_data(mock_post, 4)
        assert save_data["javax.faces.source"] == f"{F}:j_idt390"
        assert save_data["javax.faces.partial.render"] == f"{F} {F}:growl"
        assert save_data[f"{F}:selectedSlotId"] == "slot-17-0900"
        assert save_data[VIEW_STATE] == "VS-4:90017"
        assert outcome.status == OutcomeStatus.SUCCESS
        assert "Reservation Confirmed" in outcome.confirmation

    def test_save_timeout_is_uncertain(
        self,
        http: requests.Session,
        substrate: HttpPortalSubstrate,
        credentials: PortalCredentials,
        pages: list[requests.Response],
        postbacks: list[requests.Response],
    ) -> None:
        """A read timeout on the save request yields an uncertain outcome."""
        driver = PortalDriver(substrate, credentials, Session())
        postbacks.append(requests.Timeout("read timed out"))

        with patch.object(http, "get", side_effect=pages), \
                patch.object(http, "post", side_effect=postbacks):
            outcome = driver.book("9:00 AM", date(2026, 10, 20), activity="squash")

        assert outcome.status == OutcomeStatus.UNCERTAIN


class TestCancelFlow:
    """End-to-end cancel sequence through the driver."""

    def test_click_then_confirm(
        self, http: requests.Session, substrate: HttpPortalSubstrate, credentials: PortalCredentials
    ) -> None:
        """The confirm postback is sourced from the YES button with the dialog's ViewState."""
        session = Session(cookies={"JSESSIONID": "abc"})
        session.mark_verified()
        driver = PortalDriver(substrate, credentials, session)
        token = f"{R}:j_idt88:0:j_idt97"

        with patch.object(http, "get", return_value=fixture_response("reservations_page.html")), \
                patch.object(
                    http,
                    "post",
                    side_effect=[fixture_response("cancel_dialog.xml"), fixture_response("cancel_confirmed.xml")],
                ) as mock_post:
            outcome = driver.cancel(token)

        assert outcome.status == OutcomeStatus.SUCCESS
        assert mock_post.call_args_list[0].args[0] == reservations_ajax_url(BASE_URL)

        click_data = sent_data(mock_post, 0)
        assert click_data["javax.faces.source"] == token
        assert click_data[VIEW_STATE] == "RV-1:3310"

        confirm_data = sent_data(mock_post, 1)
        assert confirm_data["javax.faces.source"] == f"{R}:j_idt276"
        assert confirm_data["javax.faces.partial.render"] == R
        assert confirm_data[VIEW_STATE] == "RV-2:4471"

    def test_reservations_page_without_view_state(
        self, http: requests.Session, substrate: HttpPortalSubstrate
    ) -> None:
        """A reservations page without a ViewState cannot be posted back to."""
        with patch.object(http, "get", return_value=fixture_response("login_success.html")):
            with pytest.raises(ProtocolStateError):
                substrate.open_reservations(Session())
