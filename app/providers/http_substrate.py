import base64
import logging
from urllib.parse import quote, urljoin

import requests

from app.config import settings
from app.providers import faces
from app.providers.base import ActionResponse, PortalCredentials, PortalSubstrate, Slot
from app.providers.document import PortalDocument, parse_document
from app.providers.exceptions import (
    AuthenticationError,
    ProtocolStateError,
    TransportError,
    TransportTimeoutError,
)
from app.providers.extractor import (
    ACTIVITY_DROPDOWN,
    DATE_PICKER,
    SAVE_BOOKING,
    SHOW_RESERVATION_SCREEN,
    extract_form_fields,
    extract_form_id,
    extract_login_error,
    extract_login_form,
    has_authenticated_marker,
    resolve_components,
)
from app.providers.portal_schema import PORTAL, USER_AGENT
from app.providers.state import ComponentRegistry, FormFieldSet, PageState, Session

logger = logging.getLogger(__name__)

PAGE_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}


class HttpPortalSubstrate(PortalSubstrate):
    """
    Portal substrate that replays JSF partial postbacks over plain HTTP.

    Every request carries the session's cookies and every response's cookies
    are copied back into the session, so the ``Session`` stays the single
    source of truth whichever substrate ends up using it.
    """

    def __init__(self, base_url: str, http: requests.Session | None = None, timeout: float | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.http = http or requests.Session()
        self.http.headers.update(PAGE_HEADERS)
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds

    # ---- transport ----

    def _url(self, path: str) -> str:
        return path if path.startswith("http") else urljoin(f"{self.base_url}/", path.lstrip("/"))

    def _send(self, session: Session, method: str, url: str, **kwargs) -> requests.Response:
        self.http.cookies.clear()
        for name, value in session.cookies.items():
            self.http.cookies.set(name, value)

        try:
            if method == "GET":
                response = self.http.get(url, timeout=self.timeout, **kwargs)
            else:
                response = self.http.post(url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise TransportTimeoutError(f"{method} {url} timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        # The jar drops cookies the portal expired, so it replaces the session map
        session.cookies.clear()
        session.cookies.update(self.http.cookies.get_dict())
        if not 200 <= response.status_code < 300:
            raise TransportError(f"{method} {url} returned HTTP {response.status_code}", response.status_code)
        return response

    def _get(self, session: Session, path: str) -> PortalDocument:
        response = self._send(session, "GET", self._url(path), allow_redirects=True)
        return parse_document(response.text)

    def _post_ajax(self, session: Session, url: str, referer_path: str, data: dict[str, str]) -> requests.Response:
        headers = dict(faces.AJAX_HEADERS)
        headers["Referer"] = self._url(referer_path)
        logger.debug(f"AJAX postback source={data.get(PORTAL.FACES.source)} ({len(data)} fields)")
        return self._send(session, "POST", url, data=data, headers=headers)

    def _postback(self, session: Session, state: PageState, postback: faces.PartialPostback) -> PortalDocument:
        url = faces.booking_ajax_url(self.base_url)
        data = postback.payload(state, encoded_url=quote(url, safe=""))
        response = self._post_ajax(session, url, PORTAL.PATHS.booking, data)
        return parse_document(response.text)

    def _reservations_postback(self, session: Session, state: PageState, postback: faces.PartialPostback) -> requests.Response:
        url = faces.reservations_ajax_url(self.base_url)
        return self._post_ajax(session, url, PORTAL.PATHS.reservations, postback.payload(state))

    def _advance(self, state: PageState, document: PortalDocument) -> PageState:
        return state.advance(
            document,
            extract_form_fields(document, state.form_id),
            resolve_components(document, state.form_id, with_fallbacks=False),
        )

    # ---- authentication ----

    def authenticate(self, session: Session, credentials: PortalCredentials) -> None:
        logger.info(f"Logging in to {self.base_url} as {credentials.username}")
        login_page = self._get(session, PORTAL.PATHS.login)
        form = extract_login_form(login_page)
        if form is None:
            raise AuthenticationError("Login form not found")

        namespace = PORTAL.LOGIN.namespace
        data = {f"{namespace}{name}": value for name, value in form.fields.items()}
        data[f"{namespace}login"] = credentials.username
        # Liferay base64-encodes the password client-side
        data[f"{namespace}password"] = base64.b64encode(credentials.password.encode("utf-8")).decode("ascii")
        if form.p_auth:
            data["p_auth"] = form.p_auth

        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Origin": self.base_url,
            "Referer": self._url(PORTAL.PATHS.login),
        }
        response = self._send(
            session, "POST", self._url(form.action_url), data=data, headers=headers, allow_redirects=True
        )
        document = parse_document(response.text)

        if not has_authenticated_marker(document):
            error = extract_login_error(document)
            logger.error(f"Login failed: {error or 'no authenticated marker on response'}")
            raise AuthenticationError(error or "Login failed")

        session.mark_logged_in()
        logger.info("Login successful")

    def verify_session(self, session: Session) -> bool:
        document = self._get(session, PORTAL.PATHS.booking)
        if has_authenticated_marker(document):
            session.mark_verified()
            return True
        logger.info("Stored session is no longer authenticated")
        return False

    # ---- booking ----

    def open_booking_page(self, session: Session) -> PageState:
        document = self._get(session, PORTAL.PATHS.booking)
        form_id = extract_form_id(document)
        if not form_id or not document.view_state:
            raise ProtocolStateError("open booking page", "form state")

        return PageState(
            form_id=form_id,
            view_state=document.view_state,
            fields=FormFieldSet(extract_form_fields(document, form_id)),
            components=resolve_components(document, form_id),
            document=document,
        )

    def navigate_date(self, session: Session, state: PageState, portal_date: str) -> PageState:
        date_picker = state.components.resolve(DATE_PICKER)
        if not date_picker:
            raise ProtocolStateError("navigate date", "date picker id")
        logger.info(f"Changing booking date to {portal_date}")
        document = self._postback(session, state, faces.date_change(state, date_picker, portal_date))
        return self._advance(state, document).advance(
            document, {f"{date_picker}_input": portal_date}, ComponentRegistry()
        )

    def navigate_activity(self, session: Session, state: PageState, activity_id: str) -> PageState:
        dropdown = state.components.resolve(ACTIVITY_DROPDOWN)
        if not dropdown:
            raise ProtocolStateError("navigate activity", "activity dropdown id")
        logger.info(f"Changing activity to {activity_id}")
        postback = faces.activity_change(state, dropdown, activity_id)
        document = self._postback(session, state, postback)
        return self._advance(state, document).advance(document, postback.extra, ComponentRegistry())

    def select_slot(self, session: Session, state: PageState, slot: Slot) -> PageState:
        command = state.components.resolve(SHOW_RESERVATION_SCREEN)
        if not command:
            raise ProtocolStateError("select slot", "reservation screen command")
        logger.info(f"Selecting slot {slot.court_label} at {slot.start_time}")
        postback = faces.show_reservation(state, command, slot.area_id, slot.start_time, slot.end_time)
        document = self._postback(session, state, postback)
        return self._advance(state, document)

    def confirm_save(self, session: Session, state: PageState, slot: Slot) -> ActionResponse:
        save_button = state.components.resolve(SAVE_BOOKING)
        if not save_button:
            raise ProtocolStateError("save booking", "save button id")
        postback = faces.save_booking(state, save_button, slot.area_id, slot.start_time, slot.end_time, slot.raw_id)
        url = faces.booking_ajax_url(self.base_url)
        response = self._post_ajax(
            session, url, PORTAL.PATHS.booking, postback.payload(state, encoded_url=quote(url, safe=""))
        )
        return ActionResponse(status_code=response.status_code, body=response.text, partial=True)

    # ---- reservations ----

    def open_reservations(self, session: Session) -> PageState:
        document = self._get(session, PORTAL.PATHS.reservations)
        if not document.view_state:
            raise ProtocolStateError("open reservations", "view state")
        form_id = extract_form_id(document, "reservationsForm") or PORTAL.RESERVATIONS.fallback_form_id
        return PageState(
            form_id=form_id,
            view_state=document.view_state,
            fields=FormFieldSet(),
            components=ComponentRegistry(),
            document=document,
        )

    def click_cancel(self, session: Session, state: PageState, cancel_token: str) -> PageState:
        logger.info(f"Opening cancel dialog for {cancel_token}")
        response = self._reservations_postback(session, state, faces.cancel_click(state, cancel_token))
        document = parse_document(response.text)
        return state.advance(document, {}, ComponentRegistry())

    def confirm_cancel(self, session: Session, state: PageState, button_id: str) -> ActionResponse:
        logger.info(f"Confirming cancellation with {button_id}")
        response = self._reservations_postback(session, state, faces.cancel_confirm(state, button_id))
        return ActionResponse(status_code=response.status_code, body=response.text, partial=True)

    def close(self) -> None:
        self.http.close()
