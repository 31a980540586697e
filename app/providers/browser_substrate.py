import logging
import os
from collections.abc import Callable
from typing import Any

from selenium import webdriver
from selenium.common.exceptions import (
    NoSuchElementException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.common.by import By
from selenium.webdriver.support import expected_conditions
from selenium.webdriver.support.ui import WebDriverWait
from webdriver_manager.chrome import ChromeDriverManager

from app.config import settings
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
    extract_form_fields,
    extract_form_id,
    extract_login_error,
    has_authenticated_marker,
    resolve_components,
)
from app.providers.portal_schema import PORTAL, USER_AGENT
from app.providers.state import ComponentRegistry, FormFieldSet, PageState, Session
from app.providers.wait_helper import WaitStrategy, get_wait_strategy

logger = logging.getLogger(__name__)

# Runs a PrimeFaces behaviour exactly as the widget's own change handler would
TRIGGER_BEHAVIOUR_SCRIPT = """
var input = document.getElementById(arguments[0] + '_input');
if (!input) { return false; }
input.value = arguments[1];
PrimeFaces.ab({s: arguments[0], e: arguments[2], f: arguments[3], p: arguments[0], u: arguments[3]});
return true;
"""

CLICK_SLOT_SCRIPT = """
var marker = document.querySelector(
    '[data-area-id="' + arguments[0] + '"][data-start-time="' + arguments[1] + '"]');
if (!marker) { return false; }
var cell = marker.closest('td') || marker;
cell.click();
return true;
"""

CLICK_SAVE_SCRIPT = """
var dialogs = document.querySelectorAll('.ui-dialog');
for (var i = 0; i < dialogs.length; i++) {
    var dialog = dialogs[i];
    if (dialog.getAttribute('aria-hidden') === 'true' || dialog.offsetParent === null) { continue; }
    var button = dialog.querySelector('a.btn-save, button.btn-save');
    if (button) { button.click(); return button.id || true; }
}
var fallback = arguments[0] ? document.getElementById(arguments[0]) : null;
if (fallback) { fallback.click(); return fallback.id; }
return false;
"""

CLICK_BY_ID_SCRIPT = """
var element = document.getElementById(arguments[0]);
if (!element) { return false; }
element.click();
return true;
"""


class BrowserPortalSubstrate(PortalSubstrate):
    """
    Portal substrate that drives a real Chrome through Selenium.

    Instead of replaying postbacks it triggers the same PrimeFaces behaviours
    in the page and waits for the AJAX queue to drain, then parses the live
    DOM with the same extractor the HTTP substrate uses. The WebDriver is
    created lazily and reused until ``close()``; callers must run it from a
    single thread at a time.
    """

    def __init__(
        self,
        base_url: str,
        driver_factory: Callable[[], Any] | None = None,
        wait_strategy: WaitStrategy | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._driver_factory = driver_factory or self._create_driver
        self._driver: Any | None = None
        self._loaded_cookies: dict[str, str] = {}
        self.wait = wait_strategy or get_wait_strategy()

    def _create_driver(self) -> webdriver.Chrome:
        """Create a Chrome WebDriver instance, headless unless configured otherwise."""
        options = Options()
        if settings.browser_headless:
            options.add_argument("--headless=new")
        options.add_argument("--no-sandbox")
        options.add_argument("--disable-dev-shm-usage")
        options.add_argument("--disable-gpu")
        options.add_argument("--window-size=1920,1080")
        options.add_argument(f"--user-agent={USER_AGENT}")
        options.add_argument("--disable-blink-features=AutomationControlled")
        options.add_experimental_option("excludeSwitches", ["enable-automation"])

        chromedriver_path = os.environ.get("CHROMEDRIVER_PATH")
        if chromedriver_path and os.path.exists(chromedriver_path):
            service = Service(chromedriver_path)
        else:
            service = Service(ChromeDriverManager().install())
        driver = webdriver.Chrome(service=service, options=options)
        driver.set_page_load_timeout(settings.ajax_settle_timeout_seconds * 2)
        return driver

    @property
    def driver(self) -> Any:
        if self._driver is None:
            logger.info("Starting browser")
            try:
                self._driver = self._driver_factory()
            except WebDriverException as e:
                raise TransportError(f"Could not start browser: {e.msg}") from e
        return self._driver

    # ---- page helpers ----

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _load(self, path: str) -> PortalDocument:
        try:
            self.driver.get(self._url(path))
        except TimeoutException as e:
            raise TransportTimeoutError(f"Loading {path} timed out") from e
        except WebDriverException as e:
            raise TransportError(f"Loading {path} failed: {e.msg}") from e
        self.wait.wait_for_ajax(self.driver, f"load {path}")
        return self._document()

    def _document(self) -> PortalDocument:
        return parse_document(self.driver.page_source)

    def _run(self, script: str, *args: Any) -> Any:
        try:
            return self.driver.execute_script(script, *args)
        except WebDriverException as e:
            raise TransportError(f"Browser script failed: {e.msg}") from e

    def _push_cookies(self, session: Session) -> None:
        if session.cookies == self._loaded_cookies:
            return
        self.driver.get(self.base_url)
        self.driver.delete_all_cookies()
        for name, value in session.cookies.items():
            self.driver.add_cookie({"name": name, "value": value})
        self._loaded_cookies = dict(session.cookies)
        logger.debug(f"Loaded {len(session.cookies)} cookies into browser")

    def _pull_cookies(self, session: Session) -> None:
        session.cookies.update({c["name"]: c["value"] for c in self.driver.get_cookies()})
        self._loaded_cookies = dict(session.cookies)

    def _refresh_state(self, state: PageState, action: str) -> PageState:
        self.wait.wait_for_ajax(self.driver, action)
        document = self._document()
        return state.advance(
            document,
            extract_form_fields(document, state.form_id),
            resolve_components(document, state.form_id, with_fallbacks=False),
        )

    # ---- authentication ----

    def authenticate(self, session: Session, credentials: PortalCredentials) -> None:
        logger.info(f"Logging in to {self.base_url} as {credentials.username} via browser")
        namespace = PORTAL.LOGIN.namespace
        try:
            self.driver.delete_all_cookies()
            self.driver.get(self._url(PORTAL.PATHS.login))
            member_locator = (By.NAME, f"{namespace}login")
            member_input = self.wait.wait_for_element(self.driver, member_locator) or self.driver.find_element(
                *member_locator
            )
            password_input = self.driver.find_element(By.NAME, f"{namespace}password")

            member_input.clear()
            member_input.send_keys(credentials.username)
            password_input.clear()
            password_input.send_keys(credentials.password)

            submit_button = self.driver.find_element(By.CSS_SELECTOR, f'{PORTAL.LOGIN.form} button[type="submit"]')
            current_url = self.driver.current_url
            submit_button.click()
            try:
                WebDriverWait(self.driver, settings.ajax_settle_timeout_seconds).until(
                    expected_conditions.url_changes(current_url)
                )
            except TimeoutException:
                logger.debug("URL unchanged after login submit")
        except NoSuchElementException as e:
            raise AuthenticationError("Login form not found") from e
        except TimeoutException as e:
            raise TransportTimeoutError("Login page did not load") from e
        except WebDriverException as e:
            raise TransportError(f"Login failed in browser: {e.msg}") from e

        document = self._document()
        if not has_authenticated_marker(document):
            error = extract_login_error(document)
            logger.error(f"Login failed. Still on URL: {self.driver.current_url}")
            raise AuthenticationError(error or "Login failed")

        self._pull_cookies(session)
        session.mark_logged_in()
        logger.info("Login successful")

    def verify_session(self, session: Session) -> bool:
        self._push_cookies(session)
        document = self._load(PORTAL.PATHS.booking)
        if has_authenticated_marker(document):
            self._pull_cookies(session)
            session.mark_verified()
            return True
        logger.info("Stored cookies no longer authenticate the browser")
        return False

    # ---- booking ----

    def open_booking_page(self, session: Session) -> PageState:
        self._push_cookies(session)
        document = self._load(PORTAL.PATHS.booking)
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

    def _trigger(self, state: PageState, component: str, value: str, event: str, action: str) -> PageState:
        if not self._run(TRIGGER_BEHAVIOUR_SCRIPT, component, value, event, state.form_id):
            raise ProtocolStateError(action, f"widget {component}")
        return self._refresh_state(state, action)

    def navigate_date(self, session: Session, state: PageState, portal_date: str) -> PageState:
        date_picker = state.components.resolve(DATE_PICKER)
        if not date_picker:
            raise ProtocolStateError("navigate date", "date picker id")
        logger.info(f"Changing booking date to {portal_date}")
        return self._trigger(state, date_picker, portal_date, "dateSelect", "navigate date")

    def navigate_activity(self, session: Session, state: PageState, activity_id: str) -> PageState:
        dropdown = state.components.resolve(ACTIVITY_DROPDOWN)
        if not dropdown:
            raise ProtocolStateError("navigate activity", "activity dropdown id")
        logger.info(f"Changing activity to {activity_id}")
        return self._trigger(state, dropdown, activity_id, "change", "navigate activity")

    def select_slot(self, session: Session, state: PageState, slot: Slot) -> PageState:
        logger.info(f"Clicking slot {slot.court_label} at {slot.start_time}")
        if not self._run(CLICK_SLOT_SCRIPT, slot.area_id, slot.start_time):
            raise ProtocolStateError("select slot", f"grid cell for {slot.court_label} at {slot.start_time}")
        return self._refresh_state(state, "select slot")

    def confirm_save(self, session: Session, state: PageState, slot: Slot) -> ActionResponse:
        clicked = self._run(CLICK_SAVE_SCRIPT, state.components.get(SAVE_BOOKING))
        if not clicked:
            raise ProtocolStateError("save booking", "save button")
        logger.info(f"Clicked save button {clicked}")
        self.wait.wait_for_ajax(self.driver, "save booking")
        return ActionResponse(status_code=200, body=self.driver.page_source, partial=False)

    # ---- reservations ----

    def open_reservations(self, session: Session) -> PageState:
        self._push_cookies(session)
        document = self._load(PORTAL.PATHS.reservations)
        form_id = extract_form_id(document, "reservationsForm") or PORTAL.RESERVATIONS.fallback_form_id
        return PageState(
            form_id=form_id,
            view_state=document.view_state,
            fields=FormFieldSet(),
            components=ComponentRegistry(),
            document=document,
        )

    def click_cancel(self, session: Session, state: PageState, cancel_token: str) -> PageState:
        logger.info(f"Clicking cancel control {cancel_token}")
        if not self._run(CLICK_BY_ID_SCRIPT, cancel_token):
            raise ProtocolStateError("cancel reservation", f"cancel control {cancel_token}")
        self.wait.wait_for_ajax(self.driver, "open cancel dialog")
        return state.advance(self._document(), {}, ComponentRegistry())

    def confirm_cancel(self, session: Session, state: PageState, button_id: str) -> ActionResponse:
        logger.info(f"Confirming cancellation with {button_id}")
        if not self._run(CLICK_BY_ID_SCRIPT, button_id):
            raise ProtocolStateError("confirm cancel", f"button {button_id}")
        self.wait.wait_for_ajax(self.driver, "confirm cancel")
        return ActionResponse(status_code=200, body=self.driver.page_source, partial=False)

    def close(self) -> None:
        if self._driver is not None:
            try:
                self._driver.quit()
            except WebDriverException as e:
                logger.warning(f"Error closing browser: {e.msg}")
            self._driver = None
            self._loaded_cookies = {}
