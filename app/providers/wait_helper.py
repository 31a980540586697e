"""
Wait strategy helper for the browser substrate.

PrimeFaces serialises AJAX requests through ``PrimeFaces.ajax.Queue``. After
triggering a widget behaviour the browser substrate waits for that queue to
drain before reading the DOM. The wait mode is configured via the WAIT_MODE
environment variable.

Three modes are supported:
- FIXED: Sleep a fixed settle delay (most reliable, slowest)
- EVENT_DRIVEN: Poll the AJAX queue until it is empty (fastest)
- HYBRID: Poll the queue, then add a small buffer sleep (balanced)

A settle wait that runs out of time raises ``TransportTimeoutError``; it
never returns as if the page had settled.
"""

import logging
import time as time_module
from typing import Any

from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.support import expected_conditions
from selenium.webdriver.support.ui import WebDriverWait

from app.config import WaitMode, settings
from app.providers.exceptions import TransportTimeoutError

logger = logging.getLogger(__name__)

HYBRID_BUFFER_SECONDS = 0.3

AJAX_IDLE_SCRIPT = (
    "return document.readyState === 'complete' && "
    "(typeof PrimeFaces === 'undefined' || !PrimeFaces.ajax || "
    "PrimeFaces.ajax.Queue.isEmpty());"
)


class WaitStrategy:
    """
    Provides settle waits that behave differently based on the configured wait mode.

    Usage:
        wait_strategy = WaitStrategy()
        wait_strategy.wait_for_ajax(driver)
        wait_strategy.wait_for_element(driver, (By.CSS_SELECTOR, ".ui-dialog"))
    """

    def __init__(
        self,
        mode: WaitMode | None = None,
        timeout: float | None = None,
        poll_interval: float | None = None,
        settle_delay: float | None = None,
    ) -> None:
        self.mode = mode or settings.wait_mode
        self.timeout = timeout if timeout is not None else settings.ajax_settle_timeout_seconds
        self.poll_interval = poll_interval if poll_interval is not None else settings.ajax_poll_interval_seconds
        self.settle_delay = settle_delay if settle_delay is not None else settings.ajax_settle_delay_seconds
        logger.info(f"WaitStrategy initialized with mode: {self.mode.value}")

    def _wait(self, driver: Any) -> WebDriverWait:
        return WebDriverWait(driver, self.timeout, poll_frequency=self.poll_interval)

    def wait_for_ajax(self, driver: Any, action: str = "ajax") -> None:
        """
        Block until the PrimeFaces AJAX queue is empty.

        Raises:
            TransportTimeoutError: if the queue does not drain within the timeout.
        """
        if self.mode == WaitMode.FIXED:
            logger.debug(f"FIXED mode: sleeping {self.settle_delay}s after {action}")
            time_module.sleep(self.settle_delay)
            return

        try:
            self._wait(driver).until(lambda d: d.execute_script(AJAX_IDLE_SCRIPT))
            logger.debug(f"{self.mode.value} mode: AJAX queue empty after {action}")
        except TimeoutException as e:
            logger.error(f"{self.mode.value} mode: AJAX did not settle after {action}")
            raise TransportTimeoutError(f"{action}: page did not settle within {self.timeout}s") from e
        except WebDriverException as e:
            raise TransportTimeoutError(f"{action}: browser stopped responding: {e.msg}") from e

        if self.mode == WaitMode.HYBRID:
            logger.debug(f"HYBRID mode: adding {HYBRID_BUFFER_SECONDS}s buffer")
            time_module.sleep(HYBRID_BUFFER_SECONDS)

    def wait_for_element(
        self,
        driver: Any,
        locator: tuple[str, str],
        condition: str = "presence",
    ) -> Any | None:
        """
        Wait for an element to appear, or sleep the settle delay in FIXED mode.

        Returns:
            The element if found (in EVENT_DRIVEN/HYBRID modes), None otherwise.
        """
        if self.mode == WaitMode.FIXED:
            logger.debug(f"FIXED mode: sleeping {self.settle_delay}s for element {locator}")
            time_module.sleep(self.settle_delay)
            return None

        if condition == "visible":
            expected = expected_conditions.visibility_of_element_located(locator)
        elif condition == "clickable":
            expected = expected_conditions.element_to_be_clickable(locator)
        else:
            expected = expected_conditions.presence_of_element_located(locator)

        element = None
        try:
            element = self._wait(driver).until(expected)
            logger.debug(f"{self.mode.value} mode: element {locator} found")
        except TimeoutException:
            logger.warning(f"{self.mode.value} mode: timeout waiting for element {locator}")

        if self.mode == WaitMode.HYBRID:
            time_module.sleep(HYBRID_BUFFER_SECONDS)
        return element


def get_wait_strategy(mode: WaitMode | None = None) -> WaitStrategy:
    """Factory function to get a WaitStrategy instance."""
    return WaitStrategy(mode)
