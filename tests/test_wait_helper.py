"""
Tests for the wait strategy helper module.

These tests verify the WaitMode enum, the WaitStrategy settle waits used
after PrimeFaces AJAX behaviours, and their timeout handling.
"""

from unittest.mock import MagicMock, patch

import pytest
from selenium.common.exceptions import TimeoutException, WebDriverException

from app.config import WaitMode
from app.providers.exceptions import TransportTimeoutError
from app.providers.wait_helper import (
    AJAX_IDLE_SCRIPT,
    HYBRID_BUFFER_SECONDS,
    WaitStrategy,
    get_wait_strategy,
)


class TestWaitModeEnum:
    """Tests for the WaitMode enum."""

    def test_wait_mode_values(self) -> None:
        """Test that every mode exists with its string value."""
        assert WaitMode.FIXED.value == "fixed"
        assert WaitMode.EVENT_DRIVEN.value == "event_driven"
        assert WaitMode.HYBRID.value == "hybrid"

    def test_wait_mode_from_string(self) -> None:
        """Test that WaitMode can be created from string values."""
        assert WaitMode("fixed") == WaitMode.FIXED
        assert WaitMode("event_driven") == WaitMode.EVENT_DRIVEN
        assert WaitMode("hybrid") == WaitMode.HYBRID


class TestWaitStrategyInit:
    """Tests for WaitStrategy initialization."""

    def test_init_with_explicit_values(self) -> None:
        """Test initialization with explicit mode and timings."""
        strategy = WaitStrategy(mode=WaitMode.FIXED, timeout=3.0, poll_interval=0.1, settle_delay=1.5)

        assert strategy.mode == WaitMode.FIXED
        assert strategy.timeout == 3.0
        assert strategy.poll_interval == 0.1
        assert strategy.settle_delay == 1.5

    def test_init_uses_settings_when_no_mode_provided(self) -> None:
        """Test that init uses settings when no values are provided."""
        with patch("app.providers.wait_helper.settings") as mock_settings:
            mock_settings.wait_mode = WaitMode.HYBRID
            mock_settings.ajax_settle_timeout_seconds = 12.0
            strategy = WaitStrategy()

        assert strategy.mode == WaitMode.HYBRID
        assert strategy.timeout == 12.0

    def test_zero_timings_are_respected(self) -> None:
        """Test that explicit zero values are not replaced by settings."""
        strategy = WaitStrategy(mode=WaitMode.FIXED, settle_delay=0.0)
        assert strategy.settle_delay == 0.0


class TestWaitStrategyWaitForAjax:
    """Tests for WaitStrategy.wait_for_ajax method."""

    @pytest.fixture
    def mock_driver(self) -> MagicMock:
        """Create a mock WebDriver whose AJAX queue is idle."""
        driver = MagicMock()
        driver.execute_script.return_value = True
        return driver

    def test_fixed_mode_sleeps_settle_delay(self, mock_driver: MagicMock) -> None:
        """Test that FIXED mode sleeps and never polls the page."""
        strategy = WaitStrategy(mode=WaitMode.FIXED, settle_delay=1.5)

        with patch("app.providers.wait_helper.time_module.sleep") as mock_sleep:
            strategy.wait_for_ajax(mock_driver)

        mock_sleep.assert_called_once_with(1.5)
        mock_driver.execute_script.assert_not_called()

    def test_event_driven_polls_queue(self, mock_driver: MagicMock) -> None:
        """Test that EVENT_DRIVEN mode polls the PrimeFaces queue without sleeping."""
        strategy = WaitStrategy(mode=WaitMode.EVENT_DRIVEN, timeout=1.0, poll_interval=0.01)

        with patch("app.providers.wait_helper.time_module.sleep") as mock_sleep:
            strategy.wait_for_ajax(mock_driver)

        mock_driver.execute_script.assert_called_with(AJAX_IDLE_SCRIPT)
        mock_sleep.assert_not_called()

    def test_event_driven_uses_configured_poll_frequency(self, mock_driver: MagicMock) -> None:
        """Test that WebDriverWait is built from the strategy's timings."""
        strategy = WaitStrategy(mode=WaitMode.EVENT_DRIVEN, timeout=4.0, poll_interval=0.2)

        with patch("app.providers.wait_helper.WebDriverWait") as mock_wait_class:
            strategy.wait_for_ajax(mock_driver)

        mock_wait_class.assert_called_once_with(mock_driver, 4.0, poll_frequency=0.2)

    def test_hybrid_mode_adds_buffer_sleep(self, mock_driver: MagicMock) -> None:
        """Test that HYBRID mode adds buffer sleep after the queue drains."""
        strategy = WaitStrategy(mode=WaitMode.HYBRID, timeout=1.0, poll_interval=0.01)

        with patch("app.providers.wait_helper.time_module.sleep") as mock_sleep:
            strategy.wait_for_ajax(mock_driver)

        mock_sleep.assert_called_once_with(HYBRID_BUFFER_SECONDS)

    def test_busy_queue_raises_timeout(self) -> None:
        """Test that a queue that never drains raises TransportTimeoutError."""
        driver = MagicMock()
        driver.execute_script.return_value = False
        strategy = WaitStrategy(mode=WaitMode.EVENT_DRIVEN, timeout=0.05, poll_interval=0.01)

        with pytest.raises(TransportTimeoutError) as exc_info:
            strategy.wait_for_ajax(driver, "save booking")
        assert "save booking" in str(exc_info.value)

    def test_dead_browser_raises_timeout(self) -> None:
        """Test that a browser that stops answering is treated as a timeout."""
        strategy = WaitStrategy(mode=WaitMode.EVENT_DRIVEN, timeout=1.0, poll_interval=0.01)

        with patch("app.providers.wait_helper.WebDriverWait") as mock_wait_class:
            mock_wait_class.return_value.until.side_effect = WebDriverException("disconnected")
            with pytest.raises(TransportTimeoutError):
                strategy.wait_for_ajax(MagicMock())


class TestWaitStrategyWaitForElement:
    """Tests for WaitStrategy.wait_for_element method."""

    @pytest.fixture
    def mock_driver(self) -> MagicMock:
        """Create a mock WebDriver."""
        return MagicMock()

    def test_fixed_mode_sleeps_and_returns_none(self, mock_driver: MagicMock) -> None:
        """Test that FIXED mode sleeps for the settle delay."""
        strategy = WaitStrategy(mode=WaitMode.FIXED, settle_delay=2.0)
        locator = ("css selector", ".ui-dialog")

        with patch("app.providers.wait_helper.time_module.sleep") as mock_sleep:
            result = strategy.wait_for_element(mock_driver, locator)

        mock_sleep.assert_called_once_with(2.0)
        assert result is None

    def test_event_driven_returns_element(self, mock_driver: MagicMock) -> None:
        """Test that EVENT_DRIVEN mode returns the located element."""
        strategy = WaitStrategy(mode=WaitMode.EVENT_DRIVEN, timeout=10.0, poll_interval=0.25)
        mock_element = MagicMock()

        with patch("app.providers.wait_helper.WebDriverWait") as mock_wait_class:
            mock_wait_class.return_value.until.return_value = mock_element
            result = strategy.wait_for_element(mock_driver, ("css selector", ".ui-dialog"))

        mock_wait_class.assert_called_once_with(mock_driver, 10.0, poll_frequency=0.25)
        assert result == mock_element

    def test_event_driven_handles_timeout(self, mock_driver: MagicMock) -> None:
        """Test that a missing element returns None instead of raising."""
        strategy = WaitStrategy(mode=WaitMode.EVENT_DRIVEN)

        with patch("app.providers.wait_helper.WebDriverWait") as mock_wait_class:
            mock_wait_class.return_value.until.side_effect = TimeoutException()
            result = strategy.wait_for_element(mock_driver, ("css selector", ".ui-dialog"))

        assert result is None

    @pytest.mark.parametrize(
        "condition,expected",
        [
            ("visible", "visibility_of_element_located"),
            ("clickable", "element_to_be_clickable"),
            ("presence", "presence_of_element_located"),
        ],
    )
    def test_conditions(self, mock_driver: MagicMock, condition: str, expected: str) -> None:
        """Test that each condition maps to its expected_conditions helper."""
        strategy = WaitStrategy(mode=WaitMode.EVENT_DRIVEN)
        locator = ("css selector", ".btn-save")

        with patch("app.providers.wait_helper.WebDriverWait"):
            with patch("app.providers.wait_helper.expected_conditions") as mock_ec:
                strategy.wait_for_element(mock_driver, locator, condition=condition)

        getattr(mock_ec, expected).assert_called_once_with(locator)

    def test_hybrid_mode_adds_buffer_sleep(self, mock_driver: MagicMock) -> None:
        """Test that HYBRID mode adds buffer sleep after WebDriverWait."""
        strategy = WaitStrategy(mode=WaitMode.HYBRID)

        with patch("app.providers.wait_helper.WebDriverWait"):
            with patch("app.providers.wait_helper.time_module.sleep") as mock_sleep:
                strategy.wait_for_element(mock_driver, ("css selector", ".ui-dialog"))

        mock_sleep.assert_called_once_with(HYBRID_BUFFER_SECONDS)


class TestGetWaitStrategy:
    """Tests for the get_wait_strategy factory function."""

    def test_respects_mode_parameter(self) -> None:
        """Test that get_wait_strategy respects the mode parameter."""
        strategy = get_wait_strategy(mode=WaitMode.EVENT_DRIVEN)

        assert isinstance(strategy, WaitStrategy)
        assert strategy.mode == WaitMode.EVENT_DRIVEN

    def test_uses_settings_when_no_mode(self) -> None:
        """Test that get_wait_strategy uses settings when no mode provided."""
        with patch("app.providers.wait_helper.settings") as mock_settings:
            mock_settings.wait_mode = WaitMode.HYBRID
            strategy = get_wait_strategy()
            assert strategy.mode == WaitMode.HYBRID


class TestHybridBufferConstant:
    """Tests for the HYBRID_BUFFER_SECONDS constant."""

    def test_hybrid_buffer_is_reasonable(self) -> None:
        """Test that HYBRID_BUFFER_SECONDS is a small positive value."""
        assert 0 < HYBRID_BUFFER_SECONDS < 1.0
