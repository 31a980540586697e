"""
Tests for session and page state values.
"""

from datetime import UTC, datetime, timedelta
from types import MappingProxyType

import pytest

from app.providers.document import parse_document
from app.providers.state import ComponentRegistry, FormFieldSet, PageState, Session
from tests.fixtures.loader import load_document


def registry(ids: dict[str, str], fallbacks: set[str] | None = None) -> ComponentRegistry:
    return ComponentRegistry(ids=MappingProxyType(ids), fallbacks=frozenset(fallbacks or set()))


class TestSession:
    """Tests for Session authentication bookkeeping."""

    def test_new_session_not_verified(self) -> None:
        """A fresh session is never considered verified."""
        assert not Session().is_recently_verified(timedelta(minutes=5))

    def test_recently_verified_window(self) -> None:
        """Verification is trusted only inside the window."""
        session = Session()
        verified = datetime(2026, 10, 17, 9, 0, tzinfo=UTC)
        session.mark_verified(verified)

        assert session.is_recently_verified(timedelta(minutes=5), verified + timedelta(minutes=4))
        assert not session.is_recently_verified(timedelta(minutes=5), verified + timedelta(minutes=6))

    def test_login_marks_refreshed(self) -> None:
        """A fresh login flags the cookies for persistence."""
        session = Session()
        session.mark_logged_in()

        assert session.authenticated
        assert session.refreshed

    def test_invalidate(self) -> None:
        """Invalidation drops cookies and authentication."""
        session = Session(cookies={"JSESSIONID": "abc"})
        session.mark_verified()
        session.invalidate()

        assert session.cookies == {}
        assert not session.authenticated
        assert session.last_verified_at is None


class TestFormFieldSet:
    """Tests for carried form fields."""

    def test_merge_newer_wins(self) -> None:
        """Newer values replace older ones and other fields are carried."""
        fields = FormFieldSet({"a": "1", "b": "2"}).merge({"b": "3", "c": "4"})
        assert fields.as_dict() == {"a": "1", "b": "3", "c": "4"}

    def test_immutable(self) -> None:
        """Merging returns a new set and leaves the original alone."""
        original = FormFieldSet({"a": "1"})
        original.merge({"a": "2"})

        assert original["a"] == "1"
        with pytest.raises(TypeError):
            original._fields["a"] = "x"  # type: ignore[index]


class TestComponentRegistry:
    """Tests for merging widget ids across payloads."""

    def test_derived_beats_fallback(self) -> None:
        """A derived id replaces a fallback and clears its fallback flag."""
        merged = registry({"save": "f:j_idt378"}, {"save"}).merge(registry({"save": "f:j_idt390"}))

        assert merged.get("save") == "f:j_idt390"
        assert "save" not in merged.fallbacks

    def test_fallback_never_replaces_derived(self) -> None:
        """A newer fallback leaves an earlier derived id in place."""
        merged = registry({"save": "f:j_idt390"}).merge(registry({"save": "f:j_idt378"}, {"save"}))

        assert merged.get("save") == "f:j_idt390"
        assert "save" not in merged.fallbacks

    def test_newer_derived_wins(self) -> None:
        """Derived ids from a newer payload replace older derived ids."""
        merged = registry({"date": "f:j_idt60"}).merge(registry({"date": "f:j_idt61", "save": "f:s"}))

        assert merged.get("date") == "f:j_idt61"
        assert merged.get("save") == "f:s"

    def test_resolve_logs_fallback(self, caplog: pytest.LogCaptureFixture) -> None:
        """Resolving a fallback id is logged."""
        assert registry({"save": "f:j_idt378"}, {"save"}).resolve("save") == "f:j_idt378"
        assert "fallback" in caplog.text


class TestPageState:
    """Tests for advancing page state."""

    @pytest.fixture
    def state(self) -> PageState:
        document = load_document("booking_page.html")
        return PageState(
            form_id="form",
            view_state=document.view_state,
            fields=FormFieldSet({"form:activityId": "4"}),
            components=ComponentRegistry(),
            document=document,
        )

    def test_view_state_overwritten(self, state: PageState) -> None:
        """Every response carrying a ViewState replaces the old one."""
        advanced = state.advance(load_document("date_changed.xml"), {}, ComponentRegistry())
        assert advanced.view_state == "VS-2:-48811"

    def test_view_state_kept_when_absent(self, state: PageState) -> None:
        """Responses without a ViewState keep the previous one."""
        document = parse_document("<html><body><p>no state</p></body></html>")
        advanced = state.advance(document, {"form:x": "1"}, ComponentRegistry())

        assert advanced.view_state == "VS-1:-20419"
        assert advanced.document is document
        assert advanced.fields.as_dict() == {"form:activityId": "4", "form:x": "1"}

    def test_original_unchanged(self, state: PageState) -> None:
        """Advancing never mutates the previous state."""
        state.advance(load_document("date_changed.xml"), {"form:activityId": "5"}, ComponentRegistry())

        assert state.view_state == "VS-1:-20419"
        assert state.fields["form:activityId"] == "4"
