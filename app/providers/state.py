"""
Session and page state threaded through the portal protocol.

``Session`` is the only mutable object here; it lives for one process and is
mutated by authentication. Everything describing the current server-rendered
page (view state, form fields, widget ids) is an immutable value that each
protocol step receives and replaces with a new one.
"""

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from types import MappingProxyType

from app.providers.document import PortalDocument

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """
    Cookie-backed portal session.

    Attributes:
        cookies: Cookie name -> value, mirrored into whichever substrate runs.
        authenticated: True only after a positive authentication marker was seen.
        last_verified_at: When the marker was last observed.
        refreshed: True when a fresh login happened and cookies should be persisted.
    """

    cookies: dict[str, str] = field(default_factory=dict)
    authenticated: bool = False
    last_verified_at: datetime | None = None
    refreshed: bool = False

    def mark_verified(self, now: datetime | None = None) -> None:
        self.authenticated = True
        self.last_verified_at = now or datetime.now(UTC)

    def mark_logged_in(self, now: datetime | None = None) -> None:
        self.mark_verified(now)
        self.refreshed = True

    def invalidate(self) -> None:
        """Forget cookies and authentication after a failed verification."""
        self.cookies.clear()
        self.authenticated = False
        self.last_verified_at = None

    def is_recently_verified(self, window: timedelta, now: datetime | None = None) -> bool:
        if not self.authenticated or self.last_verified_at is None:
            return False
        return (now or datetime.now(UTC)) - self.last_verified_at <= window


class FormFieldSet(Mapping[str, str]):
    """Immutable name -> value map of the current form's fields."""

    def __init__(self, fields: Mapping[str, str] | None = None) -> None:
        self._fields = MappingProxyType(dict(fields or {}))

    def __getitem__(self, key: str) -> str:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"FormFieldSet({len(self._fields)} fields)"

    def merge(self, newer: Mapping[str, str]) -> "FormFieldSet":
        """Carry forward every field, letting ``newer`` win on conflicts."""
        merged = dict(self._fields)
        merged.update(newer)
        return FormFieldSet(merged)

    def as_dict(self) -> dict[str, str]:
        return dict(self._fields)


@dataclass(frozen=True)
class ComponentRegistry:
    """
    Logical operation name -> PrimeFaces widget id on the current page.

    ``fallbacks`` holds names whose id is a last-known constant rather than
    something derived from the markup.
    """

    ids: Mapping[str, str] = field(default_factory=dict)
    fallbacks: frozenset[str] = frozenset()

    def get(self, name: str) -> str | None:
        return self.ids.get(name)

    def resolve(self, name: str) -> str | None:
        component_id = self.ids.get(name)
        if component_id and name in self.fallbacks:
            logger.warning(f"Using fallback component id for '{name}': {component_id}")
        return component_id

    def merge(self, newer: "ComponentRegistry") -> "ComponentRegistry":
        """
        Overlay ids derived from a newer payload.

        A derived id always beats a fallback; a newer fallback never replaces
        an id that an earlier payload actually derived.
        """
        ids = dict(self.ids)
        fallbacks = set(self.fallbacks)
        for name, component_id in newer.ids.items():
            if name in newer.fallbacks and name in ids and name not in fallbacks:
                continue
            ids[name] = component_id
            if name in newer.fallbacks:
                fallbacks.add(name)
            else:
                fallbacks.discard(name)
        return ComponentRegistry(ids=MappingProxyType(ids), fallbacks=frozenset(fallbacks))


@dataclass(frozen=True)
class PageState:
    """
    Everything a postback on the current page must carry.

    ``view_state`` is a single slot: overwritten by every response that has
    one, never merged. ``fields`` and ``components`` are merged.
    """

    form_id: str | None
    view_state: str | None
    fields: FormFieldSet
    components: ComponentRegistry
    document: PortalDocument

    def advance(
        self,
        document: PortalDocument,
        fields: Mapping[str, str],
        components: ComponentRegistry,
    ) -> "PageState":
        return replace(
            self,
            view_state=document.view_state or self.view_state,
            fields=self.fields.merge(fields),
            components=self.components.merge(components),
            document=document,
        )
