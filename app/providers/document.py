"""
Decoding of portal responses into a single queryable document.

The portal answers with either a full HTML page or a JSF partial-response
(XML with one ``<update>`` per re-rendered component, HTML wrapped in CDATA).
Both are turned into a ``PortalDocument`` whose ``soup`` holds all the HTML,
so extractor functions never need to care which kind of response they got.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

VIEW_STATE_NAME = "javax.faces.ViewState"


@dataclass(frozen=True)
class PortalDocument:
    raw: str
    soup: BeautifulSoup
    is_partial: bool
    view_state: str | None = None
    evals: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    redirect_url: str | None = None
    args: dict[str, Any] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.raw)

    def text(self) -> str:
        """Visible text of the document with whitespace collapsed."""
        return " ".join(self.soup.get_text(" ").split())


def is_partial_response(raw: str) -> bool:
    head = raw.lstrip()[:500]
    return "<partial-response" in head


def parse_document(raw: str) -> PortalDocument:
    """Parse a full page or a partial-response payload."""
    if is_partial_response(raw):
        return _parse_partial_response(raw)

    soup = BeautifulSoup(raw, "html.parser")
    view_state_input = soup.find("input", attrs={"name": VIEW_STATE_NAME})
    view_state = view_state_input.get("value") if view_state_input else None
    return PortalDocument(raw=raw, soup=soup, is_partial=False, view_state=view_state)


def _parse_partial_response(raw: str) -> PortalDocument:
    xml = BeautifulSoup(raw.encode("utf-8"), "xml")

    view_state = None
    fragments: list[str] = []
    for update in xml.find_all("update"):
        update_id = update.get("id", "")
        content = update.get_text()
        if VIEW_STATE_NAME in update_id:
            view_state = content.strip() or view_state
            continue
        fragments.append(content)

    evals = tuple(node.get_text() for node in xml.find_all("eval"))
    errors = tuple(
        " ".join(node.get_text(" ").split()) for node in xml.find_all("error")
    )
    redirect = xml.find("redirect")
    redirect_url = redirect.get("url") if redirect else None
    args = _callback_args(xml)

    soup = BeautifulSoup("\n".join(fragments), "html.parser")
    if view_state is None:
        # Some renders embed the hidden input inside a form update instead
        view_state_input = soup.find("input", attrs={"name": VIEW_STATE_NAME})
        if view_state_input:
            view_state = view_state_input.get("value")

    logger.debug(
        f"Parsed partial response: {len(fragments)} updates, {len(evals)} evals, "
        f"{len(errors)} errors, view_state={'yes' if view_state else 'no'}"
    )
    return PortalDocument(
        raw=raw,
        soup=soup,
        is_partial=True,
        view_state=view_state,
        evals=evals,
        errors=errors,
        redirect_url=redirect_url,
        args=args,
    )


def _callback_args(xml: BeautifulSoup) -> dict[str, Any]:
    """PrimeFaces callback arguments, e.g. ``{"validationFailed": true}``."""
    args: dict[str, Any] = {}
    for extension in xml.find_all("extension", attrs={"ln": "primefaces", "type": "args"}):
        try:
            parsed = json.loads(extension.get_text() or "{}")
        except json.JSONDecodeError:
            logger.warning(f"Unreadable PrimeFaces args extension: {extension.get_text()[:100]}")
            continue
        if isinstance(parsed, dict):
            args.update(parsed)
    return args
