"""
Classification of committing-action responses.

Save and cancel postbacks answer with opaque partial responses (or, in the
browser, a re-rendered page) rather than a status field. These functions turn
such a response into SUCCESS, FAILURE or UNCERTAIN. Explicit error signals
always win; a confirmation must come from message text, never from class
names or markup attributes.
"""

import logging
import re

from bs4 import Tag

from app.providers.base import ActionResponse, OutcomeStatus
from app.providers.document import PortalDocument, parse_document
from app.providers.extractor import extract_growl_messages
from app.providers.portal_schema import PORTAL

logger = logging.getLogger(__name__)

# A save postback that re-renders only the form and growl stays small
PLAUSIBLE_SAVE_RESPONSE_BYTES = 2000
# Cancel responses shorter than this are treated as an acknowledged update
SHORT_CANCEL_RESPONSE_BYTES = 1000
DIRECT_CANCEL_RESPONSE_BYTES = 500


def _visible(element: Tag) -> bool:
    if "ui-dialog" not in (element.get("class") or []):
        return True
    if element.get("aria-hidden") == "false":
        return True
    return "display:block" in (element.get("style") or "").replace(" ", "").lower()


def message_text(document: PortalDocument) -> str:
    """
    Text that can carry an outcome message.

    Partial responses only contain what the postback re-rendered, so all of
    their visible text counts. Full pages contain static copy as well, so only
    message containers and visible dialogs are read.
    """
    growl = " ".join(message.text for message in extract_growl_messages(document))
    if document.is_partial:
        body = document.text()
    else:
        parts = [
            element.get_text(" ")
            for element in document.soup.select(PORTAL.RESULTS.message_containers)
            if _visible(element)
        ]
        body = " ".join(parts)
    return " ".join(f"{body} {growl}".split())


def explicit_error(document: PortalDocument) -> str | None:
    """First explicit error signal in the response, if any."""
    if document.errors:
        return document.errors[0] or "Server reported an error"

    if document.redirect_url:
        return f"Session expired: portal redirected to {document.redirect_url}"

    if document.args.get(PORTAL.RESULTS.validation_failed_arg):
        return "Portal rejected the request (validation failed)"

    for selector in PORTAL.RESULTS.error_classes:
        for element in document.soup.select(selector):
            text = " ".join(element.get_text(" ").split())
            if text:
                return text

    for message in extract_growl_messages(document):
        if message.severity in PORTAL.RESULTS.error_severities:
            return message.text or f"Portal reported {message.severity}"

    lowered = message_text(document).lower()
    for marker in PORTAL.RESULTS.error_texts:
        if marker in lowered:
            return f"Portal response mentions '{marker}'"
    return None


def _confirmation(text: str, markers: tuple[str, ...]) -> str | None:
    lowered = text.lower()
    for marker in markers:
        if re.search(marker, lowered):
            return marker
    return None


def interpret_save(response: ActionResponse) -> tuple[OutcomeStatus, str]:
    """
    Classify the response to the save-booking action.

    The size heuristic only applies to partial responses; a full page from
    the browser substrate is never considered plausible by size alone.
    """
    if not 200 <= response.status_code < 300:
        return OutcomeStatus.FAILURE, f"Save returned HTTP {response.status_code}"

    document = parse_document(response.body)

    error = explicit_error(document)
    if error:
        logger.warning(f"Save response carries an error: {error}")
        return OutcomeStatus.FAILURE, error

    text = message_text(document)
    if _confirmation(text, PORTAL.RESULTS.booking_confirmations):
        logger.info("Save response carries a confirmation message")
        return OutcomeStatus.SUCCESS, text[:200] or "Booking confirmed"

    if response.partial and 0 < document.size <= PLAUSIBLE_SAVE_RESPONSE_BYTES:
        logger.info(f"Save response is a short partial update ({document.size} bytes); treating as accepted")
        return OutcomeStatus.SUCCESS, "Booking accepted"

    logger.warning(f"Save response had no confirmation or error ({document.size} bytes)")
    return OutcomeStatus.UNCERTAIN, "No confirmation received - please verify in My Reservations"


def interpret_cancel(
    response: ActionResponse, short_threshold: int = SHORT_CANCEL_RESPONSE_BYTES
) -> tuple[OutcomeStatus, str]:
    """Classify the response to the cancel confirmation (or a direct cancel)."""
    if not 200 <= response.status_code < 300:
        return OutcomeStatus.FAILURE, f"Cancel returned HTTP {response.status_code}"

    document = parse_document(response.body)

    error = explicit_error(document)
    if error:
        logger.warning(f"Cancel response carries an error: {error}")
        return OutcomeStatus.FAILURE, error

    if _confirmation(message_text(document), PORTAL.RESULTS.cancel_confirmations):
        return OutcomeStatus.SUCCESS, "Reservation cancelled"

    if response.partial and document.size < short_threshold:
        logger.info(f"Cancel response is a short partial update ({document.size} bytes)")
        return OutcomeStatus.SUCCESS, "Reservation cancelled"

    return OutcomeStatus.UNCERTAIN, "Cancellation uncertain - please verify in My Reservations"


def is_session_redirect(response: ActionResponse) -> bool:
    """True when a partial response redirects instead of updating, i.e. the portal session expired."""
    return response.partial and parse_document(response.body).redirect_url is not None
