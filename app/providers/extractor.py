"""
Read-only extraction over portal documents.

Every function here is pure: it takes a ``PortalDocument`` (full page or
decoded partial response) and returns plain values. Nothing in this module
talks to the network or mutates state.
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time
from types import MappingProxyType

from bs4 import BeautifulSoup, Tag

from app.providers.base import Reservation, Slot
from app.providers.document import PortalDocument
from app.providers.portal_schema import PORTAL
from app.providers.state import ComponentRegistry

logger = logging.getLogger(__name__)

# Strict scans that find fewer slots than this are repeated with relaxed rules
RELAXED_SCAN_THRESHOLD = 2

DATE_PATTERN = re.compile(r"\b(\d{2}/\d{2}/\d{4})\b")
TIME_PATTERN = re.compile(r"(\d{1,2}:\d{2}\s*[AaPp][Mm])")
ACTIVITY_PATTERN = re.compile(r"(Activities|Events)\s+\((.+?)\)\s*\d{2}/\d{2}/\d{4}")
MEMBER_HEADER_PATTERN = re.compile(r"^(.+?)['’]s Reservations")
REMOTE_COMMAND_PATTERN = re.compile(
    r"(\w+)\s*=\s*function\s*\(\)\s*\{\s*PrimeFaces\.ab\(\{\s*s\s*:\s*[\"']([^\"']+)[\"']"
)
GROWL_MESSAGE_PATTERN = re.compile(r"\{[^{}]*severity[^{}]*\}")
GROWL_FIELD_PATTERN = re.compile(r"(summary|detail|severity)\s*:\s*([\"'])((?:(?!\2)[^\\]|\\.)*)\2")

DATE_PICKER = "date_picker"
ACTIVITY_DROPDOWN = "activity_dropdown"
SHOW_RESERVATION_SCREEN = "show_reservation_screen"
SAVE_BOOKING = "save_booking"


@dataclass(frozen=True)
class LoginForm:
    action_url: str
    p_auth: str | None
    fields: dict[str, str]


@dataclass(frozen=True)
class GrowlMessage:
    severity: str
    summary: str
    detail: str

    @property
    def text(self) -> str:
        return " ".join(part for part in (self.summary, self.detail) if part)


# ---- Time and date formats ----


def parse_time(time_text: str) -> time | None:
    """Parse a time string like '07:30 AM', '9:00am' or '14:30' into a time object."""
    text = " ".join(time_text.strip().upper().split())
    if not text:
        return None

    for fmt in ("%I:%M %p", "%I:%M%p", "%H:%M"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    return None


def normalize_time(time_text: str | None) -> str | None:
    """
    Canonical comparable form of a displayed time.

    '9:00 AM', '09:00 am', '9:00AM' and '09:00' all become '9:00 AM'.
    Unparseable text is upper-cased with any leading zero dropped.
    """
    if time_text is None:
        return None
    parsed = parse_time(time_text)
    if parsed is None:
        return re.sub(r"^0", "", " ".join(time_text.strip().upper().split()))
    return f"{parsed.hour % 12 or 12}:{parsed.minute:02d} {'AM' if parsed.hour < 12 else 'PM'}"


def format_portal_date(target_date: date) -> str:
    return target_date.strftime(PORTAL.BOOKING.date_format)


# ---- Generic form state ----


def extract_form_id(document: PortalDocument, marker: str = PORTAL.BOOKING.form_id_marker) -> str | None:
    form = document.soup.select_one(f'form[id*="{marker}"]')
    if form is None:
        return None
    return form.get("id")


def _field_values(container: BeautifulSoup | Tag) -> dict[str, str]:
    fields: dict[str, str] = {}
    for element in container.find_all("input"):
        name = element.get("name")
        if not name:
            continue
        input_type = (element.get("type") or "text").lower()
        if input_type in ("submit", "button", "image", "reset"):
            continue
        if input_type in ("checkbox", "radio") and not element.has_attr("checked"):
            continue
        fields[name] = element.get("value", "")

    for select in container.find_all("select"):
        name = select.get("name")
        if not name:
            continue
        selected = select.find("option", selected=True)
        if selected is not None:
            fields[name] = selected.get("value", selected.get_text(strip=True))
    return fields


def extract_form_fields(
    document: PortalDocument, form_id: str | None, full_view: bool = True
) -> dict[str, str]:
    """
    Current field values of the form (hidden inputs plus selected options).

    Partial responses often re-render fragments without the enclosing form,
    so when the form element is absent every field in the payload is taken.
    The full-view override is always added for the booking form; without it
    the portal renders only a default subset of courts.
    """
    container: BeautifulSoup | Tag = document.soup
    if form_id:
        form = document.soup.find("form", id=form_id)
        if form is not None:
            container = form

    fields = _field_values(container)
    if form_id and full_view:
        fields[f"{form_id}:{PORTAL.BOOKING.full_view_field_suffix}"] = PORTAL.BOOKING.full_view_value
    return fields


# ---- Dynamic component resolution ----


def _companion_inputs(document: PortalDocument) -> list[tuple[str, Tag, bool]]:
    """(base id, input element, has focus companion) for every '<id>_input' widget."""
    widgets = []
    for element in document.soup.find_all(["input", "select"], id=True):
        element_id = element["id"]
        if not element_id.endswith("_input"):
            continue
        base_id = element_id[: -len("_input")]
        has_focus = document.soup.find(id=f"{base_id}_focus") is not None
        widgets.append((base_id, element, has_focus))
    return widgets


def _looks_like_activity_select(element: Tag) -> bool:
    if element.name != "select":
        return False
    known_ids = set(PORTAL.ACTIVITIES.values())
    for option in element.find_all("option"):
        if option.get("value") in known_ids:
            return True
        label = option.get_text(strip=True).lower()
        if any(name in label for name in PORTAL.ACTIVITIES):
            return True
    return False


def _looks_like_date_input(element: Tag) -> bool:
    classes = element.get("class") or []
    return "hasDatepicker" in classes or bool(DATE_PATTERN.search(element.get("value", "")))


def _remote_commands(document: PortalDocument) -> dict[str, str]:
    """Remote-command function name -> component id."""
    commands: dict[str, str] = {}
    for script in document.soup.find_all("script"):
        text = script.string or ""
        script_id = script.get("id")
        if script_id and "=" in text:
            name = text.split("=", 1)[0].strip()
            if name.isidentifier():
                commands[name] = script_id
                continue
        for name, component_id in REMOTE_COMMAND_PATTERN.findall(text):
            commands.setdefault(name, component_id)
    for text in document.evals:
        for name, component_id in REMOTE_COMMAND_PATTERN.findall(text):
            commands.setdefault(name, component_id)
    return commands


def resolve_components(
    document: PortalDocument, form_id: str | None, with_fallbacks: bool = True
) -> ComponentRegistry:
    """
    Find the widget ids that drive date, activity, slot and save postbacks.

    Widgets are recognised by structure, not by name: a PrimeFaces dropdown
    renders both a ``_focus`` and an ``_input`` companion, a calendar renders
    only ``_input``. Remote commands are matched by their function name and
    the save button by its styling class. Missing ids fall back to the
    last-known constants, which is logged and recorded in the registry.
    """
    ids: dict[str, str] = {}

    dropdowns = [(base, el) for base, el, has_focus in _companion_inputs(document) if has_focus]
    calendars = [(base, el) for base, el, has_focus in _companion_inputs(document) if not has_focus]

    activity = next((base for base, el in dropdowns if _looks_like_activity_select(el)), None)
    if activity is None and dropdowns:
        activity = dropdowns[0][0]
    if activity:
        ids[ACTIVITY_DROPDOWN] = activity

    calendar = next((base for base, el in calendars if _looks_like_date_input(el)), None)
    if calendar is None and calendars:
        calendar = calendars[0][0]
    if calendar:
        ids[DATE_PICKER] = calendar

    for name, component_id in _remote_commands(document).items():
        if name.lower().endswith("showreservationscreen"):
            ids[SHOW_RESERVATION_SCREEN] = component_id

    save_button = document.soup.find(
        ["a", "button"], class_=PORTAL.BOOKING.save_button_class, id=True
    )
    if save_button is None:
        for dialog in document.soup.select(PORTAL.CANCEL_DIALOG.dialog):
            save_button = next(
                (b for b in dialog.find_all(["a", "button"], id=True) if "save" in b["id"].lower()),
                None,
            )
            if save_button is not None:
                break
    if save_button is not None:
        ids[SAVE_BOOKING] = save_button["id"]

    fallbacks: set[str] = set()
    if with_fallbacks and form_id:
        defaults = {
            DATE_PICKER: PORTAL.FALLBACKS.date_picker,
            ACTIVITY_DROPDOWN: PORTAL.FALLBACKS.activity_dropdown,
            SHOW_RESERVATION_SCREEN: PORTAL.FALLBACKS.show_reservation_screen,
            SAVE_BOOKING: PORTAL.FALLBACKS.save_booking,
        }
        for name, suffix in defaults.items():
            if name not in ids:
                ids[name] = f"{form_id}:{suffix}"
                fallbacks.add(name)
        if fallbacks:
            logger.warning(
                f"Structural resolution failed for {sorted(fallbacks)}; using fallback ids"
            )

    return ComponentRegistry(ids=MappingProxyType(ids), fallbacks=frozenset(fallbacks))


# ---- Login ----


def extract_login_form(document: PortalDocument) -> LoginForm | None:
    soup = document.soup
    form = soup.select_one(PORTAL.LOGIN.form)
    if form is None:
        return None

    action_url = form.get("action", "")
    p_auth_match = re.search(r"p_auth=([^&]+)", action_url)

    def value(selector: str, default: str) -> str:
        element = soup.select_one(selector)
        if element is None:
            return default
        return element.get("value") or default

    fields = {
        "formDate": value(PORTAL.LOGIN.form_date, ""),
        "saveLastPath": value(PORTAL.LOGIN.save_last_path, "false"),
        "redirect": value(PORTAL.LOGIN.redirect, ""),
        "doActionAfterLogin": value(PORTAL.LOGIN.do_action_after_login, "false"),
        "checkboxNames": value(PORTAL.LOGIN.checkbox_names, PORTAL.LOGIN.default_checkbox_names),
    }
    return LoginForm(
        action_url=action_url,
        p_auth=p_auth_match.group(1) if p_auth_match else None,
        fields=fields,
    )


def has_authenticated_marker(document: PortalDocument) -> bool:
    return any(marker in document.raw for marker in PORTAL.LOGIN.authenticated_markers)


def extract_login_error(document: PortalDocument) -> str | None:
    element = document.soup.select_one(PORTAL.LOGIN.error_messages)
    if element is None:
        return None
    text = " ".join(element.get_text(" ").split())
    return text or None


# ---- Activity and date selection ----


def resolve_activity_id(document: PortalDocument, components: ComponentRegistry, activity: str) -> str:
    """Map an activity name to its option value, preferring the live dropdown."""
    wanted = activity.strip().lower()
    dropdown_id = components.get(ACTIVITY_DROPDOWN)
    if dropdown_id:
        select = document.soup.find(id=f"{dropdown_id}_input")
        if select is not None:
            for option in select.find_all("option"):
                label = option.get_text(strip=True).lower()
                if label and (wanted == label or wanted in label):
                    return option.get("value", "")

    if wanted in PORTAL.ACTIVITIES:
        logger.info(f"Activity '{activity}' not found in dropdown, using known id")
        return PORTAL.ACTIVITIES[wanted]
    if wanted.isdigit():
        return wanted
    logger.warning(f"Unknown activity '{activity}', defaulting to squash")
    return PORTAL.ACTIVITIES["squash"]


def current_activity_id(fields: Mapping[str, str], form_id: str, components: ComponentRegistry) -> str | None:
    dropdown_id = components.get(ACTIVITY_DROPDOWN)
    candidates = [f"{form_id}:{PORTAL.BOOKING.activity_field_suffix}"]
    if dropdown_id:
        candidates.insert(0, f"{dropdown_id}_input")
    for name in candidates:
        value = fields.get(name)
        if value:
            return value
    return None


def current_date_value(fields: Mapping[str, str], components: ComponentRegistry) -> str | None:
    date_picker = components.get(DATE_PICKER)
    if not date_picker:
        return None
    return fields.get(f"{date_picker}_input")


# ---- Availability grid ----


def extract_court_labels(document: PortalDocument) -> dict[str, str]:
    labels = {}
    for header in document.soup.select(PORTAL.BOOKING.area_header):
        text = " ".join(header.get_text(" ").split())
        if text:
            labels[header[PORTAL.BOOKING.slot_area_attr]] = text
    return labels


def court_label(area_id: str, labels: dict[str, str]) -> str:
    if area_id in labels:
        return labels[area_id]
    if area_id in PORTAL.COURTS:
        return PORTAL.COURTS[area_id]
    return f"Court {area_id}"


def _cell_tokens(marker: Tag) -> tuple[Tag, list[str]]:
    cell = marker if marker.name == "td" else marker.find_parent("td") or marker
    tokens = [token.lower() for token in (cell.get("class") or [])]
    if cell is not marker:
        tokens += [token.lower() for token in (marker.get("class") or [])]
    return cell, tokens


def _has_flag(tokens: list[str], flag: str) -> bool:
    return any(flag in token for token in tokens)


def _is_available(tokens: list[str], relaxed: bool) -> bool:
    flags = [flag for flag in PORTAL.BOOKING.excluded_classes if _has_flag(tokens, flag)]
    if not flags:
        return True
    # Cells carrying both reserved and open styling are ambiguous
    return relaxed and flags == [PORTAL.BOOKING.reserved_class] and PORTAL.BOOKING.open_class in tokens


def _scan_slots(document: PortalDocument, relaxed: bool) -> list[Slot]:
    labels = extract_court_labels(document)
    marker_attr = PORTAL.BOOKING.slot_marker_attr
    slots = []
    for marker in document.soup.find_all(attrs={marker_attr: True}):
        cell, tokens = _cell_tokens(marker)
        if not _is_available(tokens, relaxed):
            continue

        start_time = marker.get(marker_attr, "").strip()
        if not start_time:
            row = cell.find_parent("tr")
            interval = row.select_one(PORTAL.BOOKING.interval_cell) if row else None
            start_time = interval.get_text(strip=True) if interval else ""
        if not start_time:
            continue

        area_id = marker.get(PORTAL.BOOKING.slot_area_attr, "")
        slots.append(
            Slot(
                area_id=area_id,
                court_label=court_label(area_id, labels),
                start_time=start_time,
                end_time=marker.get(PORTAL.BOOKING.slot_end_attr),
                raw_id=marker.get("id"),
            )
        )
    return slots


def parse_slots(document: PortalDocument) -> list[Slot]:
    """
    Open slots on the availability grid.

    A cell with a start-time marker is available unless flagged reserved,
    restricted or blocked. When that finds almost nothing the grid is
    re-scanned treating reserved-but-open cells as available; this is a
    heuristic widening, logged when it changes the result.
    """
    slots = _scan_slots(document, relaxed=False)
    if len(slots) < RELAXED_SCAN_THRESHOLD:
        relaxed = _scan_slots(document, relaxed=True)
        if len(relaxed) > len(slots):
            logger.warning(
                f"Strict grid scan found {len(slots)} slots; relaxed re-scan found {len(relaxed)}"
            )
            slots = relaxed
    logger.debug(f"Parsed {len(slots)} open slots from grid")
    return slots


def group_slots(slots: list[Slot]) -> dict[str, list[str]]:
    """Court labels per displayed start time, without duplicates."""
    grouped: dict[str, list[str]] = {}
    for slot in slots:
        courts = grouped.setdefault(slot.start_time, [])
        if slot.court_label not in courts:
            courts.append(slot.court_label)
    return grouped


def find_slot(slots: list[Slot], target_time: str, preferred_court: str | None = None) -> Slot | None:
    target = normalize_time(target_time)
    for slot in slots:
        if normalize_time(slot.start_time) != target:
            continue
        if preferred_court and preferred_court.lower() not in slot.court_label.lower():
            continue
        return slot
    return None


# ---- Reservations ----


def clean_cell_text(cell: Tag) -> str:
    """Cell text without inline scripts and PrimeFaces widget bootstrapping."""
    copy = BeautifulSoup(str(cell), "html.parser")
    for script in copy.find_all("script"):
        script.decompose()
    text = copy.get_text(" ")
    text = re.sub(r"\$\(function\(\)\{.*?\}\);?", "", text, flags=re.DOTALL)
    text = re.sub(r"PrimeFaces\.cw\([^)]+\);?", "", text, flags=re.DOTALL)
    return " ".join(text.split())


def _split_activity(activity_full: str) -> tuple[str | None, str | None]:
    """Return (activity, court) from 'Court 2 | Squash' or 'Squash | Court 2'."""
    if "|" not in activity_full:
        return activity_full.strip(), None
    parts = [part.strip() for part in activity_full.split("|")]
    keywords = PORTAL.RESERVATIONS.court_keywords
    if any(keyword in parts[0] for keyword in keywords):
        return (parts[1] if len(parts) > 1 else None), parts[0]
    return parts[0], (parts[1] if len(parts) > 1 else None)


def parse_reservation_row(cell_texts: list[str]) -> Reservation | None:
    if len(cell_texts) < 2:
        return None

    detail = next((text for text in cell_texts if ACTIVITY_PATTERN.search(text)), None)
    if detail is None:
        detail = next((text for text in cell_texts[1:] if DATE_PATTERN.search(text)), cell_texts[0])

    activity = court = None
    activity_match = ACTIVITY_PATTERN.search(detail)
    if activity_match:
        activity, court = _split_activity(activity_match.group(2))

    dates = DATE_PATTERN.findall(detail)
    if not dates:
        return None
    times = TIME_PATTERN.findall(detail)[:2]
    time_range = " - ".join(times) if times else None

    return Reservation(
        date=dates[0],
        time_range=time_range,
        activity_label=activity,
        court_label=court,
    )


def _member_label(header_text: str) -> str | None:
    match = MEMBER_HEADER_PATTERN.match(header_text)
    if match and not header_text.startswith(PORTAL.RESERVATIONS.own_header_prefix):
        return match.group(1).strip()
    return None


def _section_rows(section: Tag) -> list[Tag]:
    rows = section.select(PORTAL.RESERVATIONS.rows)
    if rows:
        return rows
    sibling = section.find_next_sibling()
    if sibling is not None and sibling.name == "dd":
        return sibling.select(PORTAL.RESERVATIONS.rows)
    return []


def _reservation_date_key(reservation: Reservation) -> date:
    try:
        return datetime.strptime(reservation.date, "%m/%d/%Y").date()
    except ValueError:
        return date.max


def parse_reservations(document: PortalDocument) -> list[Reservation]:
    """
    All reservations visible on the reservations page, sorted by date.

    Rows are grouped under per-member headers; rows under "My Reservations"
    get ``member_label=None``, rows under "<Name>'s Reservations" get the name.
    """
    sections = document.soup.select(PORTAL.RESERVATIONS.member_section)
    grouped: list[tuple[str | None, list[Tag]]]
    if sections:
        grouped = []
        for section in sections:
            header_text = " ".join(section.get_text(" ").split())
            grouped.append((_member_label(header_text), _section_rows(section)))
    else:
        grouped = [(None, document.soup.select(PORTAL.RESERVATIONS.rows))]

    reservations = []
    for member, rows in grouped:
        for row in rows:
            cells = row.find_all("td")
            cell_texts = [clean_cell_text(cell) for cell in cells]
            if not any(cell_texts):
                continue
            parsed = parse_reservation_row(cell_texts)
            if parsed is None:
                continue
            cancel_link = row.select_one(PORTAL.RESERVATIONS.cancel_link)
            reservations.append(
                Reservation(
                    date=parsed.date,
                    time_range=parsed.time_range,
                    activity_label=parsed.activity_label,
                    court_label=parsed.court_label,
                    member_label=member,
                    cancel_token=cancel_link.get("id") if cancel_link else None,
                )
            )

    reservations.sort(key=_reservation_date_key)
    logger.debug(f"Parsed {len(reservations)} reservations")
    return reservations


def has_cancel_control(document: PortalDocument, cancel_token: str) -> bool:
    return document.soup.find(id=cancel_token) is not None


# ---- Cancel dialog ----


def _is_visible_dialog(dialog: Tag) -> bool:
    if dialog.get("aria-hidden") == "false":
        return True
    style = (dialog.get("style") or "").replace(" ", "").lower()
    return "display:block" in style


def dialog_opened(document: PortalDocument) -> bool:
    marker = PORTAL.CANCEL_DIALOG.show_marker
    if any(marker in text for text in document.evals):
        return True
    if document.is_partial and marker in document.raw:
        return True
    return any(_is_visible_dialog(d) for d in document.soup.select(PORTAL.CANCEL_DIALOG.dialog))


def _is_enabled(element: Tag) -> bool:
    classes = " ".join(element.get("class") or [])
    if PORTAL.CANCEL_DIALOG.disabled_class in classes:
        return False
    return not element.has_attr("disabled") and element.get("aria-disabled") != "true"


def find_confirm_button(document: PortalDocument) -> str | None:
    """
    Id of the enabled "YES" control in the cancel dialog.

    Matched by visible text plus danger styling, never by position, since
    dialog and button ids are regenerated. Buttons inside a dialog win over
    stray matches elsewhere in the payload.
    """
    danger = PORTAL.CANCEL_DIALOG.danger_class
    confirm_text = PORTAL.CANCEL_DIALOG.confirm_text

    candidates = [
        element
        for element in document.soup.find_all(["a", "button"], class_=danger, id=True)
        if element.get_text(strip=True).upper() == confirm_text and _is_enabled(element)
    ]
    if not candidates:
        return None
    in_dialog = [c for c in candidates if c.find_parent(class_="ui-dialog") is not None]
    return (in_dialog or candidates)[0]["id"]


# ---- Messages ----


def extract_growl_messages(document: PortalDocument) -> list[GrowlMessage]:
    """PrimeFaces growl/messages payloads rendered into scripts or evals."""
    sources = list(document.evals)
    sources += [script.string or "" for script in document.soup.find_all("script")]

    messages = []
    for source in sources:
        for block in GROWL_MESSAGE_PATTERN.findall(source):
            values = {key: value for key, _, value in GROWL_FIELD_PATTERN.findall(block)}
            messages.append(
                GrowlMessage(
                    severity=values.get("severity", "").lower(),
                    summary=values.get("summary", ""),
                    detail=values.get("detail", ""),
                )
            )
    return messages
