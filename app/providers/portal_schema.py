"""
Centralized markup schema for the NorthStar facility-booking portal.

The portal is a Liferay site whose booking and reservation portlets are
PrimeFaces/JSF views. Everything the extractor and the substrates need to
locate in that markup (paths, portlet ids, selectors, class tokens, text
markers and fallback widget ids) is defined here, grouped by functional area.

When the portal changes its markup, update this file first.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class PortalPaths:
    """Relative paths of the pages the engine visits."""

    login: str = "/en/web/pages/login"
    booking: str = "/group/pages/facility-booking"
    reservations: str = "/group/pages/my-reservations"


@dataclass(frozen=True)
class PortletSelectors:
    """Liferay portlet resource-URL parameters for JSF AJAX postbacks."""

    booking_portlet: str = "activities_WAR_northstarportlet"
    booking_view_resource: str = "%2FWEB-INF%2Fviews%2Fsports%2Factivities%2FActivity.xhtml"
    reservations_portlet: str = "memberReservations_WAR_northstarportlet"


@dataclass(frozen=True)
class LoginSelectors:
    """Selectors and field names for the Liferay login portlet."""

    namespace: str = "_com_liferay_login_web_portlet_LoginPortlet_"
    form: str = 'form[id*="LoginPortlet_loginForm"]'
    form_date: str = 'input[name*="formDate"]'
    save_last_path: str = 'input[name*="saveLastPath"]'
    redirect: str = 'input[name*="redirect"]'
    do_action_after_login: str = 'input[name*="doActionAfterLogin"]'
    checkbox_names: str = 'input[name*="checkboxNames"]'
    error_messages: str = ".alert-error, .portlet-msg-error, .has-error"
    default_checkbox_names: str = "rememberMe,showPassword"
    # Text that only appears on pages rendered for a signed-in member
    authenticated_markers: tuple[str, ...] = ("Sign Out", "My Reservations")


@dataclass(frozen=True)
class FacesFields:
    """JSF/PrimeFaces request field names."""

    view_state: str = "javax.faces.ViewState"
    partial_ajax: str = "javax.faces.partial.ajax"
    source: str = "javax.faces.source"
    execute: str = "javax.faces.partial.execute"
    render: str = "javax.faces.partial.render"
    behavior_event: str = "javax.faces.behavior.event"
    partial_event: str = "javax.faces.partial.event"
    encoded_url: str = "javax.faces.encodedURL"


@dataclass(frozen=True)
class BookingFormSelectors:
    """Selectors for the facility-booking form and its availability grid."""

    form_id_marker: str = "activityForm"
    activity_field_suffix: str = "activityId"
    # Hidden override that forces every court into the grid render
    full_view_field_suffix: str = "showAllAreas"
    full_view_value: str = "true"
    slot_marker_attr: str = "data-start-time"
    slot_end_attr: str = "data-end-time"
    slot_area_attr: str = "data-area-id"
    area_header: str = "th[data-area-id]"
    interval_cell: str = "td.interval"
    open_class: str = "open"
    reserved_class: str = "reserved"
    excluded_classes: tuple[str, ...] = ("reserved", "restricted", "blocked")
    save_button_class: str = "btn-save"
    date_format: str = "%m/%d/%Y"


@dataclass(frozen=True)
class FallbackComponents:
    """
    Last-known widget ids, relative to the booking form id.

    PrimeFaces mints these per deployment, so they are only used when
    structural resolution fails.
    """

    date_picker: str = "j_idt44"
    activity_dropdown: str = "j_idt51"
    show_reservation_screen: str = "j_idt146"
    save_booking: str = "j_idt378"


@dataclass(frozen=True)
class ReservationSelectors:
    """Selectors for the member reservations portlet."""

    fallback_form_id: str = "_memberReservations_WAR_northstarportlet_:reservationsForm"
    member_section: str = "dt.ui-datalist-item"
    rows: str = "table tbody tr"
    cancel_link: str = 'a[title="Cancel Reservation"]'
    own_header_prefix: str = "My Reservations"
    court_keywords: tuple[str, ...] = ("Court", "Training", "Room")


@dataclass(frozen=True)
class CancelDialogSelectors:
    """Selectors for the cancel-confirmation dialog."""

    dialog: str = ".ui-dialog"
    confirm_text: str = "YES"
    danger_class: str = "ui-area-btn-danger"
    disabled_class: str = "disabled"
    show_marker: str = ".show()"


@dataclass(frozen=True)
class ResultMarkers:
    """Text and class signals used to classify opaque AJAX outcomes."""

    booking_confirmations: tuple[str, ...] = (
        "confirmed",
        "successfully",
        "has been booked",
        "reservation has been made",
        "reservation created",
    )
    cancel_confirmations: tuple[str, ...] = (
        r"cancell?ed.*successfully",
        r"reservation.*cancell?ed",
        r"successfully.*cancell?ed",
    )
    error_classes: tuple[str, ...] = (
        ".ui-messages-error",
        ".ui-message-error",
        ".ui-growl-message-error",
        ".portlet-msg-error",
        ".alert-error",
    )
    error_texts: tuple[str, ...] = (
        "exception",
        "an error occurred",
        "could not be saved",
    )
    # Containers whose text is read as the outcome message on full pages
    message_containers: str = (
        ".ui-growl, .ui-messages, .ui-message, .ui-dialog, "
        ".portlet-msg-success, .alert-success"
    )
    error_severities: tuple[str, ...] = ("error", "fatal")
    # PrimeFaces callback argument set when server-side validation rejects the postback
    validation_failed_arg: str = "validationFailed"


@dataclass(frozen=True)
class PortalSchema:
    """Top-level container grouping all selector categories."""

    PATHS: PortalPaths = PortalPaths()
    PORTLETS: PortletSelectors = PortletSelectors()
    LOGIN: LoginSelectors = LoginSelectors()
    FACES: FacesFields = FacesFields()
    BOOKING: BookingFormSelectors = BookingFormSelectors()
    FALLBACKS: FallbackComponents = FallbackComponents()
    RESERVATIONS: ReservationSelectors = ReservationSelectors()
    CANCEL_DIALOG: CancelDialogSelectors = CancelDialogSelectors()
    RESULTS: ResultMarkers = ResultMarkers()
    ACTIVITIES: dict[str, str] = field(
        default_factory=lambda: {
            "golf": "4",
            "squash": "5",
            "music": "6",
            "room": "8",
            "meeting": "8",
        }
    )
    COURTS: dict[str, str] = field(
        default_factory=lambda: {
            "16": "Squash Court 1",
            "17": "Squash Court 2",
            "18": "Squash Court 3",
            "30": "Court 1",
            "31": "Court 2",
            "32": "Court 3",
        }
    )


# Single import point: `from app.providers.portal_schema import PORTAL`
PORTAL = PortalSchema()

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
