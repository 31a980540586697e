"""
JSF partial-postback request construction.

A PrimeFaces AJAX call is a form-encoded POST to the portlet's resource URL
carrying the complete current field set, the ViewState and a handful of
``javax.faces.*`` control fields naming the source component, what to
execute and what to re-render.
"""

from dataclasses import dataclass, field

from app.providers.portal_schema import PORTAL
from app.providers.state import PageState

AJAX_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
    "Accept": "application/xml, text/xml, */*; q=0.01",
    "X-Requested-With": "XMLHttpRequest",
    "Faces-Request": "partial/ajax",
}


def booking_ajax_url(base_url: str) -> str:
    portlet = PORTAL.PORTLETS.booking_portlet
    return (
        f"{base_url}{PORTAL.PATHS.booking}?p_p_id={portlet}&p_p_lifecycle=2&p_p_state=normal"
        "&p_p_mode=view&p_p_cacheability=cacheLevelPage&p_p_col_id=column-2&p_p_col_count=2"
        f"&p_p_col_pos=1&_{portlet}__jsfBridgeAjax=true"
        f"&_{portlet}__facesViewIdResource={PORTAL.PORTLETS.booking_view_resource}"
    )


def reservations_ajax_url(base_url: str) -> str:
    portlet = PORTAL.PORTLETS.reservations_portlet
    return (
        f"{base_url}{PORTAL.PATHS.reservations}?p_p_id={portlet}&p_p_lifecycle=2&p_p_state=normal"
        f"&p_p_mode=view&p_p_cacheability=cacheLevelPage&_{portlet}__jsfBridgeAjax=true"
    )


@dataclass
class PartialPostback:
    """One PrimeFaces AJAX request against the current page state."""

    source: str
    execute: str
    render: str
    event: str | None = None
    extra: dict[str, str] = field(default_factory=dict)

    def payload(self, state: PageState, encoded_url: str | None = None) -> dict[str, str]:
        """
        Full form body: every carried field, then the overrides, then control fields.

        The control fields and ViewState are written last so a stale copy
        carried in ``state.fields`` can never shadow them.
        """
        data = state.fields.as_dict()
        data.update(self.extra)
        if state.form_id:
            data[state.form_id] = state.form_id
        data[self.source] = self.source

        faces = PORTAL.FACES
        data[faces.partial_ajax] = "true"
        data[faces.source] = self.source
        data[faces.execute] = self.execute
        data[faces.render] = self.render
        if self.event:
            data[faces.behavior_event] = self.event
            data[faces.partial_event] = self.event
        if encoded_url:
            data[faces.encoded_url] = encoded_url
        if state.view_state:
            data[faces.view_state] = state.view_state
        return data


def date_change(state: PageState, date_picker: str, portal_date: str) -> PartialPostback:
    return PartialPostback(
        source=date_picker,
        execute=date_picker,
        render=state.form_id or "@all",
        event="dateSelect",
        extra={f"{date_picker}_input": portal_date},
    )


def activity_change(state: PageState, dropdown: str, activity_id: str) -> PartialPostback:
    extra = {f"{dropdown}_input": activity_id, f"{dropdown}_focus": ""}
    if state.form_id:
        extra[f"{state.form_id}:{PORTAL.BOOKING.activity_field_suffix}"] = activity_id
    return PartialPostback(
        source=dropdown,
        execute=dropdown,
        render=state.form_id or "@all",
        event="change",
        extra=extra,
    )


def show_reservation(state: PageState, command: str, area_id: str, start_time: str, end_time: str | None) -> PartialPostback:
    return PartialPostback(
        source=command,
        execute="@all",
        render=state.form_id or "@all",
        extra={
            "activityAreaId": area_id,
            "startTime": start_time,
            "endTime": end_time or "",
        },
    )


def save_booking(state: PageState, save_button: str, area_id: str, start_time: str, end_time: str | None, slot_id: str | None) -> PartialPostback:
    form = state.form_id or ""
    return PartialPostback(
        source=save_button,
        execute="@all",
        render=f"{form} {form}:growl",
        extra={
            f"{form}:selectedSlotId": slot_id or "",
            f"{form}:selectedAreaId": area_id,
            f"{form}:selectedStartTime": start_time,
            f"{form}:selectedEndTime": end_time or "",
        },
    )


def cancel_click(state: PageState, cancel_token: str) -> PartialPostback:
    return PartialPostback(source=cancel_token, execute="@all", render=state.form_id or "@all")


def cancel_confirm(state: PageState, button_id: str) -> PartialPostback:
    return PartialPostback(source=button_id, execute="@all", render=state.form_id or "@all")
