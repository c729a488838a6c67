from __future__ import annotations

import logging
import time
from datetime import date, datetime, time as dtime, timedelta, tzinfo
from typing import Any, Dict, Iterable, List, Optional

from google.auth.exceptions import GoogleAuthError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .config import settings
from .errors import CalendarError, EventUnavailableError
from .google_auth import CALENDAR_SCOPES, load_credentials
from .models import TimeSlot, parse_iso

log = logging.getLogger(__name__)

__all__ = [
    "list_calendar_ids",
    "list_busy_intervals",
    "busy_for_dates",
    "list_events",
    "create_event",
    "update_event",
    "cancel_event",
]

_CAL_SCOPES = CALENDAR_SCOPES

# Target gone (404/410) or not ours to touch (403).
_UNAVAILABLE_STATUSES = {403, 404, 410}

# Token refresh failures surface at execute() time, alongside HTTP errors.
_PROVIDER_ERRORS = (HttpError, GoogleAuthError)


def _now_perf() -> float:
    return time.perf_counter()


# ──────────────────────────────────────────────────────────────────────────────
# Service builder / error mapping
# ──────────────────────────────────────────────────────────────────────────────

def _build_calendar_service():
    t0 = _now_perf()
    try:
        creds = load_credentials(scopes=_CAL_SCOPES)
        svc = build("calendar", "v3", credentials=creds, cache_discovery=False)
    except (FileNotFoundError, ValueError, GoogleAuthError) as e:
        log.error("[calendar] credentials unavailable: %s", e)
        raise CalendarError(f"calendar credentials unavailable: {e}", reason=str(e)) from e
    log.debug("[calendar] service built in %.1fms", (_now_perf() - t0) * 1000)
    return svc


def _status_of(e: Exception) -> Optional[int]:
    try:
        return int(e.resp.status)
    except (AttributeError, TypeError, ValueError):
        return None


def _translate(e: Exception, op: str, event_id: Optional[str] = None) -> CalendarError:
    status = _status_of(e)
    reason = getattr(e, "reason", None) or str(e)
    msg = f"calendar {op} failed (status={status}, event={event_id or '-'}): {reason}"
    if event_id and status in _UNAVAILABLE_STATUSES:
        return EventUnavailableError(msg, status=status, reason=reason)
    return CalendarError(msg, status=status, reason=reason)


def _cal_id(calendar_id: Optional[str]) -> str:
    return calendar_id or settings.GOOGLE_CALENDAR_ID or "primary"


def _paginate(request_fn, **params) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    page_token = None
    while True:
        resp = request_fn(pageToken=page_token, **params).execute() or {}
        items.extend(resp.get("items", []) or [])
        page_token = resp.get("nextPageToken")
        if not page_token:
            return items


# ──────────────────────────────────────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────────────────────────────────────

def list_calendar_ids(*, svc=None) -> List[str]:
    """Every calendar on the owner's list except free/busy-only subscriptions."""
    svc = svc or _build_calendar_service()
    try:
        entries = _paginate(svc.calendarList().list)
    except _PROVIDER_ERRORS as e:
        raise _translate(e, "calendarList.list") from e
    ids = [c["id"] for c in entries if c.get("id") and c.get("accessRole") != "freeBusyReader"]
    log.debug("[calendar] calendars=%s", ids)
    return ids


def _is_busy(ev: Dict[str, Any]) -> bool:
    if not (ev.get("start") or {}).get("dateTime"):
        return False  # all-day
    if ev.get("status") == "cancelled":
        return False
    for a in ev.get("attendees") or []:
        if a.get("self") and a.get("responseStatus") == "declined":
            return False
    return True


def list_busy_intervals(
    calendar_ids: Iterable[str],
    time_min: datetime,
    time_max: datetime,
    *,
    svc=None,
) -> List[TimeSlot]:
    svc = svc or _build_calendar_service()
    cal_ids = list(calendar_ids)
    busy: List[TimeSlot] = []
    for cal_id in cal_ids:
        try:
            events = _paginate(
                svc.events().list,
                calendarId=cal_id,
                timeMin=time_min.isoformat(),
                timeMax=time_max.isoformat(),
                singleEvents=True,
                orderBy="startTime",
            )
        except _PROVIDER_ERRORS as e:
            raise _translate(e, f"events.list cal={cal_id}") from e
        for ev in events:
            if not _is_busy(ev):
                continue
            try:
                start = parse_iso(ev["start"]["dateTime"])
                end = parse_iso((ev.get("end") or {}).get("dateTime", ""))
            except (KeyError, ValueError):
                log.debug("[calendar] skipping event with unreadable bounds id=%s", ev.get("id"))
                continue
            if end > start:
                busy.append(TimeSlot(start, end))

    busy.sort(key=lambda b: b.start)
    log.info(
        "[calendar] busy %s→%s calendars=%d busy=%d",
        time_min.isoformat(), time_max.isoformat(), len(cal_ids), len(busy),
    )
    return busy


def busy_for_dates(start_date: date, end_date: date, tz: tzinfo) -> List[TimeSlot]:
    """Busy intervals across all readable calendars for whole owner-local days."""
    time_min = datetime.combine(start_date, dtime(0, 0), tzinfo=tz)
    time_max = datetime.combine(end_date + timedelta(days=1), dtime(0, 0), tzinfo=tz)
    svc = _build_calendar_service()
    return list_busy_intervals(list_calendar_ids(svc=svc), time_min, time_max, svc=svc)


def _event_summary(ev: Dict[str, Any]) -> Dict[str, Any]:
    start = ev.get("start") or {}
    end = ev.get("end") or {}
    return {
        "event_id": ev.get("id"),
        "title": ev.get("summary") or "",
        "start": start.get("dateTime") or start.get("date"),
        "end": end.get("dateTime") or end.get("date"),
        "status": ev.get("status"),
        "attendees": [a.get("email") for a in (ev.get("attendees") or []) if a.get("email")],
        "html_link": ev.get("htmlLink"),
    }


def list_events(
    time_min: datetime,
    time_max: datetime,
    *,
    calendar_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Events on the booking calendar, for telling meetings apart before update/cancel."""
    cal_id = _cal_id(calendar_id)
    svc = _build_calendar_service()
    try:
        events = _paginate(
            svc.events().list,
            calendarId=cal_id,
            timeMin=time_min.isoformat(),
            timeMax=time_max.isoformat(),
            singleEvents=True,
            orderBy="startTime",
        )
    except _PROVIDER_ERRORS as e:
        raise _translate(e, "events.list") from e
    out = [_event_summary(ev) for ev in events if ev.get("status") != "cancelled"]
    log.debug("[calendar] list_events cal=%s found=%d", cal_id, len(out))
    return out


# ──────────────────────────────────────────────────────────────────────────────
# Writes
# ──────────────────────────────────────────────────────────────────────────────

def _video_link(ev: Dict[str, Any]) -> Optional[str]:
    for ep in (ev.get("conferenceData") or {}).get("entryPoints") or []:
        if ep.get("entryPointType") == "video":
            return ep.get("uri")
    return ev.get("hangoutLink")


def create_event(
    title: str,
    slot: TimeSlot,
    attendee_email: str,
    attendee_name: Optional[str] = None,
    description: Optional[str] = None,
    wants_video_link: bool = False,
    *,
    calendar_id: Optional[str] = None,
) -> Dict[str, Any]:
    cal_id = _cal_id(calendar_id)
    attendee: Dict[str, str] = {"email": attendee_email}
    if attendee_name:
        attendee["displayName"] = attendee_name

    body: Dict[str, Any] = {
        "summary": title,
        "start": {"dateTime": slot.start.isoformat()},
        "end": {"dateTime": slot.end.isoformat()},
        "attendees": [attendee],
        **({"description": description} if description else {}),
    }
    if wants_video_link:
        body["conferenceData"] = {
            "createRequest": {
                "requestId": f"ea-{int(time.time() * 1000)}",
                "conferenceSolutionKey": {"type": "hangoutsMeet"},
            }
        }

    log.info("[calendar] create_event %s→%s title=%r attendee=%s cal=%s", slot.start, slot.end, title, attendee_email, cal_id)
    svc = _build_calendar_service()
    try:
        ev = svc.events().insert(
            calendarId=cal_id,
            body=body,
            sendUpdates="all",
            conferenceDataVersion=1 if wants_video_link else 0,
        ).execute()
    except _PROVIDER_ERRORS as e:
        raise _translate(e, "events.insert") from e

    log.debug("[calendar] event created id=%s link=%s", ev.get("id"), ev.get("htmlLink"))
    return {
        "event_id": ev["id"],
        "event_link": ev.get("htmlLink") or "",
        "video_link": _video_link(ev),
    }


def update_event(
    event_id: str,
    slot: TimeSlot,
    title: Optional[str] = None,
    description: Optional[str] = None,
    *,
    calendar_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Move an existing event in place (same id; attendees notified).
    Raises EventUnavailableError when the event is gone, cancelled, or not ours.
    """
    cal_id = _cal_id(calendar_id)
    svc = _build_calendar_service()
    try:
        cur = svc.events().get(calendarId=cal_id, eventId=event_id).execute() or {}
    except _PROVIDER_ERRORS as e:
        raise _translate(e, "events.get", event_id) from e
    if cur.get("status") == "cancelled":
        raise EventUnavailableError(f"event {event_id} is cancelled", status=410, reason="cancelled")

    body: Dict[str, Any] = {
        "start": {"dateTime": slot.start.isoformat()},
        "end": {"dateTime": slot.end.isoformat()},
    }
    if title:
        body["summary"] = title
    if description is not None:
        body["description"] = description

    log.info("[calendar] update_event id=%s %s→%s cal=%s", event_id, slot.start, slot.end, cal_id)
    try:
        ev = svc.events().patch(calendarId=cal_id, eventId=event_id, body=body, sendUpdates="all").execute()
    except _PROVIDER_ERRORS as e:
        raise _translate(e, "events.patch", event_id) from e
    return {
        "event_id": ev.get("id") or event_id,
        "event_link": ev.get("htmlLink") or cur.get("htmlLink") or "",
        "video_link": _video_link(ev) or _video_link(cur),
    }


def cancel_event(event_id: str, *, calendar_id: Optional[str] = None) -> None:
    cal_id = _cal_id(calendar_id)
    svc = _build_calendar_service()
    log.info("[calendar] cancel_event id=%s cal=%s", event_id, cal_id)
    try:
        svc.events().delete(calendarId=cal_id, eventId=event_id, sendUpdates="all").execute()
    except _PROVIDER_ERRORS as e:
        raise _translate(e, "events.delete", event_id) from e
