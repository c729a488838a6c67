# scheduling/tools.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional

from . import availability, booking, calendar_client, sender, store
from .config import settings
from .errors import ValidationError
from .models import EmailAddress, IncomingEmail, Thread, ThreadState, TimeSlot, parse_hhmm
from .timezones import is_valid_tz

log = logging.getLogger(__name__)

__all__ = [
    "AgentContext",
    "ToolSpec",
    "TOOL_SPECS",
    "PREFERENCE_KEYS",
    "validate_preference",
    "check_working_hours",
    "execute_tool",
]


@dataclass
class AgentContext:
    email: IncomingEmail
    thread: Optional[Thread] = None


# ──────────────────────────────────────────────────────────────────────────────
# Preference validation (shared with seed_cli)
# ──────────────────────────────────────────────────────────────────────────────

def _hhmm(value: Any) -> str:
    s = str(value).strip()
    t = parse_hhmm(s)
    if t is None or len(s.split(":")[1]) != 2:
        raise ValidationError(f"expected HH:MM, got {value!r}")
    return t.strftime("%H:%M")


def _non_negative_int(value: Any) -> str:
    try:
        n = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"expected a non-negative whole number, got {value!r}") from None
    if n < 0:
        raise ValidationError(f"expected a non-negative whole number, got {value!r}")
    return str(n)


def _timezone(value: Any) -> str:
    s = str(value).strip()
    if not s or not is_valid_tz(s):
        raise ValidationError(f"unknown IANA timezone {value!r}")
    return s


def _weekdays(value: Any) -> str:
    raw = value
    if isinstance(value, str):
        try:
            raw = json.loads(value)
        except ValueError:
            raise ValidationError(f"noMeetingDays must be a JSON list of 0-6 (0=Sunday), got {value!r}") from None
    if not isinstance(raw, list) or not all(isinstance(d, int) and not isinstance(d, bool) and 0 <= d <= 6 for d in raw):
        raise ValidationError(f"noMeetingDays must be a list of integers 0-6 (0=Sunday), got {value!r}")
    return json.dumps(sorted(set(raw)), separators=(",", ":"))


def _non_empty(value: Any) -> str:
    s = str(value).strip()
    if not s:
        raise ValidationError("value must not be empty")
    return s


def _free_text(value: Any) -> str:
    return "" if value is None else str(value)


_PREFERENCE_VALIDATORS: Dict[str, Callable[[Any], str]] = {
    "workingHoursStart": _hhmm,
    "workingHoursEnd": _hhmm,
    "timezone": _timezone,
    "defaultMeetingDurationMinutes": _non_negative_int,
    "bufferBeforeMinutes": _non_negative_int,
    "bufferAfterMinutes": _non_negative_int,
    "preferredPlatform": _non_empty,
    "maxMeetingsPerDay": _non_negative_int,
    "noMeetingDays": _weekdays,
    "customRules": _free_text,
}

PREFERENCE_KEYS = tuple(_PREFERENCE_VALIDATORS)


def validate_preference(key: str, value: Any) -> str:
    """Return the text form to persist, or raise ValidationError."""
    fn = _PREFERENCE_VALIDATORS.get(key)
    if fn is None:
        raise ValidationError(f"unknown preference key {key!r}; expected one of {', '.join(PREFERENCE_KEYS)}")
    return fn(value)


# ──────────────────────────────────────────────────────────────────────────────
# Operations
# ──────────────────────────────────────────────────────────────────────────────

def get_preferences() -> Dict[str, Any]:
    return store.get_preferences().to_dict()


def check_working_hours(start: str, end: str) -> None:
    """Reject a working-hours pair that does not start before it ends."""
    ts, te = parse_hhmm(start), parse_hhmm(end)
    if ts is not None and te is not None and ts >= te:
        raise ValidationError(f"working hours must start before they end (start={start}, end={end})")


def set_preference(key: str, value: Any) -> Dict[str, Any]:
    text = validate_preference(key, value)
    if key in ("workingHoursStart", "workingHoursEnd"):
        current = store.get_preferences()
        if key == "workingHoursStart":
            check_working_hours(text, current.working_hours_end)
        else:
            check_working_hours(current.working_hours_start, text)
    store.set_preference(key, text)
    return {"success": True, "key": key}


def get_availability(start_date: str, end_date: str, duration_minutes: Optional[int] = None) -> Dict[str, Any]:
    prefs = store.get_preferences()
    start, end = availability.parse_date_range(start_date, end_date)
    duration = prefs.default_meeting_duration_minutes if duration_minutes is None else int(duration_minutes)
    tz = prefs.tzinfo()

    busy = calendar_client.busy_for_dates(start, end, tz)
    windows = availability.compute_free_windows(busy, start, end, prefs, duration)
    log.info("[tools] availability %s→%s duration=%d busy=%d windows=%d", start, end, duration, len(busy), len(windows))
    return {
        "free_windows": [w.to_dict() for w in windows],
        "timezone": prefs.timezone,
        "duration_minutes": duration,
        "buffer_before_minutes": prefs.buffer_before_minutes,
        "buffer_after_minutes": prefs.buffer_after_minutes,
    }


def list_events(start_date: str, end_date: str) -> Dict[str, Any]:
    prefs = store.get_preferences()
    start, end = availability.parse_date_range(start_date, end_date)
    tz = prefs.tzinfo()
    events = calendar_client.list_events(
        datetime.combine(start, time(0, 0), tzinfo=tz),
        datetime.combine(end + timedelta(days=1), time(0, 0), tzinfo=tz),
    )
    return {"events": events, "timezone": prefs.timezone}


def reconcile_booking(
    thread_id: str,
    title: str,
    start: str,
    end: str,
    attendee_email: str,
    attendee_name: Optional[str] = None,
    description: Optional[str] = None,
    existing_event_id: Optional[str] = None,
    *,
    requester: Optional[EmailAddress] = None,
) -> Dict[str, Any]:
    if not attendee_email or "@" not in attendee_email:
        raise ValidationError(f"attendee email {attendee_email!r} is not an address")
    prefs = store.get_preferences()
    slot = TimeSlot.from_iso(start, end, default_tz=prefs.tzinfo())

    thread = store.get_thread(thread_id)
    if thread is None:
        # Not persisted until the calendar write succeeds.
        req = requester or EmailAddress(attendee_email, attendee_name)
        thread = Thread(
            id=0,
            thread_id=thread_id,
            state=ThreadState.NEW,
            requester_email=req.email,
            requester_name=req.name,
        )

    outcome = booking.reconcile(
        thread,
        existing_event_id,
        slot,
        title,
        EmailAddress(attendee_email.strip(), attendee_name),
        description=description,
        wants_video_link=prefs.wants_video_link,
    )
    return outcome.to_dict()


def cancel_meeting(event_id: str, thread_id: Optional[str] = None) -> Dict[str, Any]:
    thread = booking.cancel(event_id, thread_id)
    return {
        "success": True,
        "eventId": event_id,
        "threadId": thread.thread_id if thread else None,
        "threadState": thread.state.value if thread else None,
    }


def update_thread_state(
    thread_id: str,
    state: str,
    proposed_slots: Optional[List[Dict[str, Any]]] = None,
    meeting_title: Optional[str] = None,
    meeting_duration_minutes: Optional[int] = None,
    *,
    requester: Optional[EmailAddress] = None,
) -> Dict[str, Any]:
    st = ThreadState.parse(state)
    slots: Optional[List[TimeSlot]] = None
    if proposed_slots is not None:
        tz = store.get_preferences().tzinfo()
        slots = [TimeSlot.from_dict(s, default_tz=tz) for s in proposed_slots]
    if meeting_duration_minutes is not None and int(meeting_duration_minutes) < 0:
        raise ValidationError("meetingDurationMinutes must be non-negative")

    # The requester is fixed by the first write; later senders never replace it.
    if store.get_thread(thread_id) is not None:
        requester = None
    thread = store.upsert_thread(
        thread_id,
        st,
        requester_email=requester.email if requester else None,
        requester_name=requester.name if requester else None,
        meeting_title=meeting_title,
        meeting_duration_minutes=meeting_duration_minutes,
        proposed_slots=slots,
    )
    return thread.to_dict()


def get_thread(thread_id: str) -> Optional[Dict[str, Any]]:
    thread = store.get_thread(thread_id)
    return thread.to_dict() if thread else None


def find_booked_thread_by_attendee(email: str) -> Optional[Dict[str, Any]]:
    thread = store.find_booked_by_attendee(email)
    return thread.to_dict() if thread else None


def send_reply(ctx: AgentContext, subject: str, body: str) -> Dict[str, Any]:
    to, cc = sender.resolve_recipients(ctx.email, settings.AGENT_EMAIL)
    message_id = sender.send_email(
        to=[a.formatted() for a in to],
        cc=[a.formatted() for a in cc],
        subject=subject,
        body=body,
        in_reply_to=ctx.email.message_id,
        quoted_text=ctx.email.text,
        quoted_html=ctx.email.html,
        quoted_from=ctx.email.from_addr.formatted(),
        quoted_date=ctx.email.timestamp,
    )
    return {"success": True, "messageId": message_id, "to": [a.email for a in to], "cc": [a.email for a in cc]}


# ──────────────────────────────────────────────────────────────────────────────
# Tool inventory (LLM-visible)
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class ToolSpec:
    name: str
    description: str
    parameters: Dict[str, Any]

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {"name": self.name, "description": self.description, "parameters": self.parameters},
        }


def _obj(properties: Dict[str, Any], required: List[str] | None = None) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required or []}


_SLOT_SCHEMA = _obj(
    {
        "start": {"type": "string", "description": "ISO 8601 start time."},
        "end": {"type": "string", "description": "ISO 8601 end time."},
    },
    ["start", "end"],
)


def _tool_catalog() -> List[ToolSpec]:
    return [
        ToolSpec(
            name="get_preferences",
            description=(
                "Retrieve the owner's scheduling preferences: working hours, timezone, buffers, default meeting "
                "duration, preferred video platform, max meetings per day, no-meeting days and custom rules."
            ),
            parameters=_obj({}),
        ),
        ToolSpec(
            name="set_preference",
            description="Update a single scheduling preference value.",
            parameters=_obj(
                {
                    "key": {
                        "type": "string",
                        "enum": list(PREFERENCE_KEYS),
                        "description": (
                            "Preference key. Use customRules for freeform owner instructions; read the existing "
                            "value first and write back all prior rules plus the new one, one per line."
                        ),
                    },
                    "value": {"type": "string", "description": "New value. noMeetingDays is a JSON list, 0=Sunday."},
                },
                ["key", "value"],
            ),
        ),
        ToolSpec(
            name="get_availability",
            description=(
                "Free windows on the owner's calendars within a date range, inside working hours and outside "
                "existing events. Pick concrete times inside these windows, leaving the buffer margins."
            ),
            parameters=_obj(
                {
                    "startDate": {"type": "string", "description": "YYYY-MM-DD."},
                    "endDate": {"type": "string", "description": "YYYY-MM-DD, inclusive."},
                    "durationMinutes": {
                        "type": "integer",
                        "description": "Meeting length; defaults to defaultMeetingDurationMinutes.",
                    },
                },
                ["startDate", "endDate"],
            ),
        ),
        ToolSpec(
            name="list_events",
            description=(
                "List calendar events in a date range. Call this before rescheduling or cancelling so you have "
                "the correct event id; never guess it."
            ),
            parameters=_obj(
                {
                    "startDate": {"type": "string", "description": "YYYY-MM-DD."},
                    "endDate": {"type": "string", "description": "YYYY-MM-DD, inclusive."},
                },
                ["startDate", "endDate"],
            ),
        ),
        ToolSpec(
            name="book_meeting",
            description=(
                "Book the confirmed slot. Moves the thread's existing event (or existingEventId) when there is "
                "one, otherwise creates a new event and invites the attendee."
            ),
            parameters=_obj(
                {
                    "title": {"type": "string"},
                    "start": {"type": "string", "description": "ISO 8601 start of the confirmed slot."},
                    "end": {"type": "string", "description": "ISO 8601 end of the confirmed slot."},
                    "attendeeEmail": {"type": "string"},
                    "attendeeName": {"type": "string"},
                    "description": {"type": "string", "description": "Optional agenda for the invite."},
                    "existingEventId": {"type": "string", "description": "Event to reschedule, from list_events."},
                },
                ["title", "start", "end", "attendeeEmail"],
            ),
        ),
        ToolSpec(
            name="cancel_meeting",
            description="Cancel a calendar event and notify its attendees. Get the id from list_events first.",
            parameters=_obj({"eventId": {"type": "string"}}, ["eventId"]),
        ),
        ToolSpec(
            name="update_thread_state",
            description=(
                "Record the thread's scheduling state. After proposing times set 'awaiting_confirmation' with the "
                "proposed slots. Omitting proposedSlots clears them."
            ),
            parameters=_obj(
                {
                    "state": {"type": "string", "enum": [s.value for s in ThreadState]},
                    "proposedSlots": {"type": "array", "items": _SLOT_SCHEMA},
                    "meetingTitle": {"type": "string"},
                    "meetingDurationMinutes": {"type": "integer"},
                },
                ["state"],
            ),
        ),
        ToolSpec(
            name="get_thread",
            description="Read the stored scheduling record for this thread (or another thread id).",
            parameters=_obj({"threadId": {"type": "string"}}),
        ),
        ToolSpec(
            name="find_booked_thread",
            description=(
                "Find the most recent booked meeting with an attendee across all threads. Use when someone asks "
                "to reschedule from a new email thread."
            ),
            parameters=_obj({"attendeeEmail": {"type": "string"}}, ["attendeeEmail"]),
        ),
        ToolSpec(
            name="send_email",
            description=(
                "Reply in the current thread. Recipients are chosen automatically. List proposed slots with day, "
                "date, time and timezone."
            ),
            parameters=_obj(
                {"subject": {"type": "string"}, "body": {"type": "string", "description": "Plain-text body."}},
                ["subject", "body"],
            ),
        ),
    ]


TOOL_SPECS: List[Dict[str, Any]] = [t.to_openai() for t in _tool_catalog()]


# ──────────────────────────────────────────────────────────────────────────────
# Dispatch
# ──────────────────────────────────────────────────────────────────────────────

def _req(args: Dict[str, Any], key: str) -> Any:
    v = args.get(key)
    if v is None or (isinstance(v, str) and not v.strip()):
        raise ValidationError(f"missing required argument {key!r}")
    return v


def _opt_int(args: Dict[str, Any], key: str) -> Optional[int]:
    v = args.get(key)
    if v is None or v == "":
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a whole number, got {v!r}") from None


def execute_tool(name: str, args: Dict[str, Any], ctx: AgentContext) -> Any:
    args = args or {}
    thread_id = ctx.email.thread_id

    if name == "get_preferences":
        return get_preferences()
    if name == "set_preference":
        return set_preference(_req(args, "key"), args.get("value", ""))
    if name == "get_availability":
        return get_availability(_req(args, "startDate"), _req(args, "endDate"), _opt_int(args, "durationMinutes"))
    if name == "list_events":
        return list_events(_req(args, "startDate"), _req(args, "endDate"))
    if name == "book_meeting":
        return reconcile_booking(
            thread_id,
            _req(args, "title"),
            _req(args, "start"),
            _req(args, "end"),
            _req(args, "attendeeEmail"),
            attendee_name=args.get("attendeeName"),
            description=args.get("description"),
            existing_event_id=args.get("existingEventId") or None,
            requester=ctx.email.from_addr,
        )
    if name == "cancel_meeting":
        return cancel_meeting(_req(args, "eventId"), thread_id)
    if name == "update_thread_state":
        return update_thread_state(
            thread_id,
            _req(args, "state"),
            proposed_slots=args.get("proposedSlots"),
            meeting_title=args.get("meetingTitle"),
            meeting_duration_minutes=_opt_int(args, "meetingDurationMinutes"),
            requester=ctx.email.from_addr,
        )
    if name == "get_thread":
        return get_thread(args.get("threadId") or thread_id)
    if name == "find_booked_thread":
        return find_booked_thread_by_attendee(_req(args, "attendeeEmail"))
    if name == "send_email":
        return send_reply(ctx, _req(args, "subject"), _req(args, "body"))

    raise ValidationError(f"unknown tool {name!r}")
