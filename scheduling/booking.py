# scheduling/booking.py
"""
Booking reconciliation: keep at most one live calendar event per thread.

If the thread (or the caller) names an existing event, try to move it in place
first; when that fails for any reason, fall back to creating a fresh event.
The thread row is written once, after the calendar side has succeeded.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from . import calendar_client, store
from .errors import BookingFailedError, CalendarError
from .models import EmailAddress, Thread, ThreadState, TimeSlot

log = logging.getLogger(__name__)

__all__ = [
    "BookingAction",
    "BookingOutcome",
    "UpdateAttempt",
    "attempt_update",
    "reconcile",
    "cancel",
]


class BookingAction(str, Enum):
    UPDATED = "updated"
    CREATED = "created"


@dataclass(frozen=True)
class UpdateAttempt:
    ok: bool
    reason: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


@dataclass
class BookingOutcome:
    action: BookingAction
    event_id: str
    event_link: str = ""
    video_link: Optional[str] = None
    fallback_reason: Optional[str] = None
    thread: Optional[Thread] = None

    @property
    def created(self) -> bool:
        return self.action is BookingAction.CREATED

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "success": True,
            "action": self.action.value,
            "created": self.created,
            "eventId": self.event_id,
            "eventLink": self.event_link,
        }
        if self.video_link:
            d["meetLink"] = self.video_link
        if self.fallback_reason:
            d["fallbackReason"] = self.fallback_reason
        return d


def attempt_update(
    event_id: str,
    slot: TimeSlot,
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> UpdateAttempt:
    """Move `event_id` to `slot`; any provider failure comes back as ok=False."""
    try:
        res = calendar_client.update_event(event_id, slot, title=title, description=description)
    except CalendarError as e:
        return UpdateAttempt(ok=False, reason=str(e))
    return UpdateAttempt(ok=True, result=res)


def reconcile(
    thread: Thread,
    requested_event_id: Optional[str],
    slot: TimeSlot,
    title: str,
    attendee: EmailAddress,
    description: Optional[str] = None,
    wants_video_link: bool = False,
) -> BookingOutcome:
    candidate = requested_event_id or thread.calendar_event_id
    fallback_reason: Optional[str] = None
    outcome: Optional[BookingOutcome] = None

    if candidate:
        attempt = attempt_update(candidate, slot, title=title, description=description)
        if attempt.ok:
            res = attempt.result or {}
            outcome = BookingOutcome(
                action=BookingAction.UPDATED,
                event_id=res.get("event_id") or candidate,
                event_link=res.get("event_link") or "",
                video_link=res.get("video_link"),
            )
        else:
            fallback_reason = attempt.reason or "update failed"
            log.warning(
                "[booking] update of event=%s failed for thread=%s, creating a new event instead: %s",
                candidate, thread.thread_id, fallback_reason,
            )

    if outcome is None:
        try:
            res = calendar_client.create_event(
                title,
                slot,
                attendee.email,
                attendee_name=attendee.name,
                description=description,
                wants_video_link=wants_video_link,
            )
        except CalendarError as e:
            log.error("[booking] create failed thread=%s: %s", thread.thread_id, e)
            raise BookingFailedError(f"could not book {slot.start.isoformat()}: {e}", thread_id=thread.thread_id) from e
        outcome = BookingOutcome(
            action=BookingAction.CREATED,
            event_id=res["event_id"],
            event_link=res.get("event_link") or "",
            video_link=res.get("video_link"),
            fallback_reason=fallback_reason,
        )

    outcome.thread = store.upsert_thread(
        thread.thread_id,
        ThreadState.BOOKED,
        requester_email=thread.requester_email,
        requester_name=thread.requester_name,
        attendee_email=attendee.email,
        attendee_name=attendee.name,
        meeting_title=title,
        meeting_duration_minutes=int(round(slot.duration_minutes)),
        proposed_slots=None,
        calendar_event_id=outcome.event_id,
    )
    log.info(
        "[booking] thread=%s %s event=%s %s→%s",
        thread.thread_id, outcome.action.value, outcome.event_id, slot.start.isoformat(), slot.end.isoformat(),
    )
    return outcome


def cancel(event_id: str, thread_id: Optional[str] = None) -> Optional[Thread]:
    """
    Cancel the event (attendees are notified), then mark the owning thread
    cancelled. The event id stays on the thread row.
    """
    calendar_client.cancel_event(event_id)

    owner = store.find_by_event_id(event_id)
    if owner is None and thread_id:
        fallback = store.get_thread(thread_id)
        # Only a booked thread may become cancelled.
        if fallback is not None and fallback.state is ThreadState.BOOKED:
            owner = fallback
        elif fallback is not None:
            log.info(
                "[booking] cancelled event=%s; thread=%s is %s and stays as is",
                event_id, fallback.thread_id, fallback.state.value,
            )
    if owner is None:
        log.info("[booking] cancelled event=%s with no owning thread", event_id)
        return None

    updated = store.upsert_thread(owner.thread_id, ThreadState.CANCELLED, calendar_event_id=event_id)
    log.info("[booking] thread=%s cancelled event=%s", owner.thread_id, event_id)
    return updated
