# scheduling/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, tzinfo
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import DataConsistencyError, ValidationError
from .timezones import resolve_tz

# ──────────────────────────────────────────────────────────────────────────────
# Time values
# ──────────────────────────────────────────────────────────────────────────────


def parse_iso(value: str, *, default_tz: Optional[tzinfo] = None) -> datetime:
    """
    ISO-8601 → aware datetime. A trailing 'Z' is accepted.
    Naive input is only accepted when `default_tz` is given.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"expected an ISO-8601 timestamp, got {value!r}")
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise ValidationError(f"invalid ISO-8601 timestamp {value!r}") from e
    if dt.tzinfo is None:
        if default_tz is None:
            raise ValidationError(f"timestamp {value!r} has no timezone offset")
        dt = dt.replace(tzinfo=default_tz)
    return dt


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValidationError("slot bounds must carry a timezone offset")
        if not self.start < self.end:
            raise ValidationError(
                f"slot start must be before end ({self.start.isoformat()} >= {self.end.isoformat()})"
            )

    @classmethod
    def from_iso(cls, start: str, end: str, *, default_tz: Optional[tzinfo] = None) -> "TimeSlot":
        return cls(parse_iso(start, default_tz=default_tz), parse_iso(end, default_tz=default_tz))

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], *, default_tz: Optional[tzinfo] = None) -> "TimeSlot":
        if not isinstance(raw, dict) or "start" not in raw or "end" not in raw:
            raise ValidationError(f"slot must be an object with start and end, got {raw!r}")
        return cls.from_iso(raw["start"], raw["end"], default_tz=default_tz)

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


# Busy intervals share the slot shape; they are recomputed per query and never stored.
BusyBlock = TimeSlot


# ──────────────────────────────────────────────────────────────────────────────
# Preferences
# ──────────────────────────────────────────────────────────────────────────────


def parse_hhmm(value: str) -> Optional[time]:
    try:
        hh, mm = str(value).strip().split(":")
        return time(int(hh), int(mm))
    except (ValueError, TypeError):
        return None


@dataclass
class Preferences:
    working_hours_start: str = "09:00"
    working_hours_end: str = "18:00"
    timezone: str = "America/Los_Angeles"
    default_meeting_duration_minutes: int = 30
    buffer_before_minutes: int = 5
    buffer_after_minutes: int = 5
    preferred_platform: str = "Google Meet"
    max_meetings_per_day: int = 6
    no_meeting_days: List[int] = field(default_factory=lambda: [0, 6])  # 0=Sun … 6=Sat
    custom_rules: str = ""

    def working_hours(self) -> Optional[Tuple[time, time]]:
        """(start, end) as times of day, or None when either bound is unparseable."""
        start = parse_hhmm(self.working_hours_start)
        end = parse_hhmm(self.working_hours_end)
        if start is None or end is None:
            return None
        return start, end

    def tzinfo(self) -> tzinfo:
        return resolve_tz(self.timezone)

    @property
    def wants_video_link(self) -> bool:
        return (self.preferred_platform or "").strip().lower() == "google meet"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workingHoursStart": self.working_hours_start,
            "workingHoursEnd": self.working_hours_end,
            "timezone": self.timezone,
            "defaultMeetingDurationMinutes": self.default_meeting_duration_minutes,
            "bufferBeforeMinutes": self.buffer_before_minutes,
            "bufferAfterMinutes": self.buffer_after_minutes,
            "preferredPlatform": self.preferred_platform,
            "maxMeetingsPerDay": self.max_meetings_per_day,
            "noMeetingDays": list(self.no_meeting_days),
            "customRules": self.custom_rules,
        }


# ──────────────────────────────────────────────────────────────────────────────
# Threads
# ──────────────────────────────────────────────────────────────────────────────


class ThreadState(str, Enum):
    NEW = "new"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    BOOKED = "booked"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: Any) -> "ThreadState":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            raise DataConsistencyError(f"unrecognized thread state: {value!r}") from None


@dataclass
class Thread:
    id: int
    thread_id: str
    state: ThreadState
    requester_email: str
    proposed_slots: Optional[List[TimeSlot]] = None
    requester_name: Optional[str] = None
    attendee_email: Optional[str] = None
    attendee_name: Optional[str] = None
    meeting_title: Optional[str] = None
    meeting_duration_minutes: Optional[int] = None
    calendar_event_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threadId": self.thread_id,
            "state": self.state.value,
            "proposedSlots": [s.to_dict() for s in self.proposed_slots] if self.proposed_slots is not None else None,
            "requesterEmail": self.requester_email,
            "requesterName": self.requester_name,
            "attendeeEmail": self.attendee_email,
            "attendeeName": self.attendee_name,
            "meetingTitle": self.meeting_title,
            "meetingDurationMinutes": self.meeting_duration_minutes,
            "calendarEventId": self.calendar_event_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


# ──────────────────────────────────────────────────────────────────────────────
# Email
# ──────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EmailAddress:
    email: str
    name: Optional[str] = None

    def formatted(self) -> str:
        return f"{self.name} <{self.email}>" if self.name else self.email


@dataclass
class IncomingEmail:
    message_id: str
    thread_id: str
    from_addr: EmailAddress
    subject: str
    timestamp: str
    to: List[EmailAddress] = field(default_factory=list)
    cc: List[EmailAddress] = field(default_factory=list)
    inbox_id: Optional[str] = None
    text: Optional[str] = None
    html: Optional[str] = None
