from datetime import datetime, time, timedelta

import pytest

from scheduling import calendar_client, store
from scheduling.config import settings
from scheduling.errors import CalendarError, EventUnavailableError
from scheduling.models import EmailAddress, IncomingEmail, Preferences, TimeSlot


@pytest.fixture(autouse=True)
def temp_store(tmp_path):
    store.configure(str(tmp_path / "ea-test.db"))
    yield store
    store.configure(None)


@pytest.fixture(autouse=True)
def offline_mailbox(monkeypatch):
    monkeypatch.setattr(settings, "AGENTMAIL_API_KEY", "")


class FakeCalendar:
    """In-memory stand-in for the calendar adapter; records every call."""

    def __init__(self):
        self.events: dict[str, dict] = {}
        self.busy = []
        self.calls: list[tuple] = []
        self.fail_update = False
        self.fail_create = False
        self.fail_cancel = False
        self._n = 0

    def add_event(self, event_id, slot, title="Existing"):
        self.events[event_id] = {"title": title, "slot": slot, "status": "confirmed", "attendees": []}

    def create_event(self, title, slot, attendee_email, attendee_name=None, description=None,
                     wants_video_link=False, **_):
        self.calls.append(("create", title, slot, attendee_email))
        if self.fail_create:
            raise CalendarError("insert rejected", status=500)
        self._n += 1
        event_id = f"evt-{self._n}"
        self.events[event_id] = {"title": title, "slot": slot, "status": "confirmed", "attendees": [attendee_email]}
        return {
            "event_id": event_id,
            "event_link": f"https://calendar.example/{event_id}",
            "video_link": "https://meet.example/abc" if wants_video_link else None,
        }

    def update_event(self, event_id, slot, title=None, description=None, **_):
        self.calls.append(("update", event_id, slot))
        ev = self.events.get(event_id)
        if self.fail_update or ev is None or ev["status"] == "cancelled":
            raise EventUnavailableError(f"event {event_id} not found", status=404)
        ev["slot"] = slot
        if title:
            ev["title"] = title
        return {"event_id": event_id, "event_link": f"https://calendar.example/{event_id}", "video_link": None}

    def cancel_event(self, event_id, **_):
        self.calls.append(("cancel", event_id))
        ev = self.events.get(event_id)
        if self.fail_cancel or ev is None:
            raise EventUnavailableError(f"event {event_id} not found", status=404)
        ev["status"] = "cancelled"

    def busy_for_dates(self, start_date, end_date, tz):
        self.calls.append(("busy", start_date, end_date))
        return list(self.busy)

    def list_events(self, time_min, time_max, **_):
        self.calls.append(("list", time_min, time_max))
        return [
            {"event_id": eid, "title": ev["title"], "start": ev["slot"].start.isoformat(),
             "end": ev["slot"].end.isoformat(), "status": ev["status"], "attendees": ev["attendees"]}
            for eid, ev in self.events.items()
            if ev["status"] != "cancelled" and ev["slot"].start < time_max and ev["slot"].end > time_min
        ]

    def live_events(self):
        return {eid: ev for eid, ev in self.events.items() if ev["status"] != "cancelled"}


@pytest.fixture
def fake_calendar(monkeypatch):
    cal = FakeCalendar()
    for name in ("create_event", "update_event", "cancel_event", "busy_for_dates", "list_events"):
        monkeypatch.setattr(calendar_client, name, getattr(cal, name))
    return cal


@pytest.fixture
def prefs():
    return Preferences(
        working_hours_start="09:00",
        working_hours_end="18:00",
        timezone="America/Los_Angeles",
        no_meeting_days=[0, 6],
    )


@pytest.fixture
def la_slot(prefs):
    """Build a slot on a given date in the owner's timezone: la_slot(date, "10:00", "11:00")."""
    tz = prefs.tzinfo()

    def _make(day, start, end):
        sh, sm = map(int, start.split(":"))
        eh, em = map(int, end.split(":"))
        s = datetime.combine(day, time(sh, sm), tzinfo=tz)
        e = datetime.combine(day, time(eh, em), tzinfo=tz)
        if e <= s:
            e += timedelta(days=1)
        return TimeSlot(s, e)

    return _make


@pytest.fixture
def incoming_email():
    return IncomingEmail(
        message_id="<msg-1@mail.example>",
        thread_id="thread-1",
        from_addr=EmailAddress("owner@corp.example", "Olivia Owner"),
        to=[EmailAddress("guest@partner.example", "Gary Guest")],
        cc=[EmailAddress("ea@agentmail.to", "EA")],
        subject="Intro call",
        timestamp="2025-03-03T17:00:00Z",
        text="Could you two find 30 minutes next week?",
        html=None,
    )
