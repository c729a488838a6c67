from datetime import date

import pytest
from sqlalchemy import text

from scheduling import store
from scheduling.errors import DataConsistencyError
from scheduling.models import ThreadState


def test_defaults_are_seeded():
    prefs = store.get_preferences()
    assert prefs.working_hours_start == "09:00"
    assert prefs.working_hours_end == "18:00"
    assert prefs.default_meeting_duration_minutes == 30
    assert prefs.buffer_before_minutes == 5
    assert prefs.no_meeting_days == [0, 6]
    assert prefs.preferred_platform == "Google Meet"
    assert prefs.custom_rules == ""


def test_set_preference_survives_reopen(tmp_path):
    store.set_preference("workingHoursStart", "08:30")
    store.configure(str(tmp_path / "ea-test.db"))  # reopen same file; seeding must not overwrite
    assert store.get_preferences().working_hours_start == "08:30"


def test_unparseable_stored_values_fall_back_to_defaults():
    store.set_preference("bufferBeforeMinutes", "lots")
    store.set_preference("noMeetingDays", "weekends")
    prefs = store.get_preferences()
    assert prefs.buffer_before_minutes == 5
    assert prefs.no_meeting_days == [0, 6]


def test_wal_journal_mode():
    with store.get_engine().connect() as conn:
        assert conn.execute(text("PRAGMA journal_mode")).scalar().lower() == "wal"


def test_insert_requires_requester():
    with pytest.raises(DataConsistencyError):
        store.upsert_thread("t-1", ThreadState.NEW)
    assert store.get_thread("t-1") is None


def test_upsert_merges_identity_fields(la_slot):
    slot = la_slot(date(2025, 3, 4), "10:00", "10:30")
    store.upsert_thread(
        "t-1",
        "awaiting_confirmation",
        requester_email="owner@corp.example",
        requester_name="Olivia",
        meeting_title="Intro",
        meeting_duration_minutes=30,
        proposed_slots=[slot],
    )

    t = store.upsert_thread("t-1", ThreadState.BOOKED, calendar_event_id="evt-9", attendee_email="guest@partner.example")

    assert t.state is ThreadState.BOOKED
    assert t.requester_email == "owner@corp.example"
    assert t.requester_name == "Olivia"
    assert t.meeting_title == "Intro"
    assert t.meeting_duration_minutes == 30
    assert t.calendar_event_id == "evt-9"
    assert t.attendee_email == "guest@partner.example"
    # proposed slots are not merged: omitted means cleared
    assert t.proposed_slots is None


def test_state_only_write_preserves_every_identity_field():
    store.upsert_thread(
        "t-keep",
        "awaiting_confirmation",
        requester_email="owner@corp.example",
        requester_name="Olivia Owner",
        attendee_email="guest@partner.example",
        attendee_name="Gary Guest",
        meeting_title="Intro",
        meeting_duration_minutes=30,
        calendar_event_id="evt-1",
    )

    t = store.upsert_thread("t-keep", "booked")

    assert t.state is ThreadState.BOOKED
    assert (t.requester_email, t.requester_name) == ("owner@corp.example", "Olivia Owner")
    assert (t.attendee_email, t.attendee_name) == ("guest@partner.example", "Gary Guest")
    assert t.meeting_title == "Intro"
    assert t.meeting_duration_minutes == 30
    assert t.calendar_event_id == "evt-1"
    assert store.get_thread("t-keep") == t


def test_proposed_slots_round_trip(la_slot):
    slots = [la_slot(date(2025, 3, 4), "10:00", "10:30"), la_slot(date(2025, 3, 5), "15:00", "15:30")]
    store.upsert_thread("t-1", "awaiting_confirmation", requester_email="a@x.example", proposed_slots=slots)
    assert store.get_thread("t-1").proposed_slots == slots


def test_invalid_state_leaves_row_untouched():
    before = store.upsert_thread("t-1", "new", requester_email="a@x.example")
    with pytest.raises(DataConsistencyError):
        store.upsert_thread("t-1", "scheduled", meeting_title="nope")
    after = store.get_thread("t-1")
    assert after.state is ThreadState.NEW
    assert after.meeting_title is None
    assert after.updated_at == before.updated_at


def test_updated_at_moves_forward():
    first = store.upsert_thread("t-1", "new", requester_email="a@x.example")
    second = store.upsert_thread("t-1", "awaiting_confirmation")
    assert second.created_at == first.created_at
    assert second.state is ThreadState.AWAITING_CONFIRMATION
    assert second.updated_at >= first.updated_at


def test_find_booked_by_attendee_picks_most_recent():
    store.upsert_thread("t-old", "booked", requester_email="o@corp.example",
                        attendee_email="Guest@Partner.example", calendar_event_id="evt-1")
    store.upsert_thread("t-new", "booked", requester_email="o@corp.example",
                        attendee_email="guest@partner.example", calendar_event_id="evt-2")
    store.upsert_thread("t-open", "awaiting_confirmation", requester_email="o@corp.example",
                        attendee_email="guest@partner.example")

    found = store.find_booked_by_attendee("GUEST@partner.example")
    assert found.thread_id == "t-new"
    assert store.find_booked_by_attendee("nobody@else.example") is None


def test_find_booked_ignores_threads_without_event():
    store.upsert_thread("t-1", "booked", requester_email="o@corp.example", attendee_email="g@p.example")
    assert store.find_booked_by_attendee("g@p.example") is None


def test_find_by_event_id():
    store.upsert_thread("t-1", "booked", requester_email="o@corp.example", calendar_event_id="evt-1")
    assert store.find_by_event_id("evt-1").thread_id == "t-1"
    assert store.find_by_event_id("evt-404") is None


def test_old_database_gets_late_columns(tmp_path):
    from sqlalchemy import create_engine

    path = tmp_path / "legacy.db"
    legacy = create_engine(f"sqlite:///{path}")
    with legacy.begin() as conn:
        conn.execute(text(
            "CREATE TABLE threads (id INTEGER PRIMARY KEY AUTOINCREMENT, thread_id TEXT UNIQUE NOT NULL, "
            "state TEXT NOT NULL DEFAULT 'new', proposed_slots TEXT, requester_email TEXT NOT NULL, "
            "requester_name TEXT, meeting_title TEXT, meeting_duration_minutes INTEGER, "
            "created_at TEXT NOT NULL, updated_at TEXT NOT NULL)"
        ))
    legacy.dispose()

    store.configure(str(path))
    t = store.upsert_thread("t-1", "booked", requester_email="o@corp.example",
                            attendee_email="g@p.example", calendar_event_id="evt-1")
    assert t.calendar_event_id == "evt-1"
    assert t.attendee_email == "g@p.example"
