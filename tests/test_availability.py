from datetime import date, datetime, timedelta, timezone

import pytest

from scheduling.availability import (
    compute_free_windows,
    free_windows_for_day,
    parse_date_range,
    weekday_index,
)
from scheduling.errors import ValidationError
from scheduling.models import Preferences, TimeSlot

TUESDAY = date(2025, 3, 4)
SATURDAY = date(2025, 3, 8)
SUNDAY = date(2025, 3, 9)


def _hm(slot):
    return slot.start.strftime("%H:%M"), slot.end.strftime("%H:%M")


def test_weekday_index_counts_from_sunday():
    assert weekday_index(SUNDAY) == 0
    assert weekday_index(TUESDAY) == 2
    assert weekday_index(SATURDAY) == 6


def test_single_busy_block_splits_the_day(prefs, la_slot):
    busy = [la_slot(TUESDAY, "10:00", "11:00")]
    windows = compute_free_windows(busy, TUESDAY, TUESDAY, prefs, 30)
    assert [_hm(w) for w in windows] == [("09:00", "10:00"), ("11:00", "18:00")]


def test_fully_covered_day_has_no_windows(prefs, la_slot):
    busy = [la_slot(TUESDAY, "08:00", "19:00")]
    assert compute_free_windows(busy, TUESDAY, TUESDAY, prefs, 30) == []


def test_gap_shorter_than_duration_is_dropped(prefs, la_slot):
    busy = [la_slot(TUESDAY, "09:00", "12:00"), la_slot(TUESDAY, "12:45", "18:00")]
    assert compute_free_windows(busy, TUESDAY, TUESDAY, prefs, 60) == []
    windows = compute_free_windows(busy, TUESDAY, TUESDAY, prefs, 45)
    assert [_hm(w) for w in windows] == [("12:00", "12:45")]


def test_no_meeting_days_contribute_nothing(prefs):
    windows = compute_free_windows([], SATURDAY, SUNDAY + timedelta(days=1), prefs, 30)
    assert [w.start.date() for w in windows] == [SUNDAY + timedelta(days=1)]


def test_overlapping_and_unsorted_blocks(prefs, la_slot):
    busy = [
        la_slot(TUESDAY, "14:00", "15:00"),
        la_slot(TUESDAY, "10:00", "12:00"),
        la_slot(TUESDAY, "11:00", "11:30"),
        la_slot(TUESDAY, "11:30", "13:00"),
    ]
    windows = compute_free_windows(busy, TUESDAY, TUESDAY, prefs, 30)
    assert [_hm(w) for w in windows] == [("09:00", "10:00"), ("13:00", "14:00"), ("15:00", "18:00")]


def test_blocks_outside_working_hours_are_clipped(prefs, la_slot):
    busy = [la_slot(TUESDAY, "07:00", "09:30"), la_slot(TUESDAY, "17:30", "20:00")]
    windows = compute_free_windows(busy, TUESDAY, TUESDAY, prefs, 30)
    assert [_hm(w) for w in windows] == [("09:30", "17:30")]


def test_windows_and_busy_partition_the_working_day(prefs, la_slot):
    busy = [la_slot(TUESDAY, "09:10", "09:20"), la_slot(TUESDAY, "13:00", "14:30")]
    windows = compute_free_windows(busy, TUESDAY, TUESDAY, prefs, 0)

    covered = sum((w.end - w.start for w in windows), timedelta())
    covered += sum((b.end - b.start for b in busy), timedelta())
    assert covered == timedelta(hours=9)
    for w in windows:
        assert not any(w.start < b.end and b.start < w.end for b in busy)


def test_output_is_chronological_across_days(prefs, la_slot):
    wednesday = TUESDAY + timedelta(days=1)
    busy = [la_slot(wednesday, "12:00", "13:00"), la_slot(TUESDAY, "12:00", "13:00")]
    windows = compute_free_windows(busy, TUESDAY, wednesday, prefs, 30)
    assert windows == sorted(windows, key=lambda w: w.start)
    assert len(windows) == 4


def test_busy_in_other_timezone_is_respected(prefs):
    # 18:00-19:00 UTC is 10:00-11:00 in Los Angeles (PST, UTC-8) on this date
    busy = [TimeSlot(datetime(2025, 3, 4, 18, tzinfo=timezone.utc), datetime(2025, 3, 4, 19, tzinfo=timezone.utc))]
    windows = compute_free_windows(busy, TUESDAY, TUESDAY, prefs, 30)
    assert [_hm(w) for w in windows] == [("09:00", "10:00"), ("11:00", "18:00")]


def test_same_inputs_same_output(prefs, la_slot):
    busy = [la_slot(TUESDAY, "10:00", "11:00")]
    assert compute_free_windows(busy, TUESDAY, TUESDAY, prefs, 30) == compute_free_windows(
        busy, TUESDAY, TUESDAY, prefs, 30
    )


@pytest.mark.parametrize(
    "start,end",
    [("18:00", "09:00"), ("09:00", "09:00"), ("nine", "18:00"), ("09:00", "25:00")],
)
def test_malformed_working_hours_yield_nothing(start, end):
    p = Preferences(working_hours_start=start, working_hours_end=end, no_meeting_days=[])
    assert compute_free_windows([], TUESDAY, TUESDAY, p, 30) == []


def test_free_windows_for_day_walks_the_cursor():
    tz = timezone.utc
    day_start = datetime(2025, 3, 4, 9, tzinfo=tz)
    day_end = datetime(2025, 3, 4, 12, tzinfo=tz)
    busy = [TimeSlot(datetime(2025, 3, 4, 10, tzinfo=tz), datetime(2025, 3, 4, 10, 30, tzinfo=tz))]
    windows = free_windows_for_day(day_start, day_end, busy, timedelta(minutes=15))
    assert [_hm(w) for w in windows] == [("09:00", "10:00"), ("10:30", "12:00")]


def test_parse_date_range():
    assert parse_date_range("2025-03-04", "2025-03-05") == (TUESDAY, TUESDAY + timedelta(days=1))
    with pytest.raises(ValidationError):
        parse_date_range("2025-03-05", "2025-03-04")
    with pytest.raises(ValidationError):
        parse_date_range("next tuesday", "2025-03-04")
