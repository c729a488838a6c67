import pytest

import seed_cli
from scheduling import store
from scheduling.errors import ValidationError


def test_non_interactive_keeps_defaults():
    prefs = seed_cli.run(["--non-interactive"])
    assert prefs["workingHoursStart"] == "09:00"
    assert prefs["noMeetingDays"] == [0, 6]


def test_set_assignments():
    prefs = seed_cli.run(["--set", "workingHoursStart=08:00", "--set", "noMeetingDays=[0,5,6]"])
    assert prefs["workingHoursStart"] == "08:00"
    assert store.get_preferences().no_meeting_days == [0, 5, 6]


def test_set_rejects_unknown_key_before_writing():
    with pytest.raises(ValidationError):
        seed_cli.run(["--set", "workingHoursStart=07:00", "--set", "shoeSize=9"])
    assert store.get_preferences().working_hours_start == "09:00"


def test_prompt_reprompts_on_bad_value(capsys):
    answers = iter(["8am", "08:15", "", "", "45", "", "", "", "", "", ""])
    prefs = seed_cli.run([], ask=lambda _prompt: next(answers))

    assert prefs["workingHoursStart"] == "08:15"
    assert prefs["defaultMeetingDurationMinutes"] == 45
    assert prefs["workingHoursEnd"] == "18:00"
    assert "expected HH:MM" in capsys.readouterr().out


def test_set_rejects_inverted_working_hours():
    with pytest.raises(ValidationError):
        seed_cli.run(["--set", "workingHoursStart=19:00"])
    assert store.get_preferences().working_hours_start == "09:00"

    prefs = seed_cli.run(["--set", "workingHoursStart=19:00", "--set", "workingHoursEnd=22:00"])
    assert (prefs["workingHoursStart"], prefs["workingHoursEnd"]) == ("19:00", "22:00")
