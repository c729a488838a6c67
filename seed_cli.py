# seed_cli.py
"""
Seed or edit the owner's scheduling preferences.

    python seed_cli.py                      # prompt for every key
    python seed_cli.py --non-interactive    # just make sure defaults exist and print them
    python seed_cli.py --set workingHoursStart=08:30 --set noMeetingDays=[0,5,6]
"""
from __future__ import annotations

import argparse
import json
import logging
from typing import Callable, Dict, List, Optional, Sequence

from dotenv import find_dotenv, load_dotenv

load_dotenv(find_dotenv(usecwd=True))

from scheduling import store
from scheduling.config import settings
from scheduling.errors import ValidationError
from scheduling.tools import PREFERENCE_KEYS, check_working_hours, validate_preference

log = logging.getLogger("ea_agent.seed")

_PROMPTS: Dict[str, str] = {
    "workingHoursStart": "Working hours start (HH:MM)",
    "workingHoursEnd": "Working hours end (HH:MM)",
    "timezone": "Timezone (IANA, e.g. America/Los_Angeles)",
    "defaultMeetingDurationMinutes": "Default meeting length (minutes)",
    "bufferBeforeMinutes": "Buffer before meetings (minutes)",
    "bufferAfterMinutes": "Buffer after meetings (minutes)",
    "preferredPlatform": "Preferred video platform",
    "maxMeetingsPerDay": "Max meetings per day",
    "noMeetingDays": "No-meeting days as a JSON list, 0=Sunday (e.g. [0,6])",
    "customRules": "Custom rules (free text)",
}


def _parse_assignments(items: Sequence[str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for item in items:
        if "=" not in item:
            raise ValidationError(f"--set expects key=value, got {item!r}")
        k, v = item.split("=", 1)
        out[k.strip()] = v
    return out


def _prompt(
    current: Dict[str, object],
    ask: Callable[[str], str] = input,
) -> Dict[str, str]:
    answers: Dict[str, str] = {}
    for key in PREFERENCE_KEYS:
        cur = current.get(key)
        cur_text = json.dumps(cur, separators=(",", ":")) if isinstance(cur, list) else str(cur if cur is not None else "")
        while True:
            raw = ask(f"{_PROMPTS[key]} [{cur_text}]: ").strip()
            value = raw or cur_text
            try:
                answers[key] = validate_preference(key, value)
                break
            except ValidationError as e:
                print(f"  ! {e}")
    return answers


def run(argv: Optional[List[str]] = None, *, ask: Callable[[str], str] = input) -> Dict[str, object]:
    ap = argparse.ArgumentParser(description="Seed scheduling preferences")
    ap.add_argument("--non-interactive", action="store_true", help="do not prompt")
    ap.add_argument("--set", dest="assignments", action="append", default=[], metavar="KEY=VALUE")
    args = ap.parse_args(argv)

    current = store.get_preferences().to_dict()  # seeds defaults on first open

    if args.assignments:
        updates = {k: validate_preference(k, v) for k, v in _parse_assignments(args.assignments).items()}
    elif args.non_interactive:
        updates = {}
    else:
        updates = _prompt(current, ask)

    if {"workingHoursStart", "workingHoursEnd"} & updates.keys():
        merged = {**current, **updates}
        check_working_hours(str(merged["workingHoursStart"]), str(merged["workingHoursEnd"]))

    for key, value in updates.items():
        store.set_preference(key, value)

    prefs = store.get_preferences().to_dict()
    log.info("[seed] %d preference(s) written to %s", len(updates), settings.EA_DB_PATH)
    return prefs


def main() -> None:
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        prefs = run()
    except ValidationError as e:
        raise SystemExit(f"error: {e}")
    print(json.dumps(prefs, indent=2))


if __name__ == "__main__":
    main()
