from __future__ import annotations

import logging
from datetime import timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

log = logging.getLogger(__name__)


def is_valid_tz(key: str) -> bool:
    try:
        ZoneInfo(key)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        return False


def resolve_tz(key: Optional[str], *, fallback: Optional[str] = None) -> tzinfo:
    """
    ZoneInfo resolver that never raises.
    - Tries `key` (tzdata is a dependency, so Windows hosts resolve too).
    - Then `fallback` (normally settings.OWNER_TIMEZONE).
    - Last-ditch: UTC.
    """
    for candidate in (key, fallback):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            log.warning("[tz] unknown timezone %r", candidate)
    return timezone.utc
