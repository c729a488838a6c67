# scheduling/errors.py
from __future__ import annotations

from typing import Optional


class SchedulingError(Exception):
    """Root of every failure the scheduling core reports."""


class ValidationError(SchedulingError, ValueError):
    """Input rejected at the call boundary; nothing was written."""


class DataConsistencyError(SchedulingError):
    """A store write would leave a thread record in an invalid shape."""


class CalendarError(SchedulingError):
    def __init__(self, message: str, *, status: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.reason = reason


class EventUnavailableError(CalendarError):
    """The referenced event was deleted externally or is not accessible to us."""


class BookingFailedError(SchedulingError):
    def __init__(self, message: str, *, thread_id: Optional[str] = None):
        super().__init__(message)
        self.thread_id = thread_id
