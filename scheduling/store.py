# scheduling/store.py
from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine

from .config import settings
from .errors import DataConsistencyError
from .models import Preferences, Thread, ThreadState, TimeSlot

log = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_PREFERENCES",
    "configure",
    "close_engine",
    "get_preferences",
    "set_preference",
    "get_thread",
    "upsert_thread",
    "find_booked_by_attendee",
    "find_by_event_id",
]

# ──────────────────────────────────────────────────────────────────────────────
# Engine
# ──────────────────────────────────────────────────────────────────────────────

_engine: Optional[Engine] = None
_db_path: Optional[str] = None
_lock = threading.Lock()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _enable_wal(dbapi_conn, _record) -> None:
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA journal_mode=WAL")
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()


def configure(db_path: Optional[str] = None) -> None:
    """Point the store at another database file (next access re-initialises)."""
    global _db_path
    close_engine()
    _db_path = db_path


def close_engine() -> None:
    global _engine
    with _lock:
        if _engine is not None:
            _engine.dispose()
            _engine = None


def get_engine() -> Engine:
    global _engine
    with _lock:
        if _engine is not None:
            return _engine
        path = Path(_db_path or settings.EA_DB_PATH)
        path.parent.mkdir(parents=True, exist_ok=True)
        eng = create_engine(
            f"sqlite:///{path}",
            connect_args={"check_same_thread": False, "timeout": 30},
            future=True,
        )
        event.listen(eng, "connect", _enable_wal)
        with eng.begin() as conn:
            _migrate(conn)
        log.info("[store] opened %s", path)
        _engine = eng
        return eng


@contextmanager
def _tx() -> Iterator[Connection]:
    with get_engine().begin() as conn:
        yield conn


def _run(sql: str, params: Dict[str, Any] | None = None, *, conn: Optional[Connection] = None) -> List[Dict[str, Any]]:
    """
    Thin helper around a single statement. Runs in its own transaction unless
    an open connection is supplied.
    """
    if conn is None:
        with _tx() as c:
            return _run(sql, params, conn=c)
    rs = conn.execute(text(sql), params or {})
    if not rs.returns_rows:
        return []
    return [dict(r) for r in rs.mappings()]


# ──────────────────────────────────────────────────────────────────────────────
# Schema
# ──────────────────────────────────────────────────────────────────────────────

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS preferences (
      key   TEXT PRIMARY KEY,
      value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS threads (
      id                       INTEGER PRIMARY KEY AUTOINCREMENT,
      thread_id                TEXT UNIQUE NOT NULL,
      state                    TEXT NOT NULL DEFAULT 'new',
      proposed_slots           TEXT,
      requester_email          TEXT NOT NULL,
      requester_name           TEXT,
      meeting_title            TEXT,
      meeting_duration_minutes INTEGER,
      calendar_event_id        TEXT,
      created_at               TEXT NOT NULL,
      updated_at               TEXT NOT NULL
    )
    """,
)

# Columns added after the first release; older files get them via ALTER TABLE.
_LATE_COLUMNS = {
    "calendar_event_id": "TEXT",
    "attendee_email": "TEXT",
    "attendee_name": "TEXT",
}


def _migrate(conn: Connection) -> None:
    for stmt in _SCHEMA:
        conn.execute(text(stmt))
    existing = {r["name"] for r in conn.execute(text("PRAGMA table_info(threads)")).mappings()}
    for col, kind in _LATE_COLUMNS.items():
        if col not in existing:
            conn.execute(text(f"ALTER TABLE threads ADD COLUMN {col} {kind}"))
            log.info("[store] added column threads.%s", col)
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_threads_attendee ON threads (attendee_email, state)"))
    _seed_default_preferences(conn)


# ──────────────────────────────────────────────────────────────────────────────
# Preferences
# ──────────────────────────────────────────────────────────────────────────────

DEFAULT_PREFERENCES: Dict[str, str] = {
    "workingHoursStart": "09:00",
    "workingHoursEnd": "18:00",
    "timezone": "America/Los_Angeles",
    "defaultMeetingDurationMinutes": "30",
    "bufferBeforeMinutes": "5",
    "bufferAfterMinutes": "5",
    "preferredPlatform": "Google Meet",
    "maxMeetingsPerDay": "6",
    "noMeetingDays": "[0,6]",
    "customRules": "",
}


def _defaults() -> Dict[str, str]:
    d = dict(DEFAULT_PREFERENCES)
    d["timezone"] = settings.OWNER_TIMEZONE or d["timezone"]
    return d


def _seed_default_preferences(conn: Connection) -> None:
    for key, value in _defaults().items():
        conn.execute(
            text("INSERT OR IGNORE INTO preferences (key, value) VALUES (:key, :value)"),
            {"key": key, "value": value},
        )


def _int_or(raw: Optional[str], default: str) -> int:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return int(default)


def _days_or(raw: Optional[str], default: str) -> List[int]:
    try:
        days = json.loads(raw) if raw is not None else None
        if isinstance(days, list) and all(isinstance(d, int) and 0 <= d <= 6 for d in days):
            return days
    except (TypeError, ValueError):
        pass
    return json.loads(default)


def get_preferences() -> Preferences:
    rows = _run("SELECT key, value FROM preferences")
    stored = {r["key"]: r["value"] for r in rows}
    d = _defaults()
    m = {**d, **stored}
    return Preferences(
        working_hours_start=m["workingHoursStart"],
        working_hours_end=m["workingHoursEnd"],
        timezone=m["timezone"] or d["timezone"],
        default_meeting_duration_minutes=_int_or(m["defaultMeetingDurationMinutes"], d["defaultMeetingDurationMinutes"]),
        buffer_before_minutes=_int_or(m["bufferBeforeMinutes"], d["bufferBeforeMinutes"]),
        buffer_after_minutes=_int_or(m["bufferAfterMinutes"], d["bufferAfterMinutes"]),
        preferred_platform=m["preferredPlatform"],
        max_meetings_per_day=_int_or(m["maxMeetingsPerDay"], d["maxMeetingsPerDay"]),
        no_meeting_days=_days_or(m["noMeetingDays"], d["noMeetingDays"]),
        custom_rules=m["customRules"],
    )


def set_preference(key: str, value: str) -> None:
    _run(
        """
        INSERT INTO preferences (key, value) VALUES (:key, :value)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        {"key": key, "value": str(value)},
    )
    log.info("[store] preference %s updated", key)


# ──────────────────────────────────────────────────────────────────────────────
# Threads
# ──────────────────────────────────────────────────────────────────────────────


def _slots_to_json(slots: Optional[Sequence[TimeSlot]]) -> Optional[str]:
    if slots is None:
        return None
    return json.dumps([s.to_dict() for s in slots])


def _slots_from_json(raw: Optional[str]) -> Optional[List[TimeSlot]]:
    if not raw:
        return None
    return [TimeSlot.from_dict(s) for s in json.loads(raw)]


def _row_to_thread(row: Dict[str, Any]) -> Thread:
    return Thread(
        id=row["id"],
        thread_id=row["thread_id"],
        state=ThreadState.parse(row["state"]),
        proposed_slots=_slots_from_json(row.get("proposed_slots")),
        requester_email=row["requester_email"],
        requester_name=row.get("requester_name"),
        attendee_email=row.get("attendee_email"),
        attendee_name=row.get("attendee_name"),
        meeting_title=row.get("meeting_title"),
        meeting_duration_minutes=row.get("meeting_duration_minutes"),
        calendar_event_id=row.get("calendar_event_id"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def get_thread(thread_id: str, *, conn: Optional[Connection] = None) -> Optional[Thread]:
    rows = _run("SELECT * FROM threads WHERE thread_id = :tid", {"tid": thread_id}, conn=conn)
    return _row_to_thread(rows[0]) if rows else None


def upsert_thread(
    thread_id: str,
    state: ThreadState | str,
    *,
    requester_email: Optional[str] = None,
    requester_name: Optional[str] = None,
    attendee_email: Optional[str] = None,
    attendee_name: Optional[str] = None,
    meeting_title: Optional[str] = None,
    meeting_duration_minutes: Optional[int] = None,
    proposed_slots: Optional[Sequence[TimeSlot]] = None,
    calendar_event_id: Optional[str] = None,
) -> Thread:
    """
    Insert or merge one thread row keyed by thread_id.

    On update, `state` and `proposed_slots` always take the supplied value
    (None clears the slots); every other field keeps its stored value unless a
    new non-null value is supplied.
    """
    st = ThreadState.parse(state)
    if not thread_id or not str(thread_id).strip():
        raise DataConsistencyError("thread_id is required")
    if meeting_duration_minutes is not None and int(meeting_duration_minutes) < 0:
        raise DataConsistencyError("meeting_duration_minutes must be non-negative")

    params = {
        "tid": thread_id,
        "state": st.value,
        "requester_email": requester_email or "",
        "requester_name": requester_name,
        "attendee_email": attendee_email,
        "attendee_name": attendee_name,
        "meeting_title": meeting_title,
        "meeting_duration_minutes": int(meeting_duration_minutes) if meeting_duration_minutes is not None else None,
        "proposed_slots": _slots_to_json(proposed_slots),
        "calendar_event_id": calendar_event_id,
        "now": _now_iso(),
    }

    with _tx() as conn:
        exists = _run("SELECT 1 AS one FROM threads WHERE thread_id = :tid", {"tid": thread_id}, conn=conn)
        if not exists and not requester_email:
            raise DataConsistencyError(f"requester_email is required to create thread {thread_id!r}")

        _run(
            """
            INSERT INTO threads (
              thread_id, state, requester_email, requester_name, attendee_email, attendee_name,
              meeting_title, meeting_duration_minutes, proposed_slots, calendar_event_id,
              created_at, updated_at
            ) VALUES (
              :tid, :state, :requester_email, :requester_name, :attendee_email, :attendee_name,
              :meeting_title, :meeting_duration_minutes, :proposed_slots, :calendar_event_id,
              :now, :now
            )
            ON CONFLICT(thread_id) DO UPDATE SET
              state                    = excluded.state,
              requester_email          = COALESCE(NULLIF(excluded.requester_email, ''), requester_email),
              requester_name           = COALESCE(excluded.requester_name, requester_name),
              attendee_email           = COALESCE(excluded.attendee_email, attendee_email),
              attendee_name            = COALESCE(excluded.attendee_name, attendee_name),
              meeting_title            = COALESCE(excluded.meeting_title, meeting_title),
              meeting_duration_minutes = COALESCE(excluded.meeting_duration_minutes, meeting_duration_minutes),
              proposed_slots           = excluded.proposed_slots,
              calendar_event_id        = COALESCE(excluded.calendar_event_id, calendar_event_id),
              updated_at               = excluded.updated_at
            """,
            params,
            conn=conn,
        )
        thread = get_thread(thread_id, conn=conn)

    assert thread is not None
    log.debug("[store] upsert thread=%s state=%s event=%s", thread_id, st.value, thread.calendar_event_id)
    return thread


def find_booked_by_attendee(attendee_email: str) -> Optional[Thread]:
    rows = _run(
        """
        SELECT * FROM threads
        WHERE lower(attendee_email) = lower(:email)
          AND state = 'booked'
          AND calendar_event_id IS NOT NULL
        ORDER BY updated_at DESC, id DESC
        LIMIT 1
        """,
        {"email": (attendee_email or "").strip()},
    )
    return _row_to_thread(rows[0]) if rows else None


def find_by_event_id(event_id: str) -> Optional[Thread]:
    rows = _run(
        """
        SELECT * FROM threads
        WHERE calendar_event_id = :eid
        ORDER BY updated_at DESC, id DESC
        LIMIT 1
        """,
        {"eid": event_id},
    )
    return _row_to_thread(rows[0]) if rows else None
