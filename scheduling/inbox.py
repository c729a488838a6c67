# scheduling/inbox.py
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from email.utils import parseaddr
from typing import Any, Dict, List, Optional

from . import store
from .agent import run_agent
from .config import settings
from .models import EmailAddress, IncomingEmail, ThreadState
from .tools import AgentContext

log = logging.getLogger(__name__)

_NAME_ADDR_RE = re.compile(r"^(.+?)\s*<(.+?)>$")

RECEIVED_EVENT = "message.received"


def normalize_address(value: Any) -> EmailAddress:
    """'Name <email>', {'email'|'address', 'name'} or a bare address."""
    if isinstance(value, str):
        m = _NAME_ADDR_RE.match(value.strip())
        if m:
            return EmailAddress(email=m.group(2).strip(), name=m.group(1).strip().strip('"') or None)
        return EmailAddress(email=(parseaddr(value)[1] or value).strip())
    if isinstance(value, dict):
        email = value.get("email") or value.get("address") or ""
        return EmailAddress(email=str(email).strip(), name=value.get("name") or None)
    return EmailAddress(email="" if value is None else str(value).strip())


def _address_list(value: Any) -> List[EmailAddress]:
    if not value:
        return []
    items = value if isinstance(value, list) else [value]
    return [a for a in (normalize_address(v) for v in items) if a.email]


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for k in keys:
        v = data.get(k)
        if v not in (None, ""):
            return v
    return None


def parse_incoming(payload: Dict[str, Any]) -> Optional[IncomingEmail]:
    """
    Webhook body → IncomingEmail, or None for events we do not handle.
    The message may sit under 'message', 'data' or at the top level.
    """
    event_type = payload.get("event_type") or payload.get("event")
    if event_type != RECEIVED_EVENT:
        return None

    data = payload.get("message") or payload.get("data") or payload
    message_id = _first(data, "message_id", "messageId", "id")
    if not message_id:
        log.warning("[webhook] message without an id; skipping")
        return None

    from_addr = normalize_address(_first(data, "from_", "from"))
    if not from_addr.email:
        log.warning("[webhook] message=%s has no sender; skipping", message_id)
        return None

    return IncomingEmail(
        message_id=str(message_id),
        thread_id=str(_first(data, "thread_id", "threadId", "message_id", "messageId", "id")),
        inbox_id=_first(data, "inbox_id", "inboxId"),
        from_addr=from_addr,
        to=_address_list(data.get("to")),
        cc=_address_list(data.get("cc")),
        subject=_first(data, "subject") or "(no subject)",
        text=_first(data, "text", "extracted_text", "body"),
        html=_first(data, "html", "extracted_html"),
        timestamp=str(
            _first(data, "timestamp", "created_at", "createdAt")
            or datetime.now(timezone.utc).isoformat()
        ),
    )


def is_self_sent(email: IncomingEmail, agent_email: Optional[str] = None) -> bool:
    agent = (agent_email or settings.AGENT_EMAIL or "").strip().lower()
    return bool(agent) and agent in (email.from_addr.email or "").lower()


def prepare_context(email: IncomingEmail) -> AgentContext:
    """Load the thread, creating it (state 'new', requester = sender) on first sight."""
    thread = store.get_thread(email.thread_id)
    if thread is None:
        thread = store.upsert_thread(
            email.thread_id,
            ThreadState.NEW,
            requester_email=email.from_addr.email,
            requester_name=email.from_addr.name,
        )
        log.info("[webhook] new thread=%s requester=%s", email.thread_id, email.from_addr.email)
    return AgentContext(email=email, thread=thread)


def process_email(ctx: AgentContext) -> None:
    """Background entry point; failures are logged, never raised to the caller."""
    try:
        run_agent(ctx)
    except Exception:
        log.exception("[agent] unhandled error thread=%s message=%s", ctx.email.thread_id, ctx.email.message_id)
