# scheduling/mailbox.py
"""
Read-only access to the inbound mailbox provider (AgentMail REST API).

Only used to give the agent the earlier messages of a thread. Every failure
is logged and turns into "no history"; a run never depends on it.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from .config import settings
from .models import IncomingEmail

log = logging.getLogger(__name__)

_TIMEOUT = httpx.Timeout(10.0, connect=5.0)
_BODY_CHARS = 1500


def _client() -> httpx.Client:
    return httpx.Client(
        base_url=settings.AGENTMAIL_BASE_URL,
        timeout=_TIMEOUT,
        headers={"Authorization": f"Bearer {settings.AGENTMAIL_API_KEY}"},
    )


def _as_text(value: Any) -> str:
    if not value:
        return ""
    if isinstance(value, list):
        return ", ".join(t for t in (_as_text(v) for v in value) if t)
    if isinstance(value, dict):
        addr = value.get("email") or value.get("address") or ""
        return f"{value['name']} <{addr}>" if value.get("name") else str(addr)
    return str(value)


def _summarize(m: Dict[str, Any]) -> Dict[str, str]:
    body = m.get("text") or m.get("extracted_text") or m.get("preview") or ""
    if len(body) > _BODY_CHARS:
        body = body[:_BODY_CHARS] + "…"
    return {
        "message_id": str(m.get("message_id") or m.get("messageId") or ""),
        "from": _as_text(m.get("from_") or m.get("from")),
        "to": _as_text(m.get("to")),
        "cc": _as_text(m.get("cc")),
        "subject": str(m.get("subject") or ""),
        "timestamp": str(m.get("timestamp") or m.get("created_at") or ""),
        "body": body,
    }


def fetch_thread_history(
    email: IncomingEmail,
    *,
    client: Optional[httpx.Client] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, str]]:
    """
    Earlier messages of `email`'s thread, oldest first, excluding `email` itself.
    Returns [] when the provider is not configured or the request fails.
    """
    if not settings.AGENTMAIL_API_KEY and client is None:
        return []
    inbox_id = email.inbox_id or settings.AGENTMAIL_INBOX_ID or settings.AGENT_EMAIL
    path = f"/inboxes/{quote(inbox_id, safe='')}/threads/{quote(email.thread_id, safe='')}"
    limit = settings.THREAD_HISTORY_LIMIT if limit is None else limit

    try:
        if client is not None:
            resp = client.get(path)
        else:
            with _client() as c:
                resp = c.get(path)
        resp.raise_for_status()
        data = resp.json() or {}
    except (httpx.HTTPError, ValueError) as e:
        log.warning("[mailbox] history fetch failed thread=%s: %s", email.thread_id, e)
        return []

    messages = [_summarize(m) for m in (data.get("messages") or []) if isinstance(m, dict)]
    prior = [m for m in messages if m["message_id"] != email.message_id]
    prior.sort(key=lambda m: m["timestamp"])
    if limit >= 0:
        prior = prior[-limit:] if limit else []
    log.debug("[mailbox] thread=%s history=%d", email.thread_id, len(prior))
    return prior
