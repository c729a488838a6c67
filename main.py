# main.py
from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

from fastapi import BackgroundTasks, Body, FastAPI, Header, HTTPException, Query
from pydantic import BaseModel

from scheduling.config import settings
from scheduling.inbox import is_self_sent, parse_incoming, prepare_context, process_email

log = logging.getLogger("ea_agent.app")
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

app = FastAPI(title="EA Scheduling Agent", version="1.0.0")


class WebhookAck(BaseModel):
    ok: bool = True
    skipped: Optional[bool] = None


def _check_secret(header_secret: Optional[str], query_secret: Optional[str]) -> None:
    expected = settings.WEBHOOK_SECRET
    if not expected:
        return
    supplied = header_secret if header_secret is not None else query_secret
    if supplied is None or not hmac.compare_digest(str(supplied), expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


# ---------------- Health ----------------
@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True, "service": "ea-scheduling-agent", "env": settings.ENV}


# ---------------- Inbound mail ----------------
@app.post("/webhook/email", response_model=WebhookAck, response_model_exclude_none=True)
def webhook_email(
    background: BackgroundTasks,
    payload: Dict[str, Any] = Body(...),
    x_webhook_secret: Optional[str] = Header(default=None),
    secret: Optional[str] = Query(default=None),
) -> WebhookAck:
    _check_secret(x_webhook_secret, secret)

    email = parse_incoming(payload)
    if email is None:
        log.info("[webhook] skipped event=%s", payload.get("event_type") or payload.get("event"))
        return WebhookAck(skipped=True)

    if is_self_sent(email):
        log.info("[webhook] skipping self-sent message=%s", email.message_id)
        return WebhookAck(skipped=True)

    ctx = prepare_context(email)
    log.info("[webhook] accepted message=%s thread=%s from=%s", email.message_id, email.thread_id, email.from_addr.email)
    background.add_task(process_email, ctx)
    return WebhookAck()
