# scheduling/sender.py
from __future__ import annotations

import html as _html
import logging
import socket
import time
import uuid
from datetime import datetime
from email.message import EmailMessage
from email.utils import parseaddr
from typing import Dict, List, Optional, Sequence, Tuple, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import settings
from .models import EmailAddress, IncomingEmail

log = logging.getLogger(__name__)

_ses = boto3.client("ses", region_name=settings.SES_REGION)

_BLOCKQUOTE_STYLE = "margin:0px 0px 0px 0.8ex;border-left:1px solid rgb(204,204,204);padding-left:1ex"

# ─────────────────────────────────────────────────────────
# Recipients
# ─────────────────────────────────────────────────────────

def resolve_recipients(email: IncomingEmail, agent_email: str) -> Tuple[List[EmailAddress], List[EmailAddress]]:
    """
    (to, cc) for a reply. Everyone on To/CC except the agent and the sender is
    an external party; reply to them and CC the sender. With no external party,
    reply to the sender alone.
    """
    agent = (agent_email or "").strip().lower()
    sender_addr = email.from_addr.email.strip().lower()

    seen = set()
    external: List[EmailAddress] = []
    for a in list(email.to) + list(email.cc):
        key = (a.email or "").strip().lower()
        if not key or key == agent or key == sender_addr or key in seen:
            continue
        seen.add(key)
        external.append(a)

    if external:
        return external, [email.from_addr]
    return [email.from_addr], []


# ─────────────────────────────────────────────────────────
# Body / quoting
# ─────────────────────────────────────────────────────────

def _bare(addr: str) -> str:
    return parseaddr(addr)[1] or addr


def _make_message_id(from_addr: str) -> str:
    domain = (from_addr.split("@", 1)[1] if "@" in from_addr else socket.getfqdn()) or "localhost"
    return f"<{int(time.time())}.{uuid.uuid4().hex}@{domain}>"


def _quote_date(value: Optional[str]) -> str:
    if not value:
        return ""
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return dt.strftime("%B %d, %Y at %I:%M %p")


def quote_header(quoted_from: Optional[str], quoted_date: Optional[str]) -> str:
    if not quoted_from:
        return ""
    return f"On {_quote_date(quoted_date)}, {quoted_from} wrote:"


def build_reply(
    body: str,
    *,
    quoted_text: Optional[str] = None,
    quoted_html: Optional[str] = None,
    quoted_from: Optional[str] = None,
    quoted_date: Optional[str] = None,
) -> Tuple[str, str]:
    """(plain, html) bodies with the original message quoted underneath."""
    header = quote_header(quoted_from, quoted_date)

    text = body
    if quoted_text:
        quoted = "\n".join(f"> {line}" for line in quoted_text.split("\n"))
        text = f"{body}\n\n{header}\n{quoted}"

    body_html = "\n".join(
        "<div><br></div>" if line == "" else f"<div>{_html.escape(line, quote=False)}</div>"
        for line in body.split("\n")
    )
    quote_content = quoted_html
    if quote_content is None and quoted_text:
        quote_content = f'<pre style="margin:0;white-space:pre-wrap">{_html.escape(quoted_text, quote=False)}</pre>'

    if quote_content:
        html = (
            f"<div>{body_html}</div><br>"
            f'<div class="gmail_quote"><div class="gmail_attr">{_html.escape(header, quote=False)}<br></div>'
            f'<blockquote class="gmail_quote" style="{_BLOCKQUOTE_STYLE}">{quote_content}</blockquote></div>'
        )
    else:
        html = f"<div>{body_html}</div>"
    return text, html


# ─────────────────────────────────────────────────────────
# MIME construction
# ─────────────────────────────────────────────────────────

def _build_mime(
    *,
    to: Sequence[str],
    cc: Sequence[str],
    subject: str,
    text: str,
    html: str,
    in_reply_to: Optional[str],
) -> bytes:
    """
    multipart/alternative (text/plain + text/html) with threading headers.
    """
    root = EmailMessage()
    root["Subject"] = subject
    root["From"] = settings.AGENT_EMAIL
    root["To"] = ", ".join(to)
    if cc:
        root["Cc"] = ", ".join(cc)
    root["Message-ID"] = _make_message_id(settings.AGENT_EMAIL)

    if in_reply_to and "@" in in_reply_to:
        ref = f"<{in_reply_to.strip().strip('<>')}>"
        root["In-Reply-To"] = ref
        root["References"] = ref

    root.set_content(text, charset="utf-8")
    # base64 keeps quoted-printable from mangling attributes
    root.add_alternative(html or "<html></html>", subtype="html", charset="utf-8", cte="base64")
    return root.as_bytes()


# ─────────────────────────────────────────────────────────
# SES send
# ─────────────────────────────────────────────────────────

def send_email(
    to: Sequence[str],
    cc: Sequence[str],
    subject: str,
    body: str,
    in_reply_to: Optional[str] = None,
    quoted_text: Optional[str] = None,
    quoted_html: Optional[str] = None,
    quoted_from: Optional[str] = None,
    quoted_date: Optional[str] = None,
) -> str:
    """Send a threaded reply through SES; returns the SES message id."""
    text, html = build_reply(
        body,
        quoted_text=quoted_text,
        quoted_html=quoted_html,
        quoted_from=quoted_from,
        quoted_date=quoted_date,
    )
    raw = _build_mime(to=to, cc=cc, subject=subject, text=text, html=html, in_reply_to=in_reply_to)

    destinations = [_bare(a) for a in list(to) + list(cc)]
    kwargs: Dict[str, Union[str, Dict, List]] = {
        "Source": settings.AGENT_EMAIL,
        "Destinations": destinations,
        "RawMessage": {"Data": raw},
    }
    if settings.SES_CONFIGURATION_SET:
        kwargs["ConfigurationSetName"] = settings.SES_CONFIGURATION_SET

    try:
        resp = _ses.send_raw_email(**kwargs)
    except (BotoCoreError, ClientError):
        log.exception("[ses] send failed to=%s subject=%r", to, subject)
        raise

    mid = (resp or {}).get("MessageId", "")
    log.info("[ses] send ok from=%s to=%s cc=%s subject=%r message_id=%s", settings.AGENT_EMAIL, to, cc, subject, mid)
    return mid
