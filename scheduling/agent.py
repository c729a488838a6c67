# scheduling/agent.py
"""
Tool-calling loop that drives one inbound email to a reply.

The model sees the email, the stored thread state and the tool inventory;
every tool call it makes is executed through `tools.execute_tool` and the
JSON result is fed back until it answers without calling a tool.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import llm_client, mailbox, store
from .config import settings
from .tools import TOOL_SPECS, AgentContext, execute_tool

log = logging.getLogger(__name__)


@dataclass
class AgentRun:
    rounds: int = 0
    tool_calls: List[str] = field(default_factory=list)
    final_text: str = ""
    replied: bool = False


def build_system_prompt(now: datetime) -> str:
    owner = settings.OWNER_NAME
    today = now.strftime("%A, %B %d, %Y")
    return f"""You are EA, an executive assistant scheduling meetings on behalf of {owner}.
Your email address is {settings.AGENT_EMAIL}. You are CC'd or added to threads when someone needs time with {owner}.

Today is {today}.

YOUR JOB:
1. Work out who wants to meet, for how long, and about what. The person to schedule with is whoever is on To/CC
   that is neither {owner} nor your own address; never ask for an address that is already on the thread.
2. Call get_preferences and follow any customRules stored there.
3. Call get_availability for the next 5-10 business days (or the range the request implies).
4. Reply with send_email offering 3-5 concrete options with day, date, time and timezone.
5. Record them with update_thread_state: state "awaiting_confirmation" plus the proposedSlots.
6. When the requester confirms one specific time, call book_meeting, then send a confirmation.
7. Ask a clarifying question only when the information truly cannot be inferred.

RULES:
- Every run ends with send_email. Never finish without a reply.
- Never propose times outside working hours; leave the buffer minutes before and after existing events.
- Keep the subject starting with "Re:" so the reply stays in the thread.
- If the thread is already "booked" and nobody asks for a change, say the meeting is already scheduled.
- Rescheduling: call list_events over the old meeting's dates (or find_booked_thread for the attendee) and pass
  the event id as existingEventId to book_meeting. Never guess an event id.
- Cancelling: call list_events to find the event by date and attendee, then cancel_meeting, then confirm by email.
- "Remember X" / "always do Y" from {owner}: read customRules, then set_preference key="customRules" with every
  prior rule plus the new one, one per line, and apply it right away.

Sign emails as "EA, on behalf of {owner}". Be warm, professional and brief."""


def build_user_message(ctx: AgentContext, history: Optional[List[Dict[str, str]]] = None) -> str:
    email = ctx.email
    thread = ctx.thread
    lines = [f"From: {email.from_addr.formatted()}"]
    if email.to:
        lines.append("To: " + ", ".join(a.formatted() for a in email.to))
    if email.cc:
        lines.append("CC: " + ", ".join(a.formatted() for a in email.cc))
    lines.append(f"Subject: {email.subject}")
    lines.append(f"Thread state: {thread.state.value if thread else 'new'}")
    if thread and thread.proposed_slots:
        lines.append("Previously proposed slots: " + json.dumps([s.to_dict() for s in thread.proposed_slots]))
    if thread and thread.calendar_event_id:
        lines.append(f"Booked event id: {thread.calendar_event_id}")
    lines.append("")
    lines.append("Email body:")
    lines.append(email.text or email.html or "(no body)")
    if history:
        lines.append("")
        lines.append("Prior messages in this thread (oldest first):")
        for m in history:
            lines.append("---")
            lines.append(f"From: {m['from']}")
            if m.get("to"):
                lines.append(f"To: {m['to']}")
            if m.get("cc"):
                lines.append(f"CC: {m['cc']}")
            if m.get("subject"):
                lines.append(f"Subject: {m['subject']}")
            lines.append(f"Body: {m.get('body') or '(no preview)'}")
    return "\n".join(lines)


def _assistant_entry(msg: Any) -> Dict[str, Any]:
    entry: Dict[str, Any] = {"role": "assistant", "content": msg.content or ""}
    if msg.tool_calls:
        entry["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {"name": tc.function.name, "arguments": tc.function.arguments or "{}"},
            }
            for tc in msg.tool_calls
        ]
    return entry


def _run_tool(name: str, raw_args: Optional[str], ctx: AgentContext) -> Any:
    try:
        args = json.loads(raw_args or "{}")
        if not isinstance(args, dict):
            return {"error": "tool arguments must be a JSON object"}
    except ValueError as e:
        return {"error": f"invalid JSON arguments: {e}"}
    try:
        return execute_tool(name, args, ctx)
    except Exception as e:
        log.exception("[agent] tool %s failed thread=%s", name, ctx.email.thread_id)
        return {"error": str(e) or e.__class__.__name__}


def run_agent(ctx: AgentContext, *, now: Optional[datetime] = None, max_rounds: Optional[int] = None) -> AgentRun:
    now = now or datetime.now(store.get_preferences().tzinfo())
    limit = max_rounds if max_rounds is not None else settings.AGENT_MAX_ROUNDS
    messages: List[Dict[str, Any]] = [
        {"role": "system", "content": build_system_prompt(now)},
        {"role": "user", "content": build_user_message(ctx, mailbox.fetch_thread_history(ctx.email))},
    ]
    run = AgentRun()

    while run.rounds < limit:
        run.rounds += 1
        msg = llm_client.chat_with_tools(messages, TOOL_SPECS)
        messages.append(_assistant_entry(msg))

        if not msg.tool_calls:
            run.final_text = msg.content or ""
            break

        for tc in msg.tool_calls:
            name = tc.function.name
            log.info("[agent] thread=%s round=%d tool=%s", ctx.email.thread_id, run.rounds, name)
            result = _run_tool(name, tc.function.arguments, ctx)
            run.tool_calls.append(name)
            if name == "send_email" and not (isinstance(result, dict) and "error" in result):
                run.replied = True
            messages.append({"role": "tool", "tool_call_id": tc.id, "content": json.dumps(result, default=str)})

            if name in ("book_meeting", "cancel_meeting", "update_thread_state"):
                ctx.thread = store.get_thread(ctx.email.thread_id) or ctx.thread
    else:
        log.warning("[agent] thread=%s stopped after %d rounds", ctx.email.thread_id, limit)

    if not run.replied:
        log.warning("[agent] thread=%s finished without sending a reply", ctx.email.thread_id)
    log.info("[agent] thread=%s done rounds=%d tools=%s", ctx.email.thread_id, run.rounds, run.tool_calls)
    return run
