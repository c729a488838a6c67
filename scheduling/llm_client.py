# scheduling/llm_client.py
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from openai import APIConnectionError, APIStatusError, OpenAI, RateLimitError

from .config import settings

log = logging.getLogger(__name__)

_client: Optional[OpenAI] = None


def _get_client() -> OpenAI:
    global _client
    if _client is None:
        _client = OpenAI()  # respects OPENAI_API_KEY/BASE_URL etc.
    return _client


def _retryable(e: Exception) -> bool:
    if isinstance(e, (RateLimitError, APIConnectionError)):
        return True
    if isinstance(e, APIStatusError):
        status = getattr(e, "status_code", None)
        return bool(status and status >= 500)
    return False


def chat_with_tools(
    messages: List[Dict[str, Any]],
    tools: List[Dict[str, Any]],
    *,
    model: Optional[str] = None,
    max_output_tokens: int = 1500,
    retries: int = 2,
    backoff_start: float = 0.4,
):
    """
    One chat-completions request with tool definitions attached; returns the
    assistant message. Rate limits, connection errors and 5xx are retried with
    backoff, client errors are raised straight away.
    """
    mdl = (model or settings.LLM_MODEL).strip()
    attempt = 0
    backoff = backoff_start
    while True:
        try:
            chat = _get_client().chat.completions.create(
                model=mdl,
                messages=messages,
                tools=tools,
                tool_choice="auto",
                max_completion_tokens=max_output_tokens,
            )
            choice = chat.choices[0]
            log.debug("[llm] finish=%s tool_calls=%d", choice.finish_reason, len(choice.message.tool_calls or []))
            return choice.message
        except (RateLimitError, APIConnectionError, APIStatusError) as e:
            attempt += 1
            if not _retryable(e) or attempt > retries:
                log.error("[llm] request failed model=%s attempt=%d: %s", mdl, attempt, e)
                raise
            log.warning("[llm] transient failure (attempt %d/%d): %s", attempt, retries, e)
            time.sleep(backoff)
            backoff *= 1.7
