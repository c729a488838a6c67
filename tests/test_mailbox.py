import httpx
import pytest

from scheduling import mailbox

THREAD = {
    "thread_id": "thread-1",
    "messages": [
        {
            "message_id": "<msg-1@mail.example>",
            "from": "Olivia Owner <owner@corp.example>",
            "to": ["Gary Guest <guest@partner.example>"],
            "subject": "Intro call",
            "text": "Could you two find 30 minutes next week?",
            "timestamp": "2025-03-03T17:00:00Z",
        },
        {
            "message_id": "<msg-0@mail.example>",
            "from": "Gary Guest <guest@partner.example>",
            "to": ["owner@corp.example"],
            "cc": [{"email": "ea@agentmail.to", "name": "EA"}],
            "subject": "Intro call",
            "preview": "Happy to connect!",
            "timestamp": "2025-03-02T09:00:00Z",
        },
        {
            "message_id": "<msg-00@mail.example>",
            "from": "owner@corp.example",
            "subject": "Intro call",
            "text": "x" * 5000,
            "timestamp": "2025-03-01T09:00:00Z",
        },
    ],
}


def _client(handler):
    return httpx.Client(base_url="https://mail.example/v0", transport=httpx.MockTransport(handler))


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(mailbox.settings, "AGENTMAIL_API_KEY", "am-key")
    monkeypatch.setattr(mailbox.settings, "THREAD_HISTORY_LIMIT", 10)
    monkeypatch.setattr(mailbox.settings, "AGENTMAIL_INBOX_ID", "inbox-1")


def test_history_excludes_current_message_oldest_first(configured, incoming_email):
    seen = []

    def handler(request):
        seen.append(request.url.path)
        return httpx.Response(200, json=THREAD)

    history = mailbox.fetch_thread_history(incoming_email, client=_client(handler))

    assert seen == ["/v0/inboxes/inbox-1/threads/thread-1"]
    assert [m["message_id"] for m in history] == ["<msg-00@mail.example>", "<msg-0@mail.example>"]
    assert history[1]["cc"] == "EA <ea@agentmail.to>"
    assert history[1]["body"] == "Happy to connect!"
    assert len(history[0]["body"]) <= 1501


def test_history_limit_keeps_latest(configured, incoming_email):
    history = mailbox.fetch_thread_history(
        incoming_email, client=_client(lambda r: httpx.Response(200, json=THREAD)), limit=1
    )
    assert [m["message_id"] for m in history] == ["<msg-0@mail.example>"]


def test_history_failure_is_skipped(configured, incoming_email, caplog):
    assert mailbox.fetch_thread_history(
        incoming_email, client=_client(lambda r: httpx.Response(500, text="upstream down"))
    ) == []

    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    assert mailbox.fetch_thread_history(incoming_email, client=_client(refuse)) == []
    assert "history fetch failed" in caplog.text


def test_history_disabled_without_api_key(monkeypatch, incoming_email):
    monkeypatch.setattr(mailbox.settings, "AGENTMAIL_API_KEY", "")
    assert mailbox.fetch_thread_history(incoming_email) == []
