# scheduling/config.py
from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path


def _app_root() -> Path:
    """
    Resolve the project root (directory that contains .env, main.py, data/).
    Default: one level up from this file. Override with EA_APP_ROOT if needed.
    """
    override = os.getenv("EA_APP_ROOT")
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).resolve().parents[1]


APP_ROOT = _app_root()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    ENV: str = os.getenv("ENV", "prod")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Owner / agent identity
    OWNER_NAME: str = os.getenv("OWNER_NAME", "your owner")
    OWNER_TIMEZONE: str = os.getenv("OWNER_TIMEZONE", "America/Los_Angeles")
    AGENT_EMAIL: str = os.getenv("AGENT_EMAIL", "ea@agentmail.to")

    # Ingress
    WEBHOOK_SECRET: str = os.getenv("WEBHOOK_SECRET", "")

    # Mailbox provider (thread history only)
    AGENTMAIL_API_KEY: str = os.getenv("AGENTMAIL_API_KEY", "")
    AGENTMAIL_BASE_URL: str = os.getenv("AGENTMAIL_BASE_URL", "https://api.agentmail.to/v0").rstrip("/")
    AGENTMAIL_INBOX_ID: str = os.getenv("AGENTMAIL_INBOX_ID", "")
    THREAD_HISTORY_LIMIT: int = _int_env("THREAD_HISTORY_LIMIT", 10)

    # Embedded store
    EA_DB_PATH: str = os.getenv("EA_DB_PATH", str(APP_ROOT / "data" / "ea-agent.db"))

    # Google Calendar: OAuth user credentials first, service account second
    GOOGLE_CALENDAR_ID: str = os.getenv("GOOGLE_CALENDAR_ID", "primary")
    GOOGLE_CLIENT_ID: str = os.getenv("GOOGLE_CLIENT_ID", "")
    GOOGLE_CLIENT_SECRET: str = os.getenv("GOOGLE_CLIENT_SECRET", "")
    GOOGLE_REFRESH_TOKEN: str = os.getenv("GOOGLE_REFRESH_TOKEN", "")
    GOOGLE_REDIRECT_URI: str = os.getenv("GOOGLE_REDIRECT_URI", "http://localhost:3001/oauth/callback")
    GOOGLE_SERVICE_ACCOUNT_JSON_PATH: str = os.getenv(
        "GOOGLE_SERVICE_ACCOUNT_JSON_PATH",
        str(APP_ROOT / "secrets" / "ea-agent-sa.json"),
    )
    GSUITE_IMPERSONATED_USER: str = os.getenv("GSUITE_IMPERSONATED_USER", "")

    # Outbound mail (SES)
    SES_REGION: str = os.getenv("SES_REGION", os.getenv("AWS_REGION", "us-east-1"))
    SES_CONFIGURATION_SET: str = os.getenv("SES_CONFIGURATION_SET", "")

    # Tool-calling loop
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-4o-mini").strip()
    AGENT_MAX_ROUNDS: int = _int_env("AGENT_MAX_ROUNDS", 12)


settings = Settings()
