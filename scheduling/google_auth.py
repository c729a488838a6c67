# scheduling/google_auth.py
from __future__ import annotations

import logging
import os
from typing import Iterable, Optional

from google.oauth2 import service_account
from google.oauth2.credentials import Credentials

from .config import APP_ROOT, settings

log = logging.getLogger(__name__)

_TOKEN_URI = "https://oauth2.googleapis.com/token"

CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]


def _resolve_path(p: str) -> str:
    """
    Absolute paths are used verbatim; relative ones resolve under APP_ROOT.
    A missing '.json' suffix is tolerated.
    """
    p = (p or "").strip()
    if not p:
        return p
    path = p if os.path.isabs(p) else os.path.join(str(APP_ROOT), p)
    if not os.path.exists(path) and not path.endswith(".json") and os.path.exists(path + ".json"):
        return path + ".json"
    return path


def _user_credentials(scopes: Iterable[str]) -> Optional[Credentials]:
    if not (settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET and settings.GOOGLE_REFRESH_TOKEN):
        return None
    return Credentials(
        token=None,
        refresh_token=settings.GOOGLE_REFRESH_TOKEN,
        client_id=settings.GOOGLE_CLIENT_ID,
        client_secret=settings.GOOGLE_CLIENT_SECRET,
        token_uri=_TOKEN_URI,
        scopes=list(scopes),
    )


def load_credentials(*, scopes: Iterable[str], subject: Optional[str] = None):
    """
    OAuth user credentials (client id/secret + refresh token) when configured,
    otherwise a service account from GOOGLE_SERVICE_ACCOUNT_JSON_PATH, optionally
    impersonating `subject` via domain-wide delegation.
    """
    creds = _user_credentials(scopes)
    if creds is not None:
        log.debug("[google] using OAuth refresh-token credentials")
        return creds

    path = _resolve_path(settings.GOOGLE_SERVICE_ACCOUNT_JSON_PATH)
    if not path or not os.path.exists(path):
        raise FileNotFoundError(
            "No Google credentials: set GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET/GOOGLE_REFRESH_TOKEN "
            f"or provide a service account JSON (tried {path!r})"
        )
    sa = service_account.Credentials.from_service_account_file(path, scopes=list(scopes))
    subject = subject if subject is not None else (settings.GSUITE_IMPERSONATED_USER or None)
    if subject:
        sa = sa.with_subject(subject)
    log.debug("[google] using service account %s (subject=%s)", path, subject or "-")
    return sa
