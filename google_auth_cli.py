# google_auth_cli.py
"""
One-time helper that obtains a Google OAuth refresh token for the calendar.

    python google_auth_cli.py

Open the printed URL, authorize, then paste back either the `code` value or
the whole redirect URL. The refresh token is printed as a .env line.
"""
from __future__ import annotations

import argparse
import logging
from typing import Callable, List, Optional
from urllib.parse import parse_qs, urlparse

from dotenv import find_dotenv, load_dotenv

load_dotenv(find_dotenv(usecwd=True))

from google_auth_oauthlib.flow import Flow

from scheduling.config import settings
from scheduling.errors import ValidationError
from scheduling.google_auth import CALENDAR_SCOPES

log = logging.getLogger("ea_agent.google_auth")

_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
_TOKEN_URI = "https://oauth2.googleapis.com/token"


def build_flow(redirect_uri: Optional[str] = None) -> Flow:
    if not (settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET):
        raise ValidationError("set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET first")
    redirect = redirect_uri or settings.GOOGLE_REDIRECT_URI
    client_config = {
        "web": {
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "auth_uri": _AUTH_URI,
            "token_uri": _TOKEN_URI,
            "redirect_uris": [redirect],
        }
    }
    return Flow.from_client_config(client_config, scopes=CALENDAR_SCOPES, redirect_uri=redirect)


def extract_code(answer: str) -> str:
    """Accept the bare code or the full redirect URL it came back on."""
    answer = (answer or "").strip()
    if answer.startswith(("http://", "https://")):
        codes = parse_qs(urlparse(answer).query).get("code")
        answer = codes[0] if codes else ""
    if not answer:
        raise ValidationError("no authorization code given")
    return answer


def run(
    argv: Optional[List[str]] = None,
    *,
    ask: Callable[[str], str] = input,
    flow_factory: Callable[[Optional[str]], Flow] = build_flow,
) -> str:
    ap = argparse.ArgumentParser(description="Obtain a Google Calendar refresh token")
    ap.add_argument("--redirect-uri", default=None, help="override GOOGLE_REDIRECT_URI")
    args = ap.parse_args(argv)

    flow = flow_factory(args.redirect_uri)
    # prompt=consent makes Google return a refresh token even on re-authorization
    url, _state = flow.authorization_url(access_type="offline", prompt="consent")
    print("\n1. Open this URL in your browser:\n")
    print("   " + url + "\n")
    print('2. Authorize the app, then copy the "code" from the redirect URL.\n')

    flow.fetch_token(code=extract_code(ask("Paste the authorization code here: ")))
    refresh_token = getattr(flow.credentials, "refresh_token", None)
    if not refresh_token:
        raise ValidationError("Google did not return a refresh token; revoke the app's access and retry")
    log.info("[google] refresh token obtained for client %s", settings.GOOGLE_CLIENT_ID)
    return refresh_token


def main() -> None:
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        token = run()
    except ValidationError as e:
        raise SystemExit(f"error: {e}")
    print("\nAdd the following to your .env file:\n")
    print(f"GOOGLE_REFRESH_TOKEN={token}")
    print("\nKeep this token secret; it grants full calendar access.")


if __name__ == "__main__":
    main()
