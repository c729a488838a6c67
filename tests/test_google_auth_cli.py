from types import SimpleNamespace

import pytest

import google_auth_cli
from scheduling.errors import ValidationError


class FakeFlow:
    def __init__(self, refresh_token="1//refresh"):
        self.refresh_token = refresh_token
        self.auth_kwargs = None
        self.code = None
        self.credentials = None

    def authorization_url(self, **kwargs):
        self.auth_kwargs = kwargs
        return "https://accounts.example/auth?client_id=abc", "state-1"

    def fetch_token(self, code):
        self.code = code
        self.credentials = SimpleNamespace(refresh_token=self.refresh_token)


def test_exchanges_pasted_code_for_refresh_token(capsys):
    flow = FakeFlow()
    token = google_auth_cli.run([], ask=lambda _p: " 4/abc \n", flow_factory=lambda _r: flow)

    assert token == "1//refresh"
    assert flow.code == "4/abc"
    assert flow.auth_kwargs == {"access_type": "offline", "prompt": "consent"}
    assert "https://accounts.example/auth?client_id=abc" in capsys.readouterr().out


def test_accepts_full_redirect_url():
    assert google_auth_cli.extract_code("http://localhost:3001/oauth/callback?code=4%2Fxyz&scope=cal") == "4/xyz"


@pytest.mark.parametrize("answer", ["", "   ", "http://localhost:3001/oauth/callback?error=access_denied"])
def test_rejects_missing_code(answer):
    with pytest.raises(ValidationError):
        google_auth_cli.extract_code(answer)


def test_missing_refresh_token_is_an_error():
    with pytest.raises(ValidationError):
        google_auth_cli.run([], ask=lambda _p: "4/abc", flow_factory=lambda _r: FakeFlow(refresh_token=None))


def test_flow_requires_client_credentials(monkeypatch):
    monkeypatch.setattr(google_auth_cli.settings, "GOOGLE_CLIENT_ID", "")
    with pytest.raises(ValidationError):
        google_auth_cli.build_flow()


def test_flow_uses_configured_redirect(monkeypatch):
    monkeypatch.setattr(google_auth_cli.settings, "GOOGLE_CLIENT_ID", "cid.apps.googleusercontent.com")
    monkeypatch.setattr(google_auth_cli.settings, "GOOGLE_CLIENT_SECRET", "shh")
    flow = google_auth_cli.build_flow("http://localhost:9999/cb")
    assert flow.redirect_uri == "http://localhost:9999/cb"
    assert flow.client_config["client_id"] == "cid.apps.googleusercontent.com"
