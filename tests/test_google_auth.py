import json
from datetime import datetime, timedelta, timezone

import pytest
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials

from core.errors import ConfigurationMissing, NotAuthenticated
from services.google_auth import GoogleAuth


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
SCOPES = ["https://www.googleapis.com/auth/calendar"]


def _credentials(expires_in, refresh_token="refresh-1"):
    creds = Credentials(
        token="access-1",
        refresh_token=refresh_token,
        token_uri="https://oauth2.googleapis.com/token",
        client_id="client",
        client_secret="secret",
        scopes=SCOPES,
    )
    # google-auth keeps expiry as naive UTC
    creds.expiry = (NOW + expires_in).replace(tzinfo=None)
    return creds


@pytest.fixture
def auth(tmp_path):
    return GoogleAuth(tmp_path / "secrets" / "client_secret.json", tmp_path / "token.json", SCOPES, clock=lambda: NOW)


def test_not_signed_in_without_token(auth):
    assert not auth.is_signed_in
    with pytest.raises(NotAuthenticated):
        auth.ensure_fresh()


def test_sign_in_requires_client_configuration(auth):
    with pytest.raises(ConfigurationMissing):
        auth.sign_in()


def test_fresh_token_is_not_refreshed(auth, monkeypatch):
    calls = []
    monkeypatch.setattr(Credentials, "refresh", lambda self, request: calls.append(request))
    auth.creds = _credentials(timedelta(minutes=30))

    assert auth.ensure_fresh() is auth.creds
    assert calls == []


def test_token_near_expiry_is_refreshed_and_persisted(auth, monkeypatch):
    def refresh(self, request):
        self.token = "access-2"
        self.expiry = (NOW + timedelta(hours=1)).replace(tzinfo=None)

    monkeypatch.setattr(Credentials, "refresh", refresh)
    auth.creds = _credentials(timedelta(minutes=4))

    creds = auth.ensure_fresh()

    assert creds.token == "access-2"
    stored = json.loads(auth.token_path.read_text(encoding="utf-8"))
    assert stored["token"] == "access-2"
    assert not auth.token_path.with_suffix(".tmp").exists()


def test_revoked_refresh_token_signs_out(auth, monkeypatch):
    def refresh(self, request):
        raise RefreshError("invalid_grant")

    monkeypatch.setattr(Credentials, "refresh", refresh)
    auth.token_path.write_text(_credentials(timedelta(minutes=1)).to_json(), encoding="utf-8")

    with pytest.raises(NotAuthenticated):
        auth.ensure_fresh()
    assert auth.creds is None
    assert not auth.token_path.exists()


def test_stored_token_is_loaded(auth):
    auth.token_path.write_text(_credentials(timedelta(hours=1)).to_json(), encoding="utf-8")

    assert auth.is_signed_in
    assert auth.get_credentials().refresh_token == "refresh-1"


def test_sign_out_removes_token(auth):
    auth.token_path.write_text(_credentials(timedelta(hours=1)).to_json(), encoding="utf-8")
    assert auth.is_signed_in

    auth.sign_out()

    assert not auth.token_path.exists()
    assert not auth.is_signed_in
