from __future__ import annotations

import json
import os
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from core.errors import ConfigurationMissing, NetworkUnavailable, NotAuthenticated
from core.log import get_logger
from core.settings import CALENDAR_SYNC, CLIENT_SECRET_PATH, TOKEN_PATH
from datetime_utils import ensure_utc, utc_now


class GoogleAuth:
    """OAuth credentials for the calendar service.

    Sign-in is always user triggered (:meth:`sign_in`); every other caller goes
    through :meth:`ensure_fresh`, which refreshes the access token when it is
    about to expire and never opens a browser.
    """

    def __init__(
        self,
        secrets_path: str | Path = CLIENT_SECRET_PATH,
        token_path: str | Path = TOKEN_PATH,
        scopes: Iterable[str] = CALENDAR_SYNC.scopes,
        *,
        refresh_margin_sec: int = CALENDAR_SYNC.token_refresh_margin_sec,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.secrets_path = Path(secrets_path)
        self.token_path = Path(token_path)
        self.scopes = list(scopes)
        self.refresh_margin = timedelta(seconds=refresh_margin_sec)
        self._clock = clock
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        self.creds: Optional[Credentials] = None
        self._lock = threading.Lock()
        self._listeners: List[Callable[[], None]] = []
        self.logger = get_logger("auth")

    # ----- state -----
    @property
    def is_signed_in(self) -> bool:
        return self.load() is not None

    def get_credentials(self) -> Optional[Credentials]:
        return self.creds

    def load(self) -> Optional[Credentials]:
        """Return cached credentials, reading ``token.json`` on first use."""

        if self.creds is not None:
            return self.creds
        if not self.token_path.exists():
            return None
        try:
            creds = Credentials.from_authorized_user_file(str(self.token_path), self.scopes)
        except (ValueError, json.JSONDecodeError) as exc:
            self.logger.warning("Failed to load %s: %s; sign-in required", self.token_path.name, exc)
            self.reset_credentials()
            return None
        if not self._has_required_scopes(creds):
            self.logger.warning("Stored token is missing required scopes; sign-in required")
            self.reset_credentials()
            return None
        self.creds = creds
        return creds

    def on_signed_in(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    # ----- flows -----
    def sign_in(self) -> Credentials:
        if not self.secrets_path.exists():
            raise ConfigurationMissing(
                f"{self.secrets_path} not found. Create a Desktop OAuth client in Google Cloud "
                "and download its JSON."
            )
        flow = InstalledAppFlow.from_client_secrets_file(str(self.secrets_path), self.scopes)
        self.logger.info("Running OAuth consent flow (local server)")
        creds = flow.run_local_server(
            port=0,
            access_type="offline",
            prompt="consent",
            include_granted_scopes="true",
        )
        if not creds or not self._has_required_scopes(creds):
            raise NotAuthenticated("Google sign-in did not grant the calendar scope")
        with self._lock:
            self.creds = creds
            self._persist_credentials(creds)
        self.logger.info("Signed in; scopes: %s", ", ".join(sorted(set(creds.scopes or []))))
        for callback in list(self._listeners):
            try:
                callback()
            except Exception:
                self.logger.exception("Sign-in listener failed")
        return creds

    def ensure_fresh(self) -> Credentials:
        """Return valid credentials, refreshing them within the expiry margin."""

        with self._lock:
            creds = self.load()
            if creds is None:
                raise NotAuthenticated("Please sign in to Google Calendar first")
            if not self._needs_refresh(creds):
                return creds
            if not creds.refresh_token:
                self.reset_credentials()
                raise NotAuthenticated("Google session expired; sign in again")
            try:
                creds.refresh(Request())
            except RefreshError as exc:
                self.logger.warning("Token refresh failed: %s; sign-in required", exc)
                self.reset_credentials()
                raise NotAuthenticated("Google session was revoked; sign in again") from exc
            except TransportError as exc:
                raise NetworkUnavailable(f"token refresh failed: {exc}") from exc
            self._persist_credentials(creds)
            self.logger.info("Access token refreshed")
            return creds

    def sign_out(self) -> None:
        with self._lock:
            self.reset_credentials()
        self.logger.info("Signed out of Google Calendar")

    def reset_credentials(self) -> None:
        self.creds = None
        try:
            if self.token_path.exists():
                self.token_path.unlink()
                self.logger.info("Removed cached Google token")
        except OSError as exc:
            self.logger.warning("Failed to remove cached token: %s", exc)

    # ----- helpers -----
    def _needs_refresh(self, creds: Credentials) -> bool:
        expiry = ensure_utc(creds.expiry)
        if expiry is None:
            return not creds.token
        return expiry - self._clock() <= self.refresh_margin

    def _persist_credentials(self, creds: Credentials) -> None:
        data = creds.to_json()
        tmp_path = self.token_path.with_suffix(".tmp")
        try:
            tmp_path.write_text(data, encoding="utf-8")
            os.replace(tmp_path, self.token_path)
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass

    def _has_required_scopes(self, creds: Credentials) -> bool:
        current = set(creds.scopes or [])
        return all(scope in current for scope in self.scopes)


__all__ = ["GoogleAuth"]
