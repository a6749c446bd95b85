from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from google.auth.exceptions import TransportError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from core.errors import ApiError, NetworkUnavailable, TokenExpired
from core.settings import CALENDAR_SYNC
from datetime_utils import ensure_utc, to_rfc3339_utc
from models.event import CalendarEvent


EVENT_ID_PROPERTY = "ourappEventId"


def _api_error(exc: HttpError) -> ApiError:
    status = int(getattr(getattr(exc, "resp", None), "status", 0) or 0)
    message = getattr(exc, "reason", "") or str(exc)
    if status == 410:
        return TokenExpired(message)
    return ApiError(status, message)


def build_event_body(event: CalendarEvent) -> Dict[str, Any]:
    start = ensure_utc(event.start)
    end = ensure_utc(event.end) or start + timedelta(hours=1)
    return {
        "summary": event.title,
        "description": event.description or "",
        "location": event.location or "",
        "start": {"dateTime": to_rfc3339_utc(start)},
        "end": {"dateTime": to_rfc3339_utc(end)},
        "extendedProperties": {"private": {EVENT_ID_PROPERTY: event.id}},
    }


def event_start_date(item: Dict[str, Any]) -> Optional[str]:
    """``YYYY-MM-DD`` of a remote event's start (all-day or timed)."""

    start = item.get("start") or {}
    value = start.get("date") or start.get("dateTime")
    if not value:
        return None
    return str(value)[:10]


class GoogleCalendar:
    """Thin facade over the Calendar v3 API.

    Every call refreshes credentials through ``auth.ensure_fresh()`` first and
    translates client errors into the ``core.errors`` taxonomy.
    """

    def __init__(self, auth, service: Any = None, *, page_size: int = CALENDAR_SYNC.page_size):
        self.auth = auth
        self.service = service
        self.page_size = page_size
        self._service_creds = None

    def _svc(self) -> Any:
        creds = self.auth.ensure_fresh() if self.auth is not None else None
        # a new sign-in hands out a new credentials object
        if self.service is None or (self._service_creds is not None and creds is not self._service_creds):
            self.service = build("calendar", "v3", credentials=creds, cache_discovery=False)
            self._service_creds = creds
        return self.service

    @staticmethod
    def _execute(request) -> Any:
        try:
            return request.execute()
        except HttpError as exc:
            raise _api_error(exc) from exc
        except (TransportError, OSError) as exc:
            raise NetworkUnavailable(str(exc)) from exc

    # ----- calendars -----
    def list_calendars(self) -> List[Dict[str, str]]:
        calendars: List[Dict[str, str]] = []
        page_token: Optional[str] = None
        while True:
            params: Dict[str, Any] = {}
            if page_token:
                params["pageToken"] = page_token
            response = self._execute(self._svc().calendarList().list(**params))
            for item in response.get("items", []):
                calendars.append({"id": item["id"], "name": item.get("summary", "")})
            page_token = response.get("nextPageToken")
            if not page_token:
                return calendars

    def create_calendar(self, name: str) -> str:
        created = self._execute(self._svc().calendars().insert(body={"summary": name}))
        return created["id"]

    # ----- events -----
    def list_events(
        self,
        calendar_id: str,
        *,
        sync_token: Optional[str] = None,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
        page_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """One page of events: ``{items, nextPageToken?, nextSyncToken?}``.

        With ``sync_token`` the request carries no time range.
        """

        params: Dict[str, Any] = dict(calendarId=calendar_id, singleEvents=True, maxResults=self.page_size)
        if sync_token:
            params["syncToken"] = sync_token
        else:
            if time_min is not None:
                params["timeMin"] = to_rfc3339_utc(time_min)
            if time_max is not None:
                params["timeMax"] = to_rfc3339_utc(time_max)
        if page_token:
            params["pageToken"] = page_token
        response = self._execute(self._svc().events().list(**params))
        return {
            "items": response.get("items", []),
            "nextPageToken": response.get("nextPageToken"),
            "nextSyncToken": response.get("nextSyncToken"),
        }

    def create_event(self, calendar_id: str, body: Dict[str, Any]) -> str:
        created = self._execute(self._svc().events().insert(calendarId=calendar_id, body=body))
        return created["id"]

    def update_event(self, calendar_id: str, event_id: str, body: Dict[str, Any]) -> None:
        self._execute(self._svc().events().patch(calendarId=calendar_id, eventId=event_id, body=body))

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        try:
            self._execute(self._svc().events().delete(calendarId=calendar_id, eventId=event_id))
        except ApiError as exc:
            if exc.status in (404, 410):
                return
            raise


__all__ = ["EVENT_ID_PROPERTY", "GoogleCalendar", "build_event_body", "event_start_date"]
