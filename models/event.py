"""Local calendar event table."""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from datetime_utils import ensure_utc, parse_rfc3339, to_rfc3339_utc, utc_now


def _new_id() -> str:
    return str(uuid.uuid4())


class CalendarEvent(SQLModel, table=True):
    __tablename__ = "calendar_events"

    id: str = Field(default_factory=_new_id, primary_key=True)
    title: str
    description: str = ""
    start: datetime = Field(index=True)
    end: Optional[datetime] = None
    location: str = ""
    created_by: str = ""
    is_special: bool = False
    attached_media_refs: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    remote_event_id: Optional[str] = Field(default=None, index=True)
    last_synced_at: Optional[datetime] = None
    updated_at: Optional[datetime] = Field(default_factory=utc_now)

    @property
    def is_linked(self) -> bool:
        return self.remote_event_id is not None

    def to_document(self) -> Dict[str, Any]:
        """Document shape stored in the remote ``calendarEvents`` collection."""

        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "date": to_rfc3339_utc(self.start),
            "endDate": to_rfc3339_utc(self.end),
            "location": self.location,
            "createdBy": self.created_by,
            "isSpecial": self.is_special,
            "photoURLs": list(self.attached_media_refs or []),
            "googleCalendarId": self.remote_event_id,
            "lastSyncedAt": to_rfc3339_utc(self.last_synced_at),
            "updatedAt": to_rfc3339_utc(self.updated_at),
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "CalendarEvent":
        start = parse_rfc3339(data.get("date"))
        if not data.get("title") or start is None:
            raise ValueError("event document needs a title and a date")
        refs = data.get("photoURLs") or []
        if not isinstance(refs, list):
            raise ValueError("photoURLs must be a list")
        return cls(
            id=data.get("id") or _new_id(),
            title=data["title"],
            description=data.get("description") or "",
            start=start,
            end=parse_rfc3339(data.get("endDate")),
            location=data.get("location") or "",
            created_by=data.get("createdBy") or "",
            is_special=bool(data.get("isSpecial")),
            attached_media_refs=[str(ref) for ref in refs],
            remote_event_id=data.get("googleCalendarId") or None,
            last_synced_at=parse_rfc3339(data.get("lastSyncedAt")),
            updated_at=parse_rfc3339(data.get("updatedAt")),
        )

    def normalized(self) -> "CalendarEvent":
        """SQLite hands datetimes back naive; re-attach UTC."""

        self.start = ensure_utc(self.start)
        self.end = ensure_utc(self.end)
        self.last_synced_at = ensure_utc(self.last_synced_at)
        self.updated_at = ensure_utc(self.updated_at)
        return self


__all__ = ["CalendarEvent"]
