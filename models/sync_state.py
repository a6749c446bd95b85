"""Calendar sync cursor shared by every sync pass."""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional

from datetime_utils import parse_rfc3339, to_rfc3339_utc


@dataclass(frozen=True)
class SyncCursorState:
    sync_token: Optional[str] = None
    remote_calendar_id: Optional[str] = None
    last_sync_date: Optional[datetime] = None

    def with_changes(self, **changes: Any) -> "SyncCursorState":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "syncToken": self.sync_token,
            "remoteCalendarId": self.remote_calendar_id,
            "lastSyncDate": to_rfc3339_utc(self.last_sync_date),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncCursorState":
        return cls(
            sync_token=data.get("syncToken") or None,
            remote_calendar_id=data.get("remoteCalendarId") or None,
            last_sync_date=parse_rfc3339(data.get("lastSyncDate")),
        )


__all__ = ["SyncCursorState"]
