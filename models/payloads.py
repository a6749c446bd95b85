"""Typed payloads for queued remote-store operations.

Every queued record carries an operation type tag plus a JSON payload.  The tag
selects one of the dataclasses below, so a payload is encoded once at enqueue
time and decoded back into the same type when the queue replays it.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union

from core.errors import InvalidLocalData
from datetime_utils import parse_rfc3339, to_rfc3339_utc
from models.event import CalendarEvent


class OperationType(str, Enum):
    UPLOAD_PHOTO = "uploadPhoto"
    DELETE_PHOTO = "deletePhoto"
    ADD_EVENT = "addEvent"
    UPDATE_EVENT = "updateEvent"
    DELETE_EVENT = "deleteEvent"
    TOGGLE_FAVORITE = "toggleFavorite"
    MOVE_TO_FOLDER = "moveToFolder"


@dataclass(frozen=True)
class PhotoUpload:
    op_type: ClassVar[OperationType] = OperationType.UPLOAD_PHOTO

    image_file_path: str
    uploaded_by: str = ""
    captured_at: Optional[datetime] = None
    event_id: Optional[str] = None
    folder_id: Optional[str] = None

    @property
    def entity_key(self) -> Optional[str]:
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "imageFilePath": self.image_file_path,
            "uploadedBy": self.uploaded_by,
            "capturedAt": to_rfc3339_utc(self.captured_at),
            "eventId": self.event_id,
            "folderId": self.folder_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhotoUpload":
        return cls(
            image_file_path=str(data["imageFilePath"]),
            uploaded_by=data.get("uploadedBy") or "",
            captured_at=parse_rfc3339(data.get("capturedAt")),
            event_id=data.get("eventId"),
            folder_id=data.get("folderId"),
        )


@dataclass(frozen=True)
class PhotoDelete:
    op_type: ClassVar[OperationType] = OperationType.DELETE_PHOTO

    photo_id: str
    image_url: str

    @property
    def entity_key(self) -> Optional[str]:
        return f"photos/{self.photo_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {"photoId": self.photo_id, "imageURL": self.image_url}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhotoDelete":
        return cls(photo_id=str(data["photoId"]), image_url=str(data["imageURL"]))


@dataclass(frozen=True)
class FavoriteToggle:
    op_type: ClassVar[OperationType] = OperationType.TOGGLE_FAVORITE

    photo_id: str
    is_favorite: bool

    @property
    def entity_key(self) -> Optional[str]:
        return f"photos/{self.photo_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {"photoId": self.photo_id, "isFavorite": self.is_favorite}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FavoriteToggle":
        return cls(photo_id=str(data["photoId"]), is_favorite=bool(data["isFavorite"]))


@dataclass(frozen=True)
class MoveToFolder:
    op_type: ClassVar[OperationType] = OperationType.MOVE_TO_FOLDER

    photo_id: str
    folder_id: Optional[str] = None

    @property
    def entity_key(self) -> Optional[str]:
        return f"photos/{self.photo_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {"photoId": self.photo_id, "folderId": self.folder_id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MoveToFolder":
        return cls(photo_id=str(data["photoId"]), folder_id=data.get("folderId"))


@dataclass(frozen=True)
class _EventPayload:
    op_type: ClassVar[OperationType]

    document: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def of(cls, event: CalendarEvent):
        return cls(document=event.to_document())

    @property
    def event_id(self) -> str:
        return str(self.document.get("id") or "")

    @property
    def entity_key(self) -> Optional[str]:
        return f"calendarEvents/{self.event_id}"

    @property
    def media_refs(self) -> List[str]:
        return list(self.document.get("photoURLs") or [])

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.document)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        # Validates the snapshot; the raw document is what gets replayed.
        event = CalendarEvent.from_document(data)
        return cls(document=event.to_document())


@dataclass(frozen=True)
class EventAdd(_EventPayload):
    op_type: ClassVar[OperationType] = OperationType.ADD_EVENT


@dataclass(frozen=True)
class EventUpdate(_EventPayload):
    op_type: ClassVar[OperationType] = OperationType.UPDATE_EVENT


@dataclass(frozen=True)
class EventDelete(_EventPayload):
    op_type: ClassVar[OperationType] = OperationType.DELETE_EVENT


OperationPayload = Union[
    PhotoUpload, PhotoDelete, EventAdd, EventUpdate, EventDelete, FavoriteToggle, MoveToFolder
]

_PAYLOAD_TYPES: Dict[OperationType, Type[Any]] = {
    cls.op_type: cls
    for cls in (PhotoUpload, PhotoDelete, EventAdd, EventUpdate, EventDelete, FavoriteToggle, MoveToFolder)
}


def encode_payload(payload: OperationPayload) -> Tuple[str, str]:
    """Return ``(op_type, json)`` for storage."""

    return payload.op_type.value, json.dumps(payload.to_dict(), ensure_ascii=False, sort_keys=True)


def decode_payload(op_type: str, raw: str) -> OperationPayload:
    try:
        kind = OperationType(op_type)
    except ValueError as exc:
        raise InvalidLocalData(f"unknown operation type {op_type!r}") from exc
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise InvalidLocalData(f"{op_type} payload is not valid JSON") from exc
    if not isinstance(data, dict):
        raise InvalidLocalData(f"{op_type} payload must be an object")
    try:
        return _PAYLOAD_TYPES[kind].from_dict(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidLocalData(f"{op_type} payload is malformed: {exc}") from exc


__all__ = [
    "EventAdd",
    "EventDelete",
    "EventUpdate",
    "FavoriteToggle",
    "MoveToFolder",
    "OperationPayload",
    "OperationType",
    "PhotoDelete",
    "PhotoUpload",
    "decode_payload",
    "encode_payload",
]
