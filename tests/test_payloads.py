import json
from datetime import datetime, timezone

import pytest

from core.errors import InvalidLocalData
from models.event import CalendarEvent
from models.payloads import (
    EventUpdate,
    FavoriteToggle,
    MoveToFolder,
    PhotoDelete,
    PhotoUpload,
    decode_payload,
    encode_payload,
)


def test_encode_tags_payload_with_operation_type():
    op_type, raw = encode_payload(FavoriteToggle(photo_id="p1", is_favorite=True))

    assert op_type == "toggleFavorite"
    assert json.loads(raw) == {"photoId": "p1", "isFavorite": True}


def test_upload_payload_keeps_only_a_file_reference():
    captured = datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc)
    payload = PhotoUpload(image_file_path="pending_upload_1.jpg", uploaded_by="sam", captured_at=captured)

    op_type, raw = encode_payload(payload)

    assert json.loads(raw)["capturedAt"] == "2024-05-01T08:30:00Z"
    assert decode_payload(op_type, raw) == payload
    assert payload.entity_key is None


def test_event_payload_snapshot_is_validated_on_decode():
    event = CalendarEvent(id="e1", title="Dinner", start=datetime(2024, 5, 1, 19, tzinfo=timezone.utc))
    op_type, raw = encode_payload(EventUpdate.of(event))

    decoded = decode_payload(op_type, raw)

    assert isinstance(decoded, EventUpdate)
    assert decoded.event_id == "e1"
    assert decoded.entity_key == "calendarEvents/e1"

    broken = json.loads(raw)
    del broken["title"]
    with pytest.raises(InvalidLocalData):
        decode_payload(op_type, json.dumps(broken))


@pytest.mark.parametrize(
    "op_type, raw",
    [
        ("deletePhoto", '{"photoId": "p1"}'),
        ("deletePhoto", "[1, 2]"),
        ("moveToFolder", "not json"),
        ("shareAlbum", "{}"),
    ],
)
def test_malformed_payloads_raise_invalid_local_data(op_type, raw):
    with pytest.raises(InvalidLocalData):
        decode_payload(op_type, raw)


def test_photo_operations_share_an_entity_key():
    keys = {
        PhotoDelete(photo_id="p1", image_url="u").entity_key,
        FavoriteToggle(photo_id="p1", is_favorite=False).entity_key,
        MoveToFolder(photo_id="p1").entity_key,
    }
    assert keys == {"photos/p1"}
