from datetime import datetime, timedelta, timezone

from models.event import CalendarEvent
from services.event_repository import EventRepository


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


def test_mark_synced_never_moves_backwards(session_factory):
    repo = EventRepository(session_factory, Clock(NOW))
    event = repo.add(CalendarEvent(title="Dinner", start=NOW))

    repo.mark_synced(event.id, "g1", NOW + timedelta(minutes=5))
    repo.mark_synced(event.id, "g1", NOW)

    stored = repo.get(event.id)
    assert stored.is_linked
    assert stored.last_synced_at == NOW + timedelta(minutes=5)
    assert stored.updated_at == NOW


def test_needing_update_compares_edit_and_sync_times(session_factory):
    clock = Clock(NOW)
    repo = EventRepository(session_factory, clock)
    edited = repo.add(CalendarEvent(title="Edited", start=NOW))
    untouched = repo.add(CalendarEvent(title="Untouched", start=NOW))
    repo.add(CalendarEvent(title="Unlinked", start=NOW))
    repo.mark_synced(edited.id, "g1", NOW)
    repo.mark_synced(untouched.id, "g2", NOW)

    clock.now = NOW + timedelta(seconds=1)
    repo.update(edited.id, description="bring wine")

    assert [event.title for event in repo.list_needing_update()] == ["Edited"]


def test_unlinked_events_limited_to_window(session_factory):
    repo = EventRepository(session_factory, Clock(NOW))
    repo.add(CalendarEvent(title="Past", start=NOW - timedelta(days=40)))
    repo.add(CalendarEvent(title="Soon", start=NOW + timedelta(days=1)))
    linked = repo.add(CalendarEvent(title="Linked", start=NOW + timedelta(days=2)))
    repo.mark_synced(linked.id, "g1", NOW)

    window = repo.list_unlinked(NOW - timedelta(days=30), NOW + timedelta(days=30))

    assert [event.title for event in window] == ["Soon"]


def test_local_times_are_stored_as_utc(session_factory):
    repo = EventRepository(session_factory, Clock(NOW))
    plus_two = timezone(timedelta(hours=2))
    event = repo.add(CalendarEvent(title="Dinner", start=datetime(2024, 5, 1, 21, 0, tzinfo=plus_two)))

    assert repo.get(event.id).start == datetime(2024, 5, 1, 19, 0, tzinfo=timezone.utc)


def test_delete_returns_removed_event(session_factory):
    repo = EventRepository(session_factory, Clock(NOW))
    event = repo.add(CalendarEvent(title="Dinner", start=NOW, attached_media_refs=["u1"]))

    removed = repo.delete(event.id)

    assert removed.title == "Dinner"
    assert removed.attached_media_refs == ["u1"]
    assert repo.get(event.id) is None
    assert repo.delete(event.id) is None
