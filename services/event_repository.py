from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional

from sqlmodel import Session, select

from datetime_utils import ensure_utc, utc_now
from models.event import CalendarEvent


class EventRepository:
    """Local persistence for calendar events."""

    def __init__(self, session_factory: Callable[[], Session], clock: Callable[[], datetime] = utc_now):
        self._session_factory = session_factory
        self._clock = clock

    def get(self, event_id: str) -> Optional[CalendarEvent]:
        with self._session_factory() as session:
            event = session.get(CalendarEvent, event_id)
            return event.normalized() if event else None

    def get_by_remote_id(self, remote_event_id: str) -> Optional[CalendarEvent]:
        if not remote_event_id:
            return None
        with self._session_factory() as session:
            stmt = select(CalendarEvent).where(CalendarEvent.remote_event_id == remote_event_id)
            event = session.exec(stmt).first()
            return event.normalized() if event else None

    def list_all(self) -> List[CalendarEvent]:
        with self._session_factory() as session:
            stmt = select(CalendarEvent).order_by(CalendarEvent.start.asc())
            return [event.normalized() for event in session.exec(stmt)]

    def add(self, event: CalendarEvent) -> CalendarEvent:
        event.updated_at = self._clock()
        event.normalized()
        with self._session_factory() as session:
            session.add(event)
            session.commit()
            session.refresh(event)
            return event.normalized()

    def update(self, event_id: str, **fields) -> Optional[CalendarEvent]:
        with self._session_factory() as session:
            obj = session.get(CalendarEvent, event_id)
            if not obj:
                return None
            for key, value in fields.items():
                setattr(obj, key, value)
            obj.updated_at = self._clock()
            obj.normalized()
            session.add(obj)
            session.commit()
            session.refresh(obj)
            return obj.normalized()

    def delete(self, event_id: str) -> Optional[CalendarEvent]:
        with self._session_factory() as session:
            obj = session.get(CalendarEvent, event_id)
            if not obj:
                return None
            removed = CalendarEvent(**obj.model_dump()).normalized()
            session.delete(obj)
            session.commit()
            return removed

    # ----- sync bookkeeping -----
    def list_unlinked(self, window_start: datetime, window_end: datetime) -> List[CalendarEvent]:
        with self._session_factory() as session:
            stmt = (
                select(CalendarEvent)
                .where(CalendarEvent.remote_event_id == None)  # noqa: E711
                .where(CalendarEvent.start >= window_start)
                .where(CalendarEvent.start <= window_end)
                .order_by(CalendarEvent.start.asc())
            )
            return [event.normalized() for event in session.exec(stmt)]

    def list_needing_update(self) -> List[CalendarEvent]:
        """Linked events edited locally since their last successful push."""

        with self._session_factory() as session:
            stmt = (
                select(CalendarEvent)
                .where(CalendarEvent.remote_event_id != None)  # noqa: E711
                .order_by(CalendarEvent.start.asc())
            )
            events = [event.normalized() for event in session.exec(stmt)]
        return [
            event
            for event in events
            if event.updated_at is not None
            and (event.last_synced_at is None or event.updated_at > event.last_synced_at)
        ]

    def mark_synced(self, event_id: str, remote_event_id: str, synced_at: datetime) -> Optional[CalendarEvent]:
        """Link the event and advance ``last_synced_at`` (never backwards).

        Does not touch ``updated_at``, so a push is not mistaken for a local edit.
        """

        with self._session_factory() as session:
            obj = session.get(CalendarEvent, event_id)
            if not obj:
                return None
            obj.remote_event_id = remote_event_id
            current = ensure_utc(obj.last_synced_at)
            synced_at = ensure_utc(synced_at)
            if current is None or synced_at > current:
                obj.last_synced_at = synced_at
            session.add(obj)
            session.commit()
            session.refresh(obj)
            return obj.normalized()


__all__ = ["EventRepository"]
