from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from core.log import get_logger
from models.event import CalendarEvent
from models.payloads import EventAdd, EventDelete, EventUpdate
from services.event_repository import EventRepository
from services.pending_ops_queue import PendingOpsQueue
from services.remote_store import RecordSubscription, RemoteStore


class EventService:
    """Local-first calendar event writes.

    Every mutation lands in the local database first, then is written through
    to the shared store via ``queue.perform`` (queued when that fails).
    """

    EVENTS = ("after_create", "after_update", "after_delete")

    def __init__(
        self,
        repo: EventRepository,
        queue: PendingOpsQueue,
        remote: Optional[RemoteStore] = None,
        monitor=None,
    ) -> None:
        self.repo = repo
        self.queue = queue
        self.remote = remote if remote is not None else queue.remote
        self.monitor = monitor
        self._listeners: Dict[str, Set[Callable[[CalendarEvent], None]]] = {name: set() for name in self.EVENTS}
        self.logger = get_logger("events")

    def subscribe(self, event: str, callback: Callable[[CalendarEvent], None]) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unsupported event: {event}")
        self._listeners[event].add(callback)

    def unsubscribe(self, event: str, callback: Callable[[CalendarEvent], None]) -> None:
        if event not in self._listeners:
            return
        self._listeners[event].discard(callback)

    def _emit(self, event: str, payload: CalendarEvent) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(payload)
            except Exception:
                self.logger.exception("%s listener failed", event)

    # ----- reads -----
    def get(self, event_id: str) -> Optional[CalendarEvent]:
        return self.repo.get(event_id)

    def list_all(self) -> List[CalendarEvent]:
        return self.repo.list_all()

    # ----- writes -----
    async def add(
        self,
        title: str,
        start: datetime,
        *,
        end: Optional[datetime] = None,
        description: str = "",
        location: str = "",
        created_by: str = "",
        is_special: bool = False,
        attached_media_refs: Optional[List[str]] = None,
    ) -> CalendarEvent:
        event = self.repo.add(
            CalendarEvent(
                title=title.strip(),
                start=start,
                end=end,
                description=description,
                location=location,
                created_by=created_by,
                is_special=is_special,
                attached_media_refs=list(attached_media_refs or []),
            )
        )
        await self.queue.perform(EventAdd.of(event))
        self._emit("after_create", event)
        return event

    async def update(self, event_id: str, **fields: Any) -> Optional[CalendarEvent]:
        event = self.repo.update(event_id, **fields)
        if event is None:
            return None
        await self.queue.perform(EventUpdate.of(event))
        self._emit("after_update", event)
        return event

    async def delete(self, event_id: str) -> Optional[CalendarEvent]:
        event = self.repo.delete(event_id)
        if event is None:
            return None
        await self.queue.perform(EventDelete.of(event))
        self._emit("after_delete", event)
        return event

    def watch_remote(self, query: Optional[Dict[str, Any]] = None, *, retry_delay: float = 5.0) -> RecordSubscription:
        return RecordSubscription(
            self.remote, self.queue.settings.events_collection, query, monitor=self.monitor, retry_delay=retry_delay
        )


__all__ = ["EventService"]
