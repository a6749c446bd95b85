"""ORM models and value types exposed by the OurApp sync core."""
from .event import CalendarEvent
from .pending_op import PendingOp
from .sync_state import SyncCursorState

__all__ = ["CalendarEvent", "PendingOp", "SyncCursorState"]
