"""SQLModel table for pending remote-store operations."""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


class PendingOp(SQLModel, table=True):
    __tablename__ = "pending_ops"

    seq: Optional[int] = Field(default=None, primary_key=True)
    id: str = Field(index=True, unique=True)
    op_type: str = Field(index=True)
    payload: str
    created_at: datetime = Field(default_factory=utc_now)
    retry_count: int = Field(default=0)
    last_retry_at: Optional[datetime] = None
    last_error: Optional[str] = None


__all__ = ["PendingOp"]
