"""Poll-cycle audit log model."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class SyncLog(SQLModel, table=True):
    """Records each poll cycle for audit and debugging."""

    id: Optional[int] = Field(default=None, primary_key=True)
    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    status: str = "running"  # "running", "success", "legacy_error", "error"
    rows_read: int = 0
    orders_delivered: int = 0
    orders_queued: int = 0
    error_message: Optional[str] = None
