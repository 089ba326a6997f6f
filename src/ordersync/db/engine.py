"""SQLModel engine singleton for the sync audit log."""
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from ordersync.config import get_settings

_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            connect_args={"check_same_thread": False},  # SQLite only
        )
        # Import all models so metadata is populated before create_all
        from ordersync.models.sync import SyncLog  # noqa
        SQLModel.metadata.create_all(_engine)
    return _engine
