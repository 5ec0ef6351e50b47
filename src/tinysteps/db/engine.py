"""SQLModel engine singleton."""
from sqlmodel import SQLModel, create_engine

from tinysteps.config import get_settings

_engine = None


def build_engine(database_url: str):
    """Create an engine for database_url and make sure every table exists."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False  # storage calls run on executor threads
    engine = create_engine(database_url, connect_args=connect_args)
    # Import all models so metadata is populated before create_all
    from tinysteps.models.store import LocalEntry, SnapshotRecord  # noqa
    from tinysteps.models.sync import QueuedMutation, SyncLog, SyncMeta  # noqa
    SQLModel.metadata.create_all(engine)
    return engine


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings().database_url)
    return _engine
