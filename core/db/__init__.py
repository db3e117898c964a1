from core.db.base import Base
from core.db.mixins import TimestampMixin, SoftDeleteMixin, LocationMixin
from core.db.session import async_session_factory, engine, get_db, transaction

__all__ = [
    "Base",
    "TimestampMixin",
    "SoftDeleteMixin",
    "LocationMixin",
    "async_session_factory",
    "engine",
    "get_db",
    "transaction",
]
