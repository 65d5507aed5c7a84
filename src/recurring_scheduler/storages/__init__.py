from .protocol import ScheduleStore
from .sqlalchemy import SqlAlchemyStore, InMemoryStore

__all__ = ["ScheduleStore", "SqlAlchemyStore", "InMemoryStore"]
