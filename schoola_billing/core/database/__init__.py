from schoola_billing.core.database.session import async_session, engine, get_db
from schoola_billing.core.database.base import Base, BigIntPK, TimestampedModel

__all__ = ["async_session", "engine", "get_db", "Base", "BigIntPK", "TimestampedModel"]
