"""Engine, session factory and declarative base for the engine's tables."""

from sqlalchemy import JSON, MetaData, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from notifyflow.common.config import settings


# Stable constraint names so migrations and models agree on what they drop.
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def build_engine(dsn: str, **kwargs) -> Engine:
    """Create an engine for `dsn`.

    SQLite connections are handed across FastAPI's worker threads, so the
    same-thread check is turned off there; server databases get pre-ping.
    """

    if dsn.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
    return create_engine(dsn, **kwargs)


engine = build_engine(settings.postgres_dsn)
# Rows stay readable after commit; services return them to handlers.
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)
