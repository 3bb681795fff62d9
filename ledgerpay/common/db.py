"""Database bootstrap helpers."""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from ledgerpay.common.config import settings


def make_engine(url: str) -> Engine:
    """Build the process engine for PostgreSQL, or SQLite for local runs."""

    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True, pool_size=settings.db_pool_size)

    sqlite_engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})

    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _record):
        # Let SQLAlchemy emit BEGIN itself so the mode below is honored.
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _begin_immediate(conn):
        # SQLite has no row locks; take the write lock up front so that
        # concurrent read-modify-write units serialize instead of failing.
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return sqlite_engine


# Single SQLAlchemy engine per process.
engine = make_engine(settings.database_url)
# `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass
