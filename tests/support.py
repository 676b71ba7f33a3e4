"""Shared models and fakes for the test-suite."""
from sqlalchemy import Column, Integer, String, event
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import declarative_base

from safely.dal.db import create_engine_and_session
from safely.dal.errors import UnitOfWorkFailed
from safely.infra.config import DBSettings

Base = declarative_base()


class Account(Base):
    __tablename__ = "accounts"
    id = Column(Integer, primary_key=True)
    owner = Column(String(64))
    balance = Column(Integer, nullable=False, default=0)


class Membership(Base):
    __tablename__ = "memberships"
    group_id = Column(Integer, primary_key=True)
    user_id = Column(Integer, primary_key=True)
    role = Column(String(16))


class InsufficientFunds(UnitOfWorkFailed):
    pass


def sqlite_session(savepoints: bool = False):
    """In-memory SQLite engine with the schema created; returns ``(engine, SessionLocal)``.

    ``savepoints=True`` lets SQLAlchemy emit BEGIN itself, which pysqlite
    needs for SAVEPOINT to work.
    """
    engine, SessionLocal = create_engine_and_session(DBSettings(driver="sqlite", database=":memory:"))
    if savepoints:
        @event.listens_for(engine, "connect")
        def _no_pysqlite_begin(dbapi_conn, _record):
            dbapi_conn.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin(conn):
            conn.exec_driver_sql("BEGIN")
    Base.metadata.create_all(engine)
    return engine, SessionLocal


def mysql_sql(stmt) -> str:
    return str(stmt.compile(dialect=mysql.dialect()))


# ---------- fake session recording the call sequence ----------
class FakeResult:
    def __init__(self, rows):
        self.rows = rows

    def scalars(self):
        return self

    def first(self):
        return self.rows[0] if self.rows else None


class FakeScope:
    def __init__(self, log):
        self.log = log

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.log.append("rollback" if exc_type else "commit")
        return False


class FakeSession:
    def __init__(self, log, rows=(), errors=()):
        self.log = log
        self.rows = list(rows)
        self.errors = list(errors)
        self.statements = []

    def in_transaction(self):
        return False

    def begin(self):
        self.log.append("begin")
        return FakeScope(self.log)

    def execute(self, stmt):
        self.log.append("execute")
        self.statements.append(stmt)
        if self.errors:
            raise self.errors.pop(0)
        return FakeResult(self.rows)

    def flush(self):
        pass

    def close(self):
        self.log.append("close")


class FakeSessionFactory:
    """Hands out one :class:`FakeSession` per call, sharing the log."""

    def __init__(self, rows=(), errors=()):
        self.log = []
        self.rows = rows
        self.errors = list(errors)
        self.sessions = []

    def __call__(self):
        session = FakeSession(self.log, self.rows, self.errors)
        self.errors = session.errors
        self.sessions.append(session)
        return session
