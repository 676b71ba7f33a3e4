# safely/dal/db.py
from __future__ import annotations
import logging
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, URL
from sqlalchemy.orm import sessionmaker

from safely.infra.config import AppSettings, DBSettings, RetrySettings

log = logging.getLogger(__name__)

# default session factory and retry policy used by SafelyTransaction when none is passed
_default_sessionmaker: sessionmaker | None = None
_default_retry = RetrySettings()


def make_url(db: DBSettings) -> URL:
    """Build the connection URL without gluing a DSN string by hand."""
    query = {"charset": db.charset} if db.charset and db.driver.startswith("mysql") else {}
    return URL.create(
        db.driver,
        username=db.user,
        password=db.password,  # special characters (e.g. @) are escaped properly
        host=db.host,
        port=db.port if db.host else None,
        database=db.database,
        query=query,
    )


def make_engine(db: DBSettings, *, log_sql: bool = False) -> Engine:
    """Build an :class:`Engine` from :class:`DBSettings`.

    Args:
        db: Connection settings.
        log_sql: If ``True``, raises the SQLAlchemy log level to ``INFO``.
    """
    kw = {}
    if db.isolation_level and not db.driver.startswith("sqlite"):
        kw["isolation_level"] = db.isolation_level
    engine = create_engine(
        make_url(db),
        pool_pre_ping=True,
        pool_recycle=1800,
        future=True,
        **kw,
    )
    if db.lock_timeout is not None and db.driver.startswith("mysql"):
        _install_lock_timeout(engine, db.lock_timeout)
    if log_sql:
        logging.getLogger("sqlalchemy").setLevel(logging.INFO)
    return engine


def _install_lock_timeout(engine: Engine, seconds: int) -> None:
    def _set_lock_timeout(dbapi_conn, _record):
        cur = dbapi_conn.cursor()
        try:
            cur.execute(f"SET SESSION innodb_lock_wait_timeout = {int(seconds)}")
        finally:
            cur.close()

    event.listen(engine, "connect", _set_lock_timeout)


def create_engine_and_session(db: DBSettings, *, log_sql: bool = False) -> tuple[Engine, sessionmaker]:
    """Returns ``(Engine, SessionLocal)`` for the given settings."""
    engine = make_engine(db, log_sql=log_sql)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    return engine, SessionLocal


def bind_sessionmaker(factory: sessionmaker | None) -> None:
    """Register the session factory used when a runner gets no ``session``."""
    global _default_sessionmaker
    _default_sessionmaker = factory


def get_sessionmaker() -> sessionmaker | None:
    return _default_sessionmaker


def set_retry_policy(policy: RetrySettings) -> None:
    global _default_retry
    _default_retry = policy


def get_retry_policy() -> RetrySettings:
    return _default_retry


def setup_database(settings: AppSettings) -> tuple[Engine, sessionmaker]:
    """Create the engine and register it, with the retry policy, as the defaults."""
    engine, SessionLocal = create_engine_and_session(settings.db, log_sql=settings.logging.log_sql)
    bind_sessionmaker(SessionLocal)
    set_retry_policy(settings.retry)
    log.info("database configured: %s", engine.url.render_as_string(hide_password=True))
    return engine, SessionLocal


def ping(engine: Engine) -> bool:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return True
