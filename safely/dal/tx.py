from contextlib import contextmanager

from sqlalchemy.orm import Session


@contextmanager
def transaction(bind):
    """Run the ``with`` body inside one transaction.

    ``bind`` is a :class:`Session` owned by the caller or a session factory.
    A session created here is closed on exit. A caller session that is already
    inside a transaction gets a SAVEPOINT instead of a new transaction.
    """
    if isinstance(bind, Session):
        session, owned = bind, False
    else:
        session, owned = bind(), True
    try:
        scope = session.begin_nested() if session.in_transaction() else session.begin()
        with scope:
            yield session
    finally:
        if owned:
            session.close()


def for_update(query, **kw):
    """Apply SQL-level FOR UPDATE locking."""

    return query.with_for_update(**kw)
