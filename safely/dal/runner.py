# safely/dal/runner.py
"""Run a unit of work inside a transaction, optionally locking one row first.

Example::

    def withdraw(row: Account, session: Session):
        if row.balance < amount:
            raise InsufficientFunds(row.id)
        row.balance -= amount
        return row.balance

    balance = (
        SafelyTransaction(withdraw, account, session=SessionLocal)
        .on_catch(report)
        .set_throw(True)
        .run()
    )

With an entity target the row is re-selected ``FOR UPDATE`` by primary key.
Its column values are written onto ``account`` (the object passed in) once
after locking and again after the commit, so ``account`` ends up with the
committed state. The locked row itself is available as ``runner.locked_row``
and stays readable after the runner closes its session.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from safely.dal.binding import bind_arguments
from safely.dal.db import get_retry_policy, get_sessionmaker
from safely.dal.errors import LockAcquisitionFailed, SessionNotConfigured
from safely.dal.retry import is_lock_conflict, retry_deadlock
from safely.dal.targets import ENTITY, LockTarget, detach
from safely.dal.tx import transaction
from safely.infra.audit import audit
from safely.infra.logging import operation

log = logging.getLogger(__name__)


class SafelyTransaction:
    """Transaction runner around a single callable.

    Args:
        closure: The unit of work. See :mod:`safely.dal.binding` for what it
            may ask for.
        query: Optional lock target, a mapped instance or a ``Select``/``Query``.
        session: A ``Session`` owned by the caller, or a session factory.
            Defaults to the factory registered with
            :func:`safely.dal.db.bind_sessionmaker`.
        label: Name used in log records and audit lines.

    Raises:
        InvalidTarget: If ``query`` cannot be locked on.
    """

    def __init__(self, closure: Callable, query=None, *, session=None, label: str | None = None):
        self.closure = closure
        self.session = session
        self.label = label or getattr(closure, "__qualname__", None) or repr(closure)
        self.target = LockTarget()
        self.entity: Any = None
        self.locked_row: Any = None
        self.last_error: Optional[BaseException] = None
        self.catch: Optional[Callable[[BaseException], Any]] = None
        self.throw = False
        policy = get_retry_policy()
        self.max_tries = policy.max_tries
        self.base_sleep = policy.base_sleep

        if query is not None:
            self.lock_on(query)

    # ---------- configuration ----------
    def on_catch(self, catch: Callable[[BaseException], Any]) -> "SafelyTransaction":
        self.catch = catch
        return self

    def set_throw(self, throw: bool) -> "SafelyTransaction":
        self.throw = bool(throw)
        return self

    on_failure = on_catch
    set_rethrow = set_throw

    def lock_on(self, query) -> "SafelyTransaction":
        """Lock on a mapped instance (by primary key) or a ``Select``/``Query``.

        Raises:
            InvalidTarget: For any other type, ``None`` included.
        """
        self.target = LockTarget.resolve(query)
        self.entity = self.target.entity
        return self

    def retry_on_deadlock(self, max_tries: int = 3, base_sleep: float = 0.1) -> "SafelyTransaction":
        """Re-run the whole transaction when it fails on a deadlock or lock timeout."""
        self.max_tries = max(1, int(max_tries))
        self.base_sleep = base_sleep
        return self

    # ---------- execution ----------
    def run(self, default=None):
        """Execute the unit of work and commit.

        On failure the transaction is rolled back, the ``on_catch`` handler is
        called with the exception, and the exception is re-raised when
        ``set_throw(True)`` was used. Otherwise ``default`` is returned.
        """
        attempt = self._attempt
        if self.max_tries > 1:
            attempt = retry_deadlock(self.max_tries, self.base_sleep)(attempt)

        with operation(self.label):
            try:
                result = attempt()
            except Exception as exc:
                self.last_error = exc
                if self.catch is not None:
                    self.catch(exc)
                if self.throw:
                    raise
                log.warning("transaction %s failed, returning default", self.label, exc_info=True)
                return default
            self.last_error = None
            return result

    def _attempt(self):
        bind = self.session if self.session is not None else get_sessionmaker()
        if bind is None:
            raise SessionNotConfigured(
                "pass session= or register a factory with safely.dal.db.bind_sessionmaker()"
            )
        owned = not isinstance(bind, Session)
        values = None
        try:
            with transaction(bind) as session:
                row = self._lock(session)
                args, kwargs = bind_arguments(
                    self.closure, runner=self, session=session, target=self.target, row=row
                )
                result = self.closure(*args, **kwargs)
                if row is not None:
                    values = self._settle(session, row, owned)
        except Exception as exc:
            audit("tx.rollback", label=self.label, error=type(exc).__name__)
            raise
        audit("tx.commit", label=self.label)
        if self.target.kind == ENTITY:
            # committed state, including what the unit of work changed on the row
            self.target.refresh(values)
            self.entity = self.target.entity if self.locked_row is not None else None
        return result

    def _lock(self, session):
        if not self.target.is_set:
            self.locked_row = None
            return None
        try:
            row = self.target.fetch(session)
        except DBAPIError as exc:
            conflict = is_lock_conflict(exc)
            raise LockAcquisitionFailed(
                f"could not lock row for {self.label}: {exc.orig!r}", conflict=conflict
            ) from exc
        if row is None:
            log.debug("lock target for %s matched no row", self.label)
        # locked state, which is also what the database holds if the work rolls back
        self.target.refresh(self.target.snapshot(row))
        self.locked_row = row
        return row

    def _settle(self, session, row, owned: bool):
        """Flush the work's changes and read the row's final values before commit.

        A row loaded by a session the runner created is expunged so that
        ``locked_row`` stays readable after the commit expires and closes it.
        """
        session.flush()
        values = self.target.snapshot(row)
        if owned:
            detach(session, row)
        return values
