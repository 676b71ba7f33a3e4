# safely/dal/errors.py
"""Exceptions raised by :mod:`safely.dal.runner`."""


class SafelyTransactionError(Exception):
    """Base class for errors raised by the transaction runner itself."""


class InvalidTarget(SafelyTransactionError, TypeError):
    """The lock target is neither a mapped entity nor a select/query."""

    def __init__(self, target):
        self.target = target
        super().__init__(
            f"Cannot lock on {type(target).__name__!s}: "
            "expected a mapped entity with an identity or a Select/Query"
        )


class LockAcquisitionFailed(SafelyTransactionError):
    """The database refused or timed out on the ``FOR UPDATE`` fetch.

    The driver error is kept as ``__cause__``. ``conflict`` is ``True`` for
    deadlocks and lock wait timeouts (see :func:`safely.dal.retry.is_lock_conflict`).
    """

    def __init__(self, message: str, *, conflict: bool = False):
        super().__init__(message)
        self.conflict = conflict


class UnitOfWorkFailed(Exception):
    """Business failure raised from inside a unit of work.

    The runner never wraps callback errors; callbacks may raise this (or a
    subclass) to signal that the transaction must be rolled back.
    """


class SessionNotConfigured(SafelyTransactionError, RuntimeError):
    """No session was passed and no default sessionmaker is bound."""
