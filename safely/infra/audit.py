# safely/infra/audit.py
"""Audit lines for transaction outcomes."""

import logging

log = logging.getLogger("safely.audit")


def audit(event: str, **fields) -> None:
    """Log an audit event.

    The message is built in the format ``event|key1=val1|key2=val2`` and
    emitted using the global logging configuration. ``None`` values are
    skipped.

    Args:
        event: Name of the audited event, e.g. ``tx.commit``.
        **fields: Additional key/value pairs to include in the log.
    """
    parts = [event]
    for key, value in fields.items():
        if value is None:
            continue
        parts.append(f"{key}={value}")
    log.info("|".join(parts))
