# safely/infra/logging.py
from __future__ import annotations
import logging, logging.config, os, threading
from contextlib import contextmanager
from pathlib import Path

# ── Thread context (current transaction label) ────────────────────────────────
_ctx = threading.local()


def set_operation(label: str | None):
    _ctx.operation = (label or "-").strip() or "-"


def current_operation() -> str:
    return getattr(_ctx, "operation", "-")


@contextmanager
def operation(label: str | None):
    """Tag log records emitted inside the block with ``label``."""
    previous = current_operation()
    set_operation(label)
    try:
        yield
    finally:
        set_operation(previous)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.operation = current_operation()
        return True


# ── Logging configuration ─────────────────────────────────────────────────────
def setup_logging(
    level: str = "INFO",
    logs_dir: str | Path | None = None,
    console: bool = True,
    log_sql: bool = False,
) -> dict:
    """
    Configures:
      - <logs_dir>/safely.log  (rotating 5 MB x 10 files), only when logs_dir is set
      - stdout handler when console=True
    Returns a dict with the configured paths.
    """
    fmt = "%(asctime)s|%(levelname)s|%(operation)s|%(name)s|%(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    handlers: dict = {}
    if logs_dir is not None:
        logs_dir = Path(logs_dir)
        os.makedirs(logs_dir, exist_ok=True)
        handlers["rotating"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "filename": str(logs_dir / "safely.log"),
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 10,
            "encoding": "utf-8",
            "formatter": "std",
            "filters": ["ctx"],
        }
    if console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "level": "DEBUG",
            "stream": "ext://sys.stdout",
            "formatter": "std",
            "filters": ["ctx"],
        }
    names = list(handlers)

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "ctx": {"()": ContextFilter},
        },
        "formatters": {
            "std": {"format": fmt, "datefmt": datefmt},
        },
        "handlers": handlers,
        "loggers": {
            "": {  # root
                "level": "WARNING",
                "handlers": names,
            },
            "sqlalchemy": {
                "level": "INFO" if log_sql else "WARNING",
                "handlers": names,
                "propagate": False,
            },
            "safely": {
                "level": level,
                "handlers": names,
                "propagate": False,
            },
        },
    })

    set_operation(None)
    logging.getLogger("safely").debug("logging configured")
    return {
        "main_log": str(logs_dir / "safely.log") if logs_dir is not None else None,
        "logs_dir": str(logs_dir) if logs_dir is not None else None,
    }
