"""Logging setup.

Handlers run on a background ``QueueListener`` thread so a slow console or
disk never stalls the event loop. Loguru calls are forwarded into the same
stdlib pipeline, so modules may use either ``logging.getLogger(__name__)``
or ``get_logger(__name__)``.

Log lines carry a short context prefix built by ``format_log_context``::

    SYS=scheduler USER=42 | checkin sent: What are you up to?
"""

import atexit
import logging
import queue
import sys
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path

from loguru import logger

from personal_historian.config.settings import settings

LOG_FORMAT = "%(asctime)s.%(msecs)03d | %(levelname)-5s | %(name)s | %(message)s"
NOISY_LOGGERS = ("httpx", "httpcore", "telegram.ext", "apscheduler")

CONTEXT_LABELS = {
    "user": "USER",
    "type": "TYPE",
    "message_id": "MSG",
    "reply_to": "REPLY",
    "handler": "HANDLER",
    "status": "STATUS",
}

_listener: QueueListener | None = None


def _output_handlers(level: str, log_file: str | Path | None) -> list[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S")

    console = logging.StreamHandler(sys.stdout)
    handlers: list[logging.Handler] = [console]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_file,
                maxBytes=settings.LOG_MAX_BYTES,
                backupCount=settings.LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
    return handlers


def _forward_loguru(message) -> None:
    """Loguru sink that re-emits records through stdlib logging."""
    record = message.record
    exc = record["exception"]
    logging.getLogger(record["extra"].get("name") or record["name"]).log(
        record["level"].no,
        record["message"],
        exc_info=(exc.type, exc.value, exc.traceback) if exc else None,
    )


def configure_logging(log_level: str | None = None, log_file: str | Path | None = None) -> None:
    """Install queue-backed console (and optional rotating file) logging.

    Safe to call more than once; the previous listener is replaced.
    """
    global _listener

    level = (log_level or settings.LOG_LEVEL or "INFO").upper()

    log_queue: queue.SimpleQueue = queue.SimpleQueue()
    root = logging.getLogger()
    root.handlers = [QueueHandler(log_queue)]
    root.setLevel(level)

    if _listener is not None:
        _listener.stop()
    _listener = QueueListener(
        log_queue,
        *_output_handlers(level, log_file or settings.LOG_FILE),
        respect_handler_level=True,
    )
    _listener.start()
    atexit.register(_listener.stop)

    logger.remove()
    logger.add(_forward_loguru, level=level, backtrace=True, diagnose=False)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def format_log_context(kind: str, **fields: object) -> str:
    """Build a ``KEY=value ... | kind`` prefix.

    ``channel`` renders as ``CH=``; otherwise ``component`` renders as
    ``SYS=``. Empty fields are skipped.
    """
    channel = fields.pop("channel", None)
    component = fields.pop("component", None)

    parts = [f"CH={channel}"] if channel else [f"SYS={component}"] if component else []
    parts.extend(
        f"{CONTEXT_LABELS.get(key, key.upper())}={value}"
        for key, value in fields.items()
        if value is not None and value != ""
    )
    return f"{' '.join(parts)} | {kind}" if parts else str(kind)


def truncate_log_text(text: str | None, limit: int = 100) -> str:
    """Collapse whitespace and cut user text for single-line logs."""
    if text is None:
        return ""
    cleaned = " ".join(str(text).split())
    return cleaned if len(cleaned) <= limit else f"{cleaned[:limit]}..."


def get_logger(name: str | None = None):
    """Loguru logger bound to ``name`` (used as the stdlib logger name)."""
    return logger.bind(name=name) if name else logger


__all__ = ["configure_logging", "format_log_context", "truncate_log_text", "get_logger", "logger"]
