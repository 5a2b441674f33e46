"""Logging setup for ragkit.

Every module logs through ``logging.getLogger(__name__)``. Pipeline stages
log "→ ... START" and "✓ ... COMPLETE" lines, and each line carries the
8-character id of the search it belongs to, so interleaved concurrent
searches can be told apart.
"""

import logging
import sys
from contextvars import ContextVar

from ragkit.config import get_settings

# Id of the search running in the current task; set by SearchPipeline.search
search_id_var: ContextVar[str | None] = ContextVar("search_id", default=None)

# Third-party loggers that are chatty at INFO
_NOISY_LOGGERS = ("asyncio", "sentence_transformers", "transformers", "urllib3", "filelock")


class SearchIdFilter(logging.Filter):
    """Stamps each record with the id of the search that emitted it.

    Records logged outside a search (index builds, model loading) get "N/A".
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.search_id = search_id_var.get() or "N/A"
        return True


class ColoredFormatter(logging.Formatter):
    """Colors the level name when ragkit logs to a terminal."""

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"

        formatted = super().format(record)

        # Other handlers see the plain level name
        record.levelname = levelname

        return formatted


def setup_logging(level: str | None = None) -> None:
    """Route ragkit logs to stdout.

    Replaces the root logger's handlers with one stdout handler. Lines look
    like ``time | LEVEL | search_id | module:function:line | message``;
    the level is colored only when stdout is a terminal. Model-loading
    libraries are capped at WARNING so a cross-encoder download does not
    bury the search trace.

    Args:
        level: Log level override (default: settings.log_level)
    """
    log_level = (level or get_settings().log_level).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    log_format = (
        "%(asctime)s | %(levelname)-8s | %(search_id)s | "
        "%(name)s:%(funcName)s:%(lineno)d | %(message)s"
    )
    date_format = "%Y-%m-%d %H:%M:%S"

    if sys.stdout.isatty():
        formatter = ColoredFormatter(log_format, datefmt=date_format)
    else:
        formatter = logging.Formatter(log_format, datefmt=date_format)

    console_handler.setFormatter(formatter)
    console_handler.addFilter(SearchIdFilter())
    root_logger.addHandler(console_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured with level: {log_level}")


def get_logger(name: str) -> logging.Logger:
    """Logger for a ragkit module (pass ``__name__``)."""
    return logging.getLogger(name)


def set_search_id(search_id: str) -> None:
    """Tag log lines from the current task with a search id."""
    search_id_var.set(search_id)


def get_search_id() -> str | None:
    return search_id_var.get()


def clear_search_id() -> None:
    """Stop tagging log lines once a search returns or fails."""
    search_id_var.set(None)
