"""Logging setup for the enrichment service and its scripts.

Two channels are configured:

* the root logger, human-readable lines on the console and optionally in a
  rotating file;
* ``interest_enricher.search.calls``, one JSON object per search call built
  from the ``search_call`` record that ``SearchCallLog`` attaches. It does not
  propagate to the root logger, so each call is written exactly once.
"""
import json
import logging
import logging.handlers
from pathlib import Path

SEARCH_CALL_LOGGER = "interest_enricher.search.calls"

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NOISY_LOGGERS = ("aiohttp", "sqlalchemy", "apscheduler")


class SearchCallFormatter(logging.Formatter):
    """Render search call records as JSON lines.

    Records without a ``search_call`` attribute fall back to the text format.
    """

    def __init__(self):
        super().__init__(TEXT_FORMAT, datefmt=DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        call = getattr(record, "search_call", None)
        if call is None:
            return super().format(record)

        payload = {"level": record.levelname, "logger": record.name, **call}
        return json.dumps(payload, default=str, sort_keys=True)


def _rotating_handler(path: str) -> logging.Handler:
    log_path = Path(path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
    )


def _configure_search_call_log(path: str | None) -> None:
    calls = logging.getLogger(SEARCH_CALL_LOGGER)
    if calls.handlers:
        return

    handler = _rotating_handler(path) if path else logging.StreamHandler()
    handler.setFormatter(SearchCallFormatter())
    calls.addHandler(handler)
    calls.setLevel(logging.INFO)
    calls.propagate = False


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    search_call_log_file: str | None = None,
) -> None:
    """Configure service logging. Safe to call more than once.

    Args:
        level: Root log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional rotating file for the root logger
        search_call_log_file: Optional rotating JSON-lines file for search
            calls; without it call records go to stderr
    """
    root = logging.getLogger()
    _configure_search_call_log(search_call_log_file)

    if root.handlers:
        return

    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    fmt = logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(fmt)
    root.addHandler(console)

    if log_file:
        file_handler = _rotating_handler(log_file)
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
