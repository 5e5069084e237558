"""
Structured logging for renderproxy.

All modules log through structlog bound loggers. Per-request fields
(request_id, target, resource_class) are carried in contextvars so they
appear on every line emitted while the request is handled, including lines
from the navigation and fetch layers.
"""

import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from renderproxy.utils.config import get_project_root, get_settings

# Fields holding proxied URLs; query strings of trackers and APIs get long
URL_FIELDS = ("url", "target", "final_url", "document_url")
MAX_URL_LENGTH = 120


def _stamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add UTC timestamp and upper-case level."""
    event_dict["timestamp"] = datetime.now(UTC).isoformat().replace("+00:00", "Z")
    event_dict["level"] = method_name.upper()
    return event_dict


def _shorten_urls(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for field in URL_FIELDS:
        value = event_dict.get(field)
        if isinstance(value, str) and len(value) > MAX_URL_LENGTH:
            event_dict[field] = value[:MAX_URL_LENGTH] + "..."
    return event_dict


def _drop_health_chatter(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    # Load balancers poll /health every few seconds
    if method_name == "debug" and str(event_dict.get("event", "")).startswith("health_check"):
        raise structlog.DropEvent
    return event_dict


def configure_logging(
    log_level: str | None = None,
    log_file: str | Path | None = None,
    json_format: bool | None = None,
) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR. Defaults to general.log_level.
        log_file: Extra file sink. Defaults to a dated file under
            general.logs_dir when that is set, otherwise stderr only.
        json_format: One JSON object per line (True) or colored console
            output (False). Defaults to general.json_logs.
    """
    general = get_settings().general

    level_name = (log_level or general.log_level).upper()
    if json_format is None:
        json_format = general.json_logs

    if log_file is None and general.logs_dir:
        log_dir = get_project_root() / general.logs_dir
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"renderproxy_{datetime.now().strftime('%Y%m%d')}.log"

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level_name, logging.INFO),
        handlers=handlers,
        force=True,
    )
    # aiohttp's access log duplicates our request lines
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        _stamp,
        _drop_health_chatter,
        _shorten_urls,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind fields to every later log call in the current task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


class LogContext:
    """Scoped log fields; values bound before the block are restored after it.

    Example:
        with LogContext(request_id="a1b2", target="https://example.com/"):
            logger.info("Rendered document")
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs
        self._bound = structlog.contextvars.bound_contextvars(**kwargs)

    def __enter__(self) -> "LogContext":
        self._bound.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._bound.__exit__(exc_type, exc_val, exc_tb)
