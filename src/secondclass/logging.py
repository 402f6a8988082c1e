"""structlog setup for the gateway and portal clients.

Events go to stderr as key/value pairs: rendered for a terminal by default,
one JSON object per line with ``json_output``. The account being automated is
bound once per login through contextvars, so automator events do not repeat it.
"""

import logging
import sys

import structlog

# Applied before the renderer, in order
_SHARED_PROCESSORS = (
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=False),
    structlog.dev.set_exc_info,
)


def _renderer(json_output: bool):
    if json_output:
        # Activity names are Chinese; keep them readable in JSON
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def setup_logging(json_output: bool = False, log_level: str = "INFO") -> None:
    """Configure structlog output once per process.

    Args:
        json_output: One JSON object per line instead of console rendering.
        log_level: Minimum level name, case-insensitive. Unknown names mean INFO.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, _renderer(json_output)],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # httpx reports each request at INFO; portal calls are already logged here
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def bind_account(account: str) -> None:
    """Attach the student account to every event logged from this context."""
    structlog.contextvars.bind_contextvars(account=account)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
