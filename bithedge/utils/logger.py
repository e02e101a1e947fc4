"""
BitHedge — Structured Logging Utility
structlog configuration plus per-cycle context binding, so every event
emitted during an oracle cycle carries the asset and cycle id.
"""
import logging
import sys
from typing import Optional

import structlog

from bithedge.config.settings import get_settings

NOISY_LOGGERS = ("aiohttp.access", "uvicorn.access", "asyncio")


def _add_service(logger, method_name, event_dict):
    event_dict.setdefault("service", get_settings().app_name)
    return event_dict


def setup_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Configure structlog and the stdlib root logger.

    JSON lines in production, the console renderer when debugging.
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    as_json = (not settings.debug) if json_logs is None else json_logs

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        _add_service,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if as_json:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors += [structlog.dev.set_exc_info, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def bind_cycle(asset: str, cycle: int) -> None:
    """Attach asset and cycle number to every event until clear_cycle()."""
    structlog.contextvars.bind_contextvars(asset=asset, cycle=cycle)


def clear_cycle() -> None:
    structlog.contextvars.unbind_contextvars("asset", "cycle")


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name or "bithedge")
