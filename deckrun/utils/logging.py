"""
Structured logging for deckrun.

All modules log through structlog using an event name plus keyword context:

    logger = get_logger(__name__)
    logger.info("model_call", model="gpt-4o", run_id=run_id)

Nothing is configured on import; hosts call configure_logging() once at
startup to install the renderer and level from DeckrunSettings.
"""

import logging
import sys

import structlog


def configure_logging(level: str | None = None, json: bool | None = None) -> None:
    """
    Configure structlog and the stdlib root handler.

    Args:
        level: Log level name, defaults to settings.log_level
        json: Render JSON lines instead of the console renderer
    """
    from deckrun.config.settings import settings

    level_name = (level or settings.log_level).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    use_json = settings.log_json if json is None else json

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str = "deckrun") -> structlog.stdlib.BoundLogger:
    """
    Get a structlog logger bound to a module name.

    The logger is a lazy proxy: output follows whatever configuration is
    active when it first logs, so the host may call configure_logging()
    after deckrun modules are imported.
    """
    return structlog.get_logger(name)


__all__ = ["configure_logging", "get_logger"]
