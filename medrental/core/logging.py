# medrental/core/logging.py
import logging
import sys
import structlog
from pythonjsonlogger import jsonlogger

from ..config import get_settings


def setup_logging():
    """Structured logging setup: structlog processors over a stdlib root handler."""
    settings = get_settings()

    # JSON formatter for production, plain text when LOG_JSON is off
    if settings.log_json:
        formatter = jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s"
        )
    else:
        formatter = logging.Formatter('%(levelname)-8s %(name)s: %(message)s')

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if settings.log_json else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    # Replace handlers so repeated setup (reload, tests) does not duplicate output
    for handler in list(root.handlers):
        if getattr(handler, "_medrental", False):
            root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler._medrental = True
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    # Quiet noisy libraries unless debugging
    if not settings.debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return structlog.get_logger("medrental")
