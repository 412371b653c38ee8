import logging
import sys
from functools import lru_cache

from loguru import logger

from config.base import get_settings

from .context import connection_context
from .format import CustomLogFormat

NOISY_MESSAGES = ("changes detected",)


class InterceptHandler(logging.Handler):
    """Intercept standard Python logging records and redirect them to Loguru.

    httpx, httpcore and uvicorn log through the standard library; routing them
    through Loguru keeps a single format and lets the active connection
    context be attached to their records as well.
    """

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a log record by re-routing it to Loguru.

        Parameters
        ----------
        record: logging.LogRecord
            `LogRecord` instance from the standard logging library.
        """
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage(), **connection_context.get({})
        )


def _is_noise(record) -> bool:
    return (
        any(message in record["message"] for message in NOISY_MESSAGES)
        or record["function"] == "callHandlers"
    )


@lru_cache(maxsize=1)
def setup_logging() -> None:
    """Configure Loguru to handle application logging with multiple sinks.

    Sets up console logging (stdout), a rotating serialized log file, and a
    separate file for error-level logs. Standard logging is intercepted and
    the connection context of the emitting task is merged into each record.
    """
    settings = get_settings()
    settings.logs_dir.mkdir(parents=True, exist_ok=True)

    logger.remove()

    logging.root.handlers = [InterceptHandler()]
    logging.root.setLevel(settings.logging_level)

    for name in logging.root.manager.loggerDict.keys():
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True

    def context_patcher(record):
        record["extra"].update(connection_context.get({}))

    is_development = settings.is_development

    handlers_config = [
        {
            "backtrace": False,
            "colorize": is_development,
            "diagnose": True,
            "filter": lambda record: (
                record["extra"].get("target") != "file" and not _is_noise(record)
            ),
            "format": lambda record: CustomLogFormat(record=record).log_console_format(),
            "level": settings.logging_level,
            "serialize": not is_development,
            "sink": sys.stdout,
        },
        {
            "backtrace": True,
            "colorize": False,
            "compression": "zip",
            "diagnose": True,
            "enqueue": True,
            "filter": lambda record: not _is_noise(record),
            "format": lambda record: CustomLogFormat(record=record).log_file_format(),
            "level": "INFO",
            "retention": "10 days",
            "rotation": "10 MB",
            "serialize": True,
            "sink": settings.log_file,
        },
        {
            "backtrace": True,
            "colorize": False,
            "compression": "zip",
            "diagnose": True,
            "enqueue": True,
            "filter": lambda record: record["level"].no >= 40,
            "format": lambda record: CustomLogFormat(record=record).log_file_format(),
            "level": "ERROR",
            "retention": "60 days",
            "rotation": "10 MB",
            "serialize": True,
            "sink": str(settings.log_file).replace(".log", "_errors.log"),
        },
    ]

    logger.configure(handlers=handlers_config, patcher=context_patcher)
