from __future__ import annotations

import inspect
import logging.config
import sys
from typing import Any, override

from loguru import logger

from stretch.config.general import CONFIG, GeneralConfig

# stdlib loggers of the search client stack that should end up in loguru
INTERCEPTED_LOGGERS = ("stretch", "elasticsearch", "elastic_transport")


class InterceptHandler(logging.Handler):
    """Logger which forwards to loguru."""

    @override
    def emit(self, record: logging.LogRecord) -> None:
        """Intercept stdlib logging and send it to loguru handling."""
        # Get corresponding Loguru level if it exists.
        level: str | int
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message.
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def configure_logging(config: GeneralConfig | None = None) -> dict[str, Any]:
    """Route standardlib logging to loguru and configure loguru.

    Meant to be called once by the application embedding stretch; the library
    itself only ever logs through `loguru.logger`.
    """
    config = config or CONFIG

    std_log_config: dict[str, Any] = {
        "version": 1,
        "handlers": {
            "loguru": {
                "()": InterceptHandler,
            }
        },
        "loggers": {
            name: {
                "level": config.log_level
                if config.log_level not in ("TRACE", "SUCCESS")
                else "DEBUG",
                "handlers": ["loguru"],
            }
            for name in INTERCEPTED_LOGGERS
        },
        "incremental": False,
        "disable_existing_loggers": False,
    }
    logging.config.dictConfig(std_log_config)

    logger.remove()
    logger.add(
        sys.stdout,
        format="<cyan>{time:YYYY-MM-DDTHH:mm:ss.SSSZ}</cyan> <level>{level:8}</level> {message:80} <cyan>{name}:{function}():{line}</cyan>",
        colorize=True,
        backtrace=True,
        diagnose=False,
        level=config.log_level,
    )

    return std_log_config
