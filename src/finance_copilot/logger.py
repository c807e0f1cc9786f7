import copy
import logging
import logging.config
import os
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that only report warnings and above.
QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "openai")


class ColourizedFormatter(logging.Formatter):
    """Wrap the level name in an ANSI colour; the record itself is left untouched."""

    COLOURS = {
        "DEBUG": "\x1b[90m",
        "INFO": "\x1b[32m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[31;1m",
    }
    RESET = "\x1b[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.COLOURS.get(record.levelname)
        if colour is None:
            return super().format(record)
        tinted = copy.copy(record)
        tinted.levelname = f"{colour}{record.levelname}{self.RESET}"
        return super().format(tinted)


def get_logging_config(colour: bool | None = None) -> dict:
    if colour is None:
        colour = sys.stdout.isatty()
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = os.getenv("LOG_DIR")

    handlers: dict[str, dict] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "colour" if colour else "plain",
        },
    }
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": os.path.join(log_dir, "app.log"),
            "formatter": "plain",
        }
    names = list(handlers)

    loggers: dict[str, dict] = {"": {"handlers": names, "level": level}}
    for server_logger in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        loggers[server_logger] = {"handlers": names, "level": "INFO", "propagate": False}
    for quiet in QUIET_LOGGERS:
        loggers[quiet] = {"level": "WARNING"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "colour": {"()": f"{__name__}.ColourizedFormatter", "format": LOG_FORMAT},
            "plain": {"format": LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": loggers,
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
