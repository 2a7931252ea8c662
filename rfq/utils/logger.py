"""
Logging for the RFQ engine.

All loggers live under the "rfq" namespace, one child per subsystem
(offers, nonces, delegation, settlement, storage, ...). Console output is
colored with colorlog; an optional plain-text file handler writes
rfq.log in the configured log directory.

Settlement messages concern a single offer, so they go through
OfferLogAdapter, which prefixes every record with the offer id.
"""

import logging
import sys
from pathlib import Path
from typing import IO, Optional, Union

import colorlog

ROOT_LOGGER = "rfq"
LOG_FILE_NAME = "rfq.log"

CONSOLE_FORMAT = "%(log_color)s%(asctime)s [%(name)s] %(levelname)-8s%(reset)s %(message)s"
FILE_FORMAT = "%(asctime)s [%(name)s] %(levelname)-8s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def parse_level(level: Union[int, str]) -> int:
    """Accept a logging level as int or name ("debug", "INFO", ...)."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


class RFQLogger:
    """Process-wide logging setup for RFQ components"""

    _initialized = False
    _log_dir: Optional[Path] = None

    @classmethod
    def setup(
        cls,
        level: Union[int, str] = logging.INFO,
        log_dir: Optional[str] = None,
        log_to_file: bool = False,
        stream: Optional[IO] = None,
    ):
        """
        Configure the "rfq" logger once per process.

        Args:
            level: Level as int or name
            log_dir: Directory for rfq.log (./logs if None)
            log_to_file: Add the file handler
            stream: Console stream (stderr if None)
        """
        if cls._initialized:
            return

        level = parse_level(level)
        root_logger = logging.getLogger(ROOT_LOGGER)
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        console_handler = colorlog.StreamHandler(stream if stream is not None else sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            colorlog.ColoredFormatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT, log_colors=LOG_COLORS)
        )
        root_logger.addHandler(console_handler)

        if log_to_file:
            cls._log_dir = Path(log_dir) if log_dir else Path("logs")
            cls._log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(cls._log_dir / LOG_FILE_NAME)
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
            root_logger.addHandler(file_handler)

        cls._initialized = True

    @classmethod
    def reset(cls):
        """Close and drop handlers so the next setup() reconfigures logging."""
        root_logger = logging.getLogger(ROOT_LOGGER)
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        cls._initialized = False
        cls._log_dir = None

    @classmethod
    def log_file(cls) -> Optional[Path]:
        """Path of the active log file, if file logging is on."""
        return cls._log_dir / LOG_FILE_NAME if cls._log_dir else None

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if not cls._initialized:
            cls.setup()
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class OfferLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with the offer they concern."""

    def process(self, msg, kwargs):
        return f"[offer {self.extra['offer_id']}] {msg}", kwargs


def get_logger(name: str) -> logging.Logger:
    return RFQLogger.get_logger(name)


def offer_logger(logger: logging.Logger, offer_id: int) -> OfferLogAdapter:
    return OfferLogAdapter(logger, {"offer_id": offer_id})


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_dir: Optional[str] = None,
    log_to_file: bool = False,
    stream: Optional[IO] = None,
):
    """Setup logging configuration"""
    RFQLogger.setup(level=level, log_dir=log_dir, log_to_file=log_to_file, stream=stream)
