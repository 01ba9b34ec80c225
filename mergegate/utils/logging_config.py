import logging
import sys
import os
from datetime import datetime

_LINE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Client libraries that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "docker", "urllib3")


class ColoredFormatter(logging.Formatter):
    """Level-coloured console output; run ids in messages stay readable."""

    COLORS = {
        logging.DEBUG: "\x1b[36m",
        logging.INFO: "\x1b[32m",
        logging.WARNING: "\x1b[33m",
        logging.ERROR: "\x1b[31m",
        logging.CRITICAL: "\x1b[31;1m",
    }
    reset = "\x1b[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelno)
        fmt = f"{color}{_LINE_FORMAT}{self.reset}" if color else _LINE_FORMAT
        return logging.Formatter(fmt, datefmt=_DATE_FORMAT).format(record)


def setup_logging(level=logging.INFO, log_dir="logs"):
    """Console + daily file logging for the pipeline service."""
    root_logger = logging.getLogger()

    # Clear existing handlers to prevent duplicate logs
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(level)

    # stderr keeps uvicorn's access log and ours interleaved
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(ColoredFormatter())
    root_logger.addHandler(console_handler)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(
            os.path.join(log_dir, f"mergegate_{datetime.now().strftime('%Y%m%d')}.log")
        )
        file_handler.setFormatter(logging.Formatter(_LINE_FORMAT, datefmt=_DATE_FORMAT))
        root_logger.addHandler(file_handler)

    for logger_name in ("mergegate", "uvicorn", "uvicorn.error", "uvicorn.access", "main"):
        service_logger = logging.getLogger(logger_name)
        service_logger.setLevel(level)
        service_logger.propagate = True

    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(max(level, logging.WARNING))

    root_logger.info("Logging initialized (console%s).", " + file" if log_dir else "")
