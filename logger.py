import logging
import sys
from pathlib import Path
from typing import Optional

LOGGER_NAME = "migrasim"
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logger(name: str = LOGGER_NAME, level_name: str = "INFO",
                 log_file: Optional[Path] = None) -> logging.Logger:
    """Configure the simulation logger: stdout handler, optional run log file."""
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL
    }
    level = level_map.get(level_name.upper(), logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt='%H:%M:%S')

    has_stream = any(type(h) is logging.StreamHandler for h in logger.handlers)
    if not has_stream:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if log_file is not None:
        log_file = Path(log_file)
        known = {getattr(h, "baseFilename", None) for h in logger.handlers}
        if str(log_file.resolve()) not in known:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger


def get_logger() -> logging.Logger:
    """Shared simulation logger; configured with defaults on first use."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        return setup_logger()
    return logger
