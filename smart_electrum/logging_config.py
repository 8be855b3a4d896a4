import logging
import logging.handlers
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = "smart_electrum"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Library modules log through this logger; handlers are attached by setup_logging()
logger = logging.getLogger(LOGGER_NAME)
logger.addHandler(logging.NullHandler())

def setup_logging(level: Union[int, str] = logging.INFO,
                  log_dir: Optional[Union[str, Path]] = None) -> logging.Logger:
    """Attach console and optional rotating file handlers to the package logger"""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logger.setLevel(level)

    # Drop handlers from a previous call so repeated setup does not duplicate output
    for handler in list(logger.handlers):
        if not isinstance(handler, logging.NullHandler):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_dir is not None:
        logs_dir = Path(log_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)

        # File handler for all logs
        file_handler = logging.handlers.RotatingFileHandler(
            logs_dir / "smart_electrum.log",
            maxBytes=10485760,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        # Error file handler
        error_handler = logging.handlers.RotatingFileHandler(
            logs_dir / "error.log",
            maxBytes=10485760,  # 10MB
            backupCount=5
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        logger.addHandler(error_handler)

    return logger
