import logging
import traceback
from typing import Optional, Union

DEFAULT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def setup_logging(level: Optional[Union[int, str]] = None, fmt: Optional[str] = None) -> None:
    """Configure root logging once. Later calls only adjust an explicitly given level.

    level may be a logging constant or a name such as "DEBUG"; INFO when omitted.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    root = logging.getLogger()
    if root.handlers:
        if level is not None:
            root.setLevel(level)
        return
    logging.basicConfig(level=logging.INFO if level is None else level, format=fmt or DEFAULT_FORMAT)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger by name, after ensuring logging is configured."""
    setup_logging()
    return logging.getLogger(name) if name else logging.getLogger(__name__)


def log_exception(logger: logging.Logger, message: str = "An error occurred", exc_info: Exception = None) -> None:
    """Log a message followed by the exception type, text and full traceback."""
    logger.error(message)
    if exc_info is not None:
        logger.error(f"Exception type: {type(exc_info).__name__}")
        logger.error(f"Exception message: {exc_info}")
    logger.error("Full traceback:")
    logger.error(traceback.format_exc())
