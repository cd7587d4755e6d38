import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logger(level=logging.INFO):
    """
    Sets up the menu_crawler logger with the specified logging level.
    Logs will be output to stdout. Calling it twice does not add a second handler.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logger = logging.getLogger("menu_crawler")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    for h in logger.handlers:
        h.setLevel(level)

    # asyncio slow-callback warnings are noise at DEBUG
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    return logger
