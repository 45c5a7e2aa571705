import os
import sys

from loguru import logger


def setup_logging() -> None:
    log_path = os.getenv("LOG_PATH", "logs/fieldtasks.log")
    level = os.getenv("LOG_LEVEL", "INFO").upper()

    log_dir = os.path.dirname(log_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    logger.remove()
    logger.add(sys.stdout, level=level)
    logger.add(log_path, rotation="10 MB", level=level)
