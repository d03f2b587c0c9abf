# utils/logger.py
import logging
import logging.handlers
import os
from typing import Optional

from utils.config import LOG_LEVEL, LOG_FILE

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"


def setup_logging(level: str = LOG_LEVEL, file_path: Optional[str] = LOG_FILE,
                  max_bytes: int = 10 * 1024 * 1024, backup_count: int = 5) -> None:
    """Console logging always; a rotating file when LOG_FILE is set."""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.setLevel(getattr(logging, (level or "INFO").upper(), logging.INFO))

    formatter = logging.Formatter(DEFAULT_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if file_path:
        log_dir = os.path.dirname(file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            file_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    logging.getLogger(__name__).info("logging ready, level=%s", level)
