import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# 第三方库太吵，统一压到 WARNING
NOISY_LOGGERS = ("urllib3", "requests", "httpx")


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Make sure the root logger has a stdout handler at the wanted level.
    Uvicorn sets up handlers before our imports run; Celery workers and scripts do not.
    """
    resolved_level = (level or DEFAULT_LEVEL).upper()
    root_logger = logging.getLogger()

    if not root_logger.handlers:
        logging.basicConfig(
            level=resolved_level,
            format=LOG_FORMAT,
            handlers=[logging.StreamHandler(sys.stdout)],
        )
    else:
        root_logger.setLevel(resolved_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.captureWarnings(True)
    return logging.getLogger("store_sync")


def truncate_for_log(text: Optional[str], limit: int = 500) -> str:
    """平台原始报错只进服务端日志，并截断避免日志过大。"""
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit] + "…"


logger = configure_logging()
