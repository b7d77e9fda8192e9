# services/summary/utils/logging.py

import sys
from typing import Optional

from loguru import logger
from config import settings

_configured = False


def setup_logging(level: Optional[str] = None):
    """
    Настраивает loguru-логгер summary-сервиса и возвращает его.

    Вызывается из main.py и из каждого роутера, поэтому синк
    добавляется только один раз. Поле {extra[component]} показывает,
    кто пишет: api, runner или scheduler (по умолчанию summary).
    """
    global _configured
    if _configured:
        return logger

    level = (level or settings.LOG_LEVEL).upper()

    logger.remove()
    logger.configure(extra={"component": "summary"})

    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<magenta>{extra[component]: <9}</magenta> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    )

    # enqueue: пишут и обработчики запросов, и поток планировщика
    logger.add(
        sys.stdout,
        colorize=True,
        format=log_format,
        level=level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )

    _configured = True
    logger.info(f"📜 Logging initialized for summary (level={level}, env={settings.ENV})")
    return logger
