# services/summary/config.py

import os
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Конфигурация summary, сервиса почасовой агрегации Last Heard.
    Сырые события DMR-сессий сворачиваются в почасовые сводки
    (час, источник, разговорная группа).
    """

    # --- Основная информация ---
    SERVICE_NAME: str = "Last Heard Summary Service"
    VERSION: str = "1.0.0"
    ENV: str = os.getenv("ENV", "dev")

    # --- Подключение к БД ---
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "postgresql://postgres:postgres@db:5432/lastheard"
    )
    DB_SCHEMA: str = os.getenv("DB_SCHEMA", "lastheard")
    DB_POOL_SIZE: int = 5

    # --- Параметры агрегации ---
    BATCH_SIZE: int = 1000              # сколько событий сворачивать за одну транзакцию
    HOUR_SECONDS: int = 3600            # ширина почасового бакета
    STALE_RUN_TIMEOUT_SEC: int = 900    # in_progress без heartbeat дольше этого считается брошенным

    # --- Планировщик ---
    SCHEDULER_ENABLED: bool = False
    RUN_INTERVAL_SEC: int = 3600

    # --- Ограничения запросов ---
    MAX_QUERY_RANGE_SEC: int = 365 * 24 * 60 * 60
    DEFAULT_ACTIVITY_LIMIT: int = 50
    MAX_ACTIVITY_LIMIT: int = 500
    RECENT_RUNS_LIMIT: int = 10
    MAX_RECENT_RUNS_LIMIT: int = 100

    # --- Логирование ---
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Глобальный объект конфигурации
settings = Settings()
