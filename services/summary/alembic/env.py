# services/summary/alembic/env.py

import os
import sys
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool, text
from alembic import context

# --- Корень сервиса (/app) в sys.path, чтобы работали плоские импорты ---
BASE_DIR = os.path.dirname(os.path.dirname(__file__))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from database import Base, SUMMARY_SCHEMA  # noqa: E402
import models  # noqa: E402,F401  (регистрирует lastheard / сводки / журнал)
from config import settings  # noqa: E402


config = context.config

db_url = os.getenv("DATABASE_URL", settings.DATABASE_URL)
if db_url:
    config.set_main_option("sqlalchemy.url", db_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def include_object(obj, name, type_, reflected, compare_to):
    """Автогенерация видит только таблицы схемы сводок, чужие схемы БД не трогаем."""
    if type_ == "table":
        return obj.schema == SUMMARY_SCHEMA
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_schemas=True,
        include_object=include_object,
        version_table_schema=SUMMARY_SCHEMA,
        compare_type=True,
        **kwargs,
    )


# --- OFFLINE: генерация SQL без подключения ---
def run_migrations_offline() -> None:
    _configure(url=config.get_main_option("sqlalchemy.url"), literal_binds=True)

    with context.begin_transaction():
        context.execute(f'CREATE SCHEMA IF NOT EXISTS "{SUMMARY_SCHEMA}"')
        context.run_migrations()


# --- ONLINE: миграции на живой БД ---
def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        # Схема нужна до того, как Alembic создаст в ней alembic_version
        connection.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{SUMMARY_SCHEMA}"'))
        connection.commit()

        _configure(connection=connection)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
