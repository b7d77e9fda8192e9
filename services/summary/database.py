# services/summary/database.py

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from config import settings

# URL базы берём из конфигурации (docker-compose / .env)
DATABASE_URL = settings.DATABASE_URL

# Сырые события, сводки и журнал обработки живут в одной схеме
SUMMARY_SCHEMA = settings.DB_SCHEMA

# Движок SQLAlchemy. Сессии короткие: одна транзакция на батч агрегации
# или на HTTP-запрос.
engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    pool_size=settings.DB_POOL_SIZE,
    future=True,
)

# Фабрика сессий; раннер получает её явно и сам открывает транзакции
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
)


class Base(DeclarativeBase):
    """Базовый класс моделей lastheard / сводок / журнала обработки."""
    pass


def ensure_schema() -> None:
    """Создаёт схему сводок, если она ещё не существует."""
    with engine.begin() as conn:
        conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{SUMMARY_SCHEMA}"'))


def check_connection() -> bool:
    """Пробный SELECT 1 для /ready."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False


def get_db():
    """Зависимость FastAPI для получения сессии БД."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
