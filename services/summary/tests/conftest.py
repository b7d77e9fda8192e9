from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[3]
SVC_DIR = ROOT / "services" / "summary"
if str(SVC_DIR) not in sys.path:
    sys.path.insert(0, str(SVC_DIR))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, SUMMARY_SCHEMA
import models  # noqa: F401  (регистрирует таблицы в Base.metadata)
from event_store import insert_raw_event
from schemas import RawEventIn


# Тесты гоняются на SQLite в памяти; схема lastheard снимается через schema_translate_map.
def make_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        execution_options={"schema_translate_map": {SUMMARY_SCHEMA: None}},
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def add_events(session_factory: sessionmaker, *events: dict) -> list:
    """Вставляет события одной транзакцией, возвращает RawEventRecord-ы в порядке вставки."""
    records = []
    with session_factory() as db, db.begin():
        for event in events:
            payload = {
                "source_call": f"CALL{event['source_id']}",
                "destination_name": f"TG {event['destination_id']}",
            }
            payload.update(event)
            records.append(insert_raw_event(db, RawEventIn(**payload)))
    return records


def event(source_id: int, destination_id: int, start: int, duration: int) -> dict:
    return {
        "source_id": source_id,
        "destination_id": destination_id,
        "start": start,
        "stop": start + duration,
    }


class FixedClock:
    """Управляемые часы для раннера: now() двигается только вручную."""

    def __init__(self, now: int = 1_700_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture()
def session_factory() -> sessionmaker:
    return make_session_factory()


@pytest.fixture()
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()
