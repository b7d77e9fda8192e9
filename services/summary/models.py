# services/summary/models.py

import enum
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from database import Base, SUMMARY_SCHEMA


class ProcessingStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


# -------------------------------------------------------------------
# 1. Сырые события Last Heard (пишет внешний listener, агрегатор только читает)
# -------------------------------------------------------------------

class LastHeard(Base):
    """
    Одна завершённая голосовая сессия в сети DMR.
    Запись неизменяема: агрегатор её только читает в порядке (start, id).
    """
    __tablename__ = "lastheard"
    __table_args__ = (
        Index("ix_lastheard_start_id", "start", "id"),
        {"schema": SUMMARY_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    source_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    destination_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    source_call: Mapped[str | None] = mapped_column(String(32), nullable=True)
    source_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    destination_call: Mapped[str | None] = mapped_column(String(32), nullable=True)
    destination_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    talker_alias: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # unix-секунды
    start: Mapped[int] = mapped_column(BigInteger, nullable=False)
    stop: Mapped[int] = mapped_column(BigInteger, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )


# -------------------------------------------------------------------
# 2. Почасовые сводки (час, источник, разговорная группа)
# -------------------------------------------------------------------

class HourlySummary(Base):
    """
    Почасовая сводка активности одного позывного в одной разговорной группе.
    Строка создаётся при первом событии ключа и дальше только сливается.
    """
    __tablename__ = "lastheard_hourly_summary"
    __table_args__ = (
        UniqueConstraint(
            "hour_start", "source_id", "destination_id",
            name="uq_hourly_summary_key",
        ),
        {"schema": SUMMARY_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    hour_start: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    hour_end: Mapped[int] = mapped_column(BigInteger, nullable=False)

    source_id: Mapped[int] = mapped_column(Integer, nullable=False)
    source_call: Mapped[str | None] = mapped_column(String(32), nullable=True)
    source_name: Mapped[str | None] = mapped_column(String(128), nullable=True)

    destination_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    destination_call: Mapped[str | None] = mapped_column(String(32), nullable=True)
    destination_name: Mapped[str | None] = mapped_column(String(128), nullable=True)

    total_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_duration: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    avg_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Отсутствуют (NULL), пока не было ни одного звонка с duration > 0
    min_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)

    first_call_start: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_call_start: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)


# -------------------------------------------------------------------
# 3. Журнал запусков агрегации (он же источник курсора)
# -------------------------------------------------------------------

class ProcessingLog(Base):
    """
    Одна попытка инкрементальной агрегации.

    last_processed_*: чекпоинт. При старте это позиция курсора, после каждого
    батча это (start, id) последнего слитого события. Чекпоинт пишется в той же
    транзакции, что и слияние батча, поэтому всегда отражает закоммиченные данные.
    """
    __tablename__ = "summary_processing_log"
    __table_args__ = {"schema": SUMMARY_SCHEMA}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    last_processed_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_processed_record_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    started_from_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    started_from_record_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    processing_started_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    processing_completed_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    heartbeat_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    batches_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ProcessingStatus.IN_PROGRESS.value, index=True
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
