# services/summary/processing_log.py

from typing import List, Optional

from loguru import logger
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from config import settings
from errors import InvariantViolation, QueryValidationError
from models import ProcessingLog, ProcessingStatus
from schemas import Cursor, ProcessingLogOut

FINALIZED_STATUSES = (ProcessingStatus.COMPLETED.value, ProcessingStatus.FAILED.value)


def derive_cursor(db: Session) -> Cursor:
    """
    Курсор = чекпоинт самой свежей завершённой записи журнала.

    Отдельной таблицы курсора нет. Учитываются и failed-записи: их чекпоинт
    пишется в одной транзакции со слиянием батча, то есть указывает ровно на
    последний закоммиченный батч. Без сбоев это просто последний completed.
    """
    entry = db.execute(
        select(ProcessingLog)
        .where(ProcessingLog.status.in_(FINALIZED_STATUSES))
        .order_by(desc(ProcessingLog.id))
        .limit(1)
    ).scalar_one_or_none()

    if entry is None:
        # Первый запуск: с самого начала
        return Cursor()

    return Cursor(
        last_processed_timestamp=entry.last_processed_timestamp,
        last_processed_record_id=entry.last_processed_record_id,
    )


def abandon_stale_runs(db: Session, now: int, stale_after: int) -> List[int]:
    """
    Помечает failed записи in_progress без heartbeat дольше stale_after секунд.
    Такие записи оставил упавший процесс; без этого они блокировали бы все запуски.
    """
    threshold = now - stale_after
    stale = db.execute(
        select(ProcessingLog)
        .where(
            ProcessingLog.status == ProcessingStatus.IN_PROGRESS.value,
            ProcessingLog.heartbeat_at < threshold,
        )
        .with_for_update()
    ).scalars().all()

    for entry in stale:
        entry.status = ProcessingStatus.FAILED.value
        entry.processing_completed_at = now
        entry.error_message = f"abandoned: no heartbeat since {entry.heartbeat_at}"
        logger.warning(
            f"🪦 Summary run id={entry.id} abandoned (last heartbeat {entry.heartbeat_at}, "
            f"checkpoint=({entry.last_processed_timestamp}, {entry.last_processed_record_id}))"
        )

    # autoflush выключен: без flush find_active_run в той же транзакции
    # всё ещё увидит эти записи как in_progress
    db.flush()
    return [entry.id for entry in stale]


def find_active_run(db: Session) -> Optional[ProcessingLog]:
    return db.execute(
        select(ProcessingLog)
        .where(ProcessingLog.status == ProcessingStatus.IN_PROGRESS.value)
        .order_by(desc(ProcessingLog.id))
        .limit(1)
        .with_for_update()
    ).scalar_one_or_none()


def start_run(db: Session, cursor: Cursor, now: int) -> ProcessingLog:
    entry = ProcessingLog(
        last_processed_timestamp=cursor.last_processed_timestamp,
        last_processed_record_id=cursor.last_processed_record_id,
        started_from_timestamp=cursor.last_processed_timestamp,
        started_from_record_id=cursor.last_processed_record_id,
        processing_started_at=now,
        heartbeat_at=now,
        records_processed=0,
        batches_processed=0,
        status=ProcessingStatus.IN_PROGRESS.value,
    )
    db.add(entry)
    db.flush()
    return entry


def _get_entry(db: Session, log_id: int) -> ProcessingLog:
    entry = db.get(ProcessingLog, log_id, with_for_update=True)
    if entry is None:
        raise InvariantViolation(f"processing log entry {log_id} does not exist")
    return entry


def _get_active_entry(db: Session, log_id: int) -> ProcessingLog:
    """
    Запись запуска, который ещё вправе писать. Если запись уже финализирована
    (например, признана брошенной), батч этого запуска откатывается.
    """
    entry = _get_entry(db, log_id)
    if entry.status != ProcessingStatus.IN_PROGRESS.value:
        raise InvariantViolation(
            f"processing log entry {log_id} is {entry.status}, not in_progress"
        )
    return entry


def record_checkpoint(
    db: Session,
    log_id: int,
    cursor: Cursor,
    records_processed: int,
    batches_processed: int,
    now: int,
) -> None:
    """Чекпоинт после батча; вызывается внутри транзакции слияния."""
    entry = _get_active_entry(db, log_id)
    if (cursor.last_processed_timestamp, cursor.last_processed_record_id) < (
        entry.last_processed_timestamp,
        entry.last_processed_record_id,
    ):
        raise InvariantViolation(
            f"cursor moved backwards for run {log_id}: "
            f"({entry.last_processed_timestamp}, {entry.last_processed_record_id}) -> "
            f"({cursor.last_processed_timestamp}, {cursor.last_processed_record_id})"
        )

    entry.last_processed_timestamp = cursor.last_processed_timestamp
    entry.last_processed_record_id = cursor.last_processed_record_id
    entry.records_processed = records_processed
    entry.batches_processed = batches_processed
    entry.heartbeat_at = now


def complete_run(db: Session, log_id: int, records_processed: int, now: int) -> None:
    entry = _get_active_entry(db, log_id)
    entry.status = ProcessingStatus.COMPLETED.value
    entry.records_processed = records_processed
    entry.processing_completed_at = now
    entry.heartbeat_at = now


def fail_run(db: Session, log_id: int, error_message: str, now: int) -> None:
    """Финализирует запуск как failed; чекпоинт уже закоммичен и не меняется."""
    entry = _get_entry(db, log_id)
    if entry.status != ProcessingStatus.IN_PROGRESS.value:
        # Уже финализирован другим процессом, его итог не перезаписываем
        logger.warning(f"⚠️ Summary run id={log_id} is already {entry.status}, not marking failed")
        return

    entry.status = ProcessingStatus.FAILED.value
    entry.error_message = error_message
    entry.processing_completed_at = now
    entry.heartbeat_at = now


def get_recent_runs(db: Session, limit: int = settings.RECENT_RUNS_LIMIT) -> List[ProcessingLogOut]:
    """История запусков, новые первыми."""
    if limit <= 0 or limit > settings.MAX_RECENT_RUNS_LIMIT:
        raise QueryValidationError(
            f"limit must be between 1 and {settings.MAX_RECENT_RUNS_LIMIT}"
        )

    rows = db.execute(
        select(ProcessingLog).order_by(desc(ProcessingLog.id)).limit(limit)
    ).scalars().all()
    return [ProcessingLogOut.model_validate(r) for r in rows]


def last_completed_run(db: Session) -> Optional[ProcessingLog]:
    return db.execute(
        select(ProcessingLog)
        .where(ProcessingLog.status == ProcessingStatus.COMPLETED.value)
        .order_by(desc(ProcessingLog.id))
        .limit(1)
    ).scalar_one_or_none()
