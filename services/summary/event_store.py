# services/summary/event_store.py

from typing import List

from loguru import logger
from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from models import LastHeard
from schemas import Cursor, RawEventIn, RawEventRecord


def insert_raw_event(db: Session, event: RawEventIn) -> RawEventRecord:
    """
    Сохраняет одну завершённую сессию. duration денормализуется здесь: stop - start.
    Коммит остаётся за вызывающим кодом.
    """
    obj = LastHeard(
        source_id=event.source_id,
        destination_id=event.destination_id,
        source_call=event.source_call.strip() if event.source_call else None,
        source_name=event.source_name,
        destination_call=event.destination_call,
        destination_name=event.destination_name.strip() if event.destination_name else None,
        talker_alias=event.talker_alias,
        start=event.start,
        stop=event.stop,
        duration=event.stop - event.start,
    )
    db.add(obj)
    db.flush()

    logger.debug(
        f"📥 Stored lastheard id={obj.id}: {obj.source_call} → {obj.destination_name} ({obj.duration}s)"
    )
    return RawEventRecord.model_validate(obj)


def fetch_next_batch(db: Session, cursor: Cursor, batch_size: int) -> List[RawEventRecord]:
    """
    Следующая порция необработанных событий строго после курсора.

    На порядке (start, id) держится возобновляемость: события с одинаковым start
    различаются по id, поэтому ничего не пропускается и не читается повторно.
    Пустой список означает, что запуск исчерпал данные.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    ts = cursor.last_processed_timestamp
    record_id = cursor.last_processed_record_id

    stmt = (
        select(LastHeard)
        .where(
            or_(
                LastHeard.start > ts,
                and_(LastHeard.start == ts, LastHeard.id > record_id),
            )
        )
        .order_by(LastHeard.start.asc(), LastHeard.id.asc())
        .limit(batch_size)
    )

    rows = db.execute(stmt).scalars().all()
    return [RawEventRecord.model_validate(r) for r in rows]


def list_recent_events(db: Session, limit: int = 50) -> List[RawEventRecord]:
    """Последние события по времени начала, для отладки ленты Last Heard."""
    if limit <= 0:
        raise ValueError("limit must be positive")

    rows = (
        db.execute(
            select(LastHeard)
            .order_by(LastHeard.start.desc(), LastHeard.id.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return [RawEventRecord.model_validate(r) for r in rows]
