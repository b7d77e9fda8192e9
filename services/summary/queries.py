# services/summary/queries.py

from typing import List, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from aggregator import round_half_up
from config import settings
from errors import QueryValidationError
from models import HourlySummary
from processing_log import last_completed_run
from schemas import (
    HourlyActivity,
    LastProcessingRun,
    SourceActivity,
    SummaryStatistics,
    TalkgroupActivity,
)


# ---------- Валидация на границе ----------


def validate_time_range(start_time: int, end_time: int) -> None:
    """Проверяется до любого обращения к БД."""
    if start_time >= end_time:
        raise QueryValidationError("start_time must be less than end_time")
    if end_time - start_time > settings.MAX_QUERY_RANGE_SEC:
        raise QueryValidationError("Time range cannot exceed 1 year")


def validate_limit(limit: int) -> None:
    if limit <= 0:
        raise QueryValidationError("limit must be positive")
    if limit > settings.MAX_ACTIVITY_LIMIT:
        raise QueryValidationError(f"Limit cannot exceed {settings.MAX_ACTIVITY_LIMIT}")


def _in_range(start_time: int, end_time: int):
    return (
        HourlySummary.hour_start >= start_time,
        HourlySummary.hour_end <= end_time,
    )


def _as_int(value) -> int:
    # SUM(bigint) в PostgreSQL приходит как Decimal
    return int(value) if value is not None else 0


# ---------- Запросы ----------


def get_sources_by_destination(
    db: Session,
    destination_id: int,
    start_time: int,
    end_time: int,
) -> List[SourceActivity]:
    """Позывные, активные в разговорной группе за период, по убыванию активности."""
    validate_time_range(start_time, end_time)

    total_calls = func.sum(HourlySummary.total_calls).label("total_calls")
    total_duration = func.sum(HourlySummary.total_duration).label("total_duration")

    stmt = (
        select(
            HourlySummary.source_call,
            HourlySummary.source_name,
            total_calls,
            total_duration,
            func.min(HourlySummary.first_call_start).label("first_activity"),
            func.max(HourlySummary.last_call_start).label("last_activity"),
        )
        .where(HourlySummary.destination_id == destination_id, *_in_range(start_time, end_time))
        .group_by(HourlySummary.source_call, HourlySummary.source_name)
        .order_by(total_calls.desc(), total_duration.desc())
    )

    result = []
    for row in db.execute(stmt):
        calls = _as_int(row.total_calls)
        duration = _as_int(row.total_duration)
        result.append(
            SourceActivity(
                source_call=row.source_call,
                source_name=row.source_name,
                total_calls=calls,
                total_duration=duration,
                avg_duration=round_half_up(duration, calls),
                first_activity=row.first_activity,
                last_activity=row.last_activity,
            )
        )
    return result


def get_activity_by_destination(
    db: Session,
    start_time: int,
    end_time: int,
    limit: int = settings.DEFAULT_ACTIVITY_LIMIT,
) -> List[TalkgroupActivity]:
    """Лидерборд разговорных групп за период."""
    validate_time_range(start_time, end_time)
    validate_limit(limit)

    total_calls = func.sum(HourlySummary.total_calls).label("total_calls")
    total_duration = func.sum(HourlySummary.total_duration).label("total_duration")

    stmt = (
        select(
            HourlySummary.destination_id,
            HourlySummary.destination_name,
            HourlySummary.destination_call,
            total_calls,
            total_duration,
            func.count(distinct(HourlySummary.source_call)).label("unique_callsigns"),
            func.min(HourlySummary.first_call_start).label("first_activity"),
            func.max(HourlySummary.last_call_start).label("last_activity"),
        )
        .where(*_in_range(start_time, end_time))
        .group_by(
            HourlySummary.destination_id,
            HourlySummary.destination_name,
            HourlySummary.destination_call,
        )
        .order_by(total_calls.desc(), total_duration.desc())
        .limit(limit)
    )

    result = []
    for row in db.execute(stmt):
        calls = _as_int(row.total_calls)
        duration = _as_int(row.total_duration)
        result.append(
            TalkgroupActivity(
                destination_id=row.destination_id,
                destination_name=row.destination_name,
                destination_call=row.destination_call,
                total_calls=calls,
                total_duration=duration,
                unique_callsigns=row.unique_callsigns,
                avg_duration=round_half_up(duration, calls),
                first_activity=row.first_activity,
                last_activity=row.last_activity,
            )
        )
    return result


def get_hourly_breakdown(
    db: Session,
    start_time: int,
    end_time: int,
    destination_id: Optional[int] = None,
) -> List[HourlyActivity]:
    """Почасовая разбивка за период, опционально по одной разговорной группе."""
    validate_time_range(start_time, end_time)

    stmt = select(
        HourlySummary.hour_start,
        HourlySummary.hour_end,
        func.sum(HourlySummary.total_calls).label("total_calls"),
        func.sum(HourlySummary.total_duration).label("total_duration"),
        func.count(distinct(HourlySummary.source_call)).label("unique_callsigns"),
        func.count(distinct(HourlySummary.destination_id)).label("unique_talkgroups"),
    ).where(*_in_range(start_time, end_time))

    if destination_id is not None:
        stmt = stmt.where(HourlySummary.destination_id == destination_id)

    stmt = stmt.group_by(HourlySummary.hour_start, HourlySummary.hour_end).order_by(
        HourlySummary.hour_start.asc()
    )

    return [
        HourlyActivity(
            hour_start=row.hour_start,
            hour_end=row.hour_end,
            total_calls=_as_int(row.total_calls),
            total_duration=_as_int(row.total_duration),
            unique_callsigns=row.unique_callsigns,
            unique_talkgroups=row.unique_talkgroups,
        )
        for row in db.execute(stmt)
    ]


def get_summary_statistics(db: Session) -> SummaryStatistics:
    """Счётчики по всему хранилищу сводок и последний успешный запуск."""
    row = db.execute(
        select(
            func.count(HourlySummary.id).label("total_summary_records"),
            func.min(HourlySummary.hour_start).label("oldest_summary_hour"),
            func.max(HourlySummary.hour_start).label("newest_summary_hour"),
            func.count(distinct(HourlySummary.destination_id)).label("unique_talkgroups"),
            func.count(distinct(HourlySummary.source_call)).label("unique_callsigns"),
            func.sum(HourlySummary.total_calls).label("total_calls"),
            func.sum(HourlySummary.total_duration).label("total_duration"),
        )
    ).one()

    last_run = last_completed_run(db)

    return SummaryStatistics(
        total_summary_records=row.total_summary_records,
        oldest_summary_hour=row.oldest_summary_hour,
        newest_summary_hour=row.newest_summary_hour,
        unique_talkgroups=row.unique_talkgroups,
        unique_callsigns=row.unique_callsigns,
        total_calls=_as_int(row.total_calls),
        total_duration=_as_int(row.total_duration),
        last_processing_run=(
            LastProcessingRun(
                processing_completed_at=last_run.processing_completed_at,
                records_processed=last_run.records_processed,
                status=last_run.status,
            )
            if last_run is not None
            else None
        ),
    )
