# services/summary/summary_store.py

from typing import Dict, Mapping

from loguru import logger
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from aggregator import SummaryKey, combine_max, combine_min, round_half_up
from errors import InvariantViolation
from models import HourlySummary
from schemas import PartialSummary


class MergeStats(BaseModel):
    inserted: int = 0
    updated: int = 0


def _check_partial(partial: PartialSummary) -> None:
    if partial.total_calls <= 0:
        raise InvariantViolation(
            f"partial summary {_key_of(partial)} has total_calls={partial.total_calls}"
        )
    if partial.first_call_start is None or partial.last_call_start is None:
        raise InvariantViolation(
            f"partial summary {_key_of(partial)} has calls but no call start extrema"
        )


def _check_row(row: HourlySummary) -> None:
    if row.total_calls > 0 and (row.first_call_start is None or row.last_call_start is None):
        raise InvariantViolation(
            f"stored summary ({row.hour_start}, {row.source_id}, {row.destination_id}) "
            f"has total_calls={row.total_calls} but no call start extrema"
        )
    if (
        row.min_duration is not None
        and row.max_duration is not None
        and row.min_duration > row.max_duration
    ):
        raise InvariantViolation(
            f"stored summary ({row.hour_start}, {row.source_id}, {row.destination_id}) "
            f"has min_duration={row.min_duration} > max_duration={row.max_duration}"
        )


def _key_of(partial: PartialSummary) -> SummaryKey:
    return (partial.hour_start, partial.source_id, partial.destination_id)


def new_row(partial: PartialSummary, now: int) -> HourlySummary:
    """Первое появление ключа: частичная сводка принимается как есть."""
    return HourlySummary(
        hour_start=partial.hour_start,
        hour_end=partial.hour_end,
        source_id=partial.source_id,
        source_call=partial.source_call,
        source_name=partial.source_name,
        destination_id=partial.destination_id,
        destination_call=partial.destination_call,
        destination_name=partial.destination_name,
        total_calls=partial.total_calls,
        total_duration=partial.total_duration,
        avg_duration=round_half_up(partial.total_duration, partial.total_calls),
        min_duration=partial.min_duration,
        max_duration=partial.max_duration,
        first_call_start=partial.first_call_start,
        last_call_start=partial.last_call_start,
        updated_at=now,
    )


def merge_row(row: HourlySummary, partial: PartialSummary, now: int) -> HourlySummary:
    """
    Сливает частичную сводку в существующую строку.

    Суммы складываются, экстремумы комбинируются по правилу «есть/нет значения»,
    среднее пересчитывается из итоговых сумм. Слияние не дедуплицирует:
    повторно переданное событие будет посчитано дважды.
    """
    _check_row(row)

    row.total_calls = row.total_calls + partial.total_calls
    row.total_duration = row.total_duration + partial.total_duration
    row.avg_duration = (
        round_half_up(row.total_duration, row.total_calls) if row.total_calls > 0 else 0
    )

    row.min_duration = combine_min(row.min_duration, partial.min_duration)
    row.max_duration = combine_max(row.max_duration, partial.max_duration)
    row.first_call_start = combine_min(row.first_call_start, partial.first_call_start)
    row.last_call_start = combine_max(row.last_call_start, partial.last_call_start)

    # last writer wins на уровне батча
    row.source_call = partial.source_call
    row.source_name = partial.source_name
    row.destination_call = partial.destination_call
    row.destination_name = partial.destination_name

    row.updated_at = now
    return row


def _load_existing(
    db: Session, partials: Mapping[SummaryKey, PartialSummary]
) -> Dict[SummaryKey, HourlySummary]:
    hours = {k[0] for k in partials}
    sources = {k[1] for k in partials}
    destinations = {k[2] for k in partials}

    stmt = (
        select(HourlySummary)
        .where(
            HourlySummary.hour_start.in_(hours),
            HourlySummary.source_id.in_(sources),
            HourlySummary.destination_id.in_(destinations),
        )
        .with_for_update()
    )

    existing: Dict[SummaryKey, HourlySummary] = {}
    for row in db.execute(stmt).scalars():
        key = (row.hour_start, row.source_id, row.destination_id)
        if key in partials:
            existing[key] = row
    return existing


def merge_into(
    db: Session,
    partials: Mapping[SummaryKey, PartialSummary],
    now: int,
) -> MergeStats:
    """
    Upsert всех частичных сводок батча в lastheard_hourly_summary.

    Работает внутри транзакции вызывающего кода: коммит батча и чекпоинта
    журнала выполняется одним блоком в runner-е, поэтому читатели никогда
    не видят наполовину слитый батч.
    """
    stats = MergeStats()
    if not partials:
        return stats

    for partial in partials.values():
        _check_partial(partial)

    existing = _load_existing(db, partials)

    for key, partial in partials.items():
        row = existing.get(key)
        if row is None:
            db.add(new_row(partial, now))
            stats.inserted += 1
        else:
            merge_row(row, partial, now)
            stats.updated += 1

    db.flush()

    logger.debug(f"🧮 Merged hourly summaries: inserted={stats.inserted}, updated={stats.updated}")
    return stats
