# services/summary/aggregator.py

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Optional, Tuple

from schemas import PartialSummary, RawEventRecord

# (hour_start, source_id, destination_id)
SummaryKey = Tuple[int, int, int]

HOUR_IN_SECONDS = 3600


def round_half_up(numerator: int, denominator: int) -> int:
    """Целочисленное среднее с округлением половины от нуля (13.5 -> 14)."""
    if denominator == 0:
        return 0
    value = Decimal(numerator) / Decimal(denominator)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def hour_bucket(timestamp: int, hour_seconds: int = HOUR_IN_SECONDS) -> Tuple[int, int]:
    """Возвращает (hour_start, hour_end) бакета, выровненного по эпохе."""
    hour_start = (timestamp // hour_seconds) * hour_seconds
    return hour_start, hour_start + hour_seconds - 1


def combine_min(a: Optional[int], b: Optional[int]) -> Optional[int]:
    """min с учётом отсутствующих значений (None не участвует в сравнении)."""
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def combine_max(a: Optional[int], b: Optional[int]) -> Optional[int]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def fold_event(summary: PartialSummary, event: RawEventRecord) -> None:
    """Добавляет одно событие в частичную сводку."""
    summary.total_calls += 1

    duration = event.duration or 0
    if duration < 0:
        duration = 0
    summary.total_duration += duration

    # Нулевые сессии считаются в объёме, но не портят min/max
    if duration > 0:
        summary.min_duration = combine_min(summary.min_duration, duration)
        summary.max_duration = combine_max(summary.max_duration, duration)

    summary.first_call_start = combine_min(summary.first_call_start, event.start)
    summary.last_call_start = combine_max(summary.last_call_start, event.start)

    # Отображаемые поля берутся из последнего события группы
    summary.source_call = event.source_call
    summary.source_name = event.source_name
    summary.destination_call = event.destination_call
    summary.destination_name = event.destination_name


def aggregate_by_hour(
    events: Iterable[RawEventRecord],
    hour_seconds: int = HOUR_IN_SECONDS,
) -> Dict[SummaryKey, PartialSummary]:
    """
    Группирует батч событий по (час, источник, разговорная группа)
    и считает частичные сводки.

    Результат не итоговый: если ключ уже есть в хранилище,
    сводка будет слита с существующей строкой (см. summary_store.merge_into).
    """
    summaries: Dict[SummaryKey, PartialSummary] = {}

    for event in events:
        hour_start, hour_end = hour_bucket(event.start, hour_seconds)
        key = (hour_start, event.source_id, event.destination_id)

        summary = summaries.get(key)
        if summary is None:
            summary = PartialSummary(
                hour_start=hour_start,
                hour_end=hour_end,
                source_id=event.source_id,
                destination_id=event.destination_id,
            )
            summaries[key] = summary

        fold_event(summary, event)

    for summary in summaries.values():
        summary.avg_duration = round_half_up(summary.total_duration, summary.total_calls)

    return summaries
