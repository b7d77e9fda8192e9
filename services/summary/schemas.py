from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ------------------------------------------------------------
#  СЫРЫЕ СОБЫТИЯ
# ------------------------------------------------------------

class RawEventIn(BaseModel):
    """DTO для приёма одной завершённой голосовой сессии от listener-а."""
    source_id: int = Field(description="DMR ID источника")
    destination_id: int = Field(description="ID разговорной группы (talkgroup)")
    source_call: Optional[str] = None
    source_name: Optional[str] = None
    destination_call: Optional[str] = None
    destination_name: Optional[str] = None
    talker_alias: Optional[str] = None
    start: int = Field(ge=0, description="Начало сессии, unix-секунды")
    stop: int = Field(ge=0, description="Конец сессии, unix-секунды")

    @model_validator(mode="after")
    def check_interval(self) -> "RawEventIn":
        if self.stop < self.start:
            raise ValueError("stop must be >= start")
        return self


class RawEventRecord(BaseModel):
    """Типизированная запись lastheard; в неё сразу превращается строка из БД."""
    id: int
    source_id: int
    destination_id: int
    source_call: Optional[str] = None
    source_name: Optional[str] = None
    destination_call: Optional[str] = None
    destination_name: Optional[str] = None
    talker_alias: Optional[str] = None
    start: int
    stop: int
    duration: Optional[int] = 0

    model_config = ConfigDict(from_attributes=True)


# ------------------------------------------------------------
#  КУРСОР И ЧАСТИЧНЫЕ СВОДКИ
# ------------------------------------------------------------

class Cursor(BaseModel):
    """
    Водяной знак агрегации: наибольшая пара (start, id), уже слитая в сводки.
    Это представление над журналом обработки, а не отдельное состояние.
    """
    last_processed_timestamp: int = 0
    last_processed_record_id: int = 0

    model_config = ConfigDict(frozen=True)

    def advanced_to(self, event: RawEventRecord) -> "Cursor":
        return Cursor(
            last_processed_timestamp=event.start,
            last_processed_record_id=event.id,
        )


class PartialSummary(BaseModel):
    """Сводка по одному ключу, посчитанная в памяти из одного батча."""
    hour_start: int
    hour_end: int
    source_id: int
    destination_id: int

    source_call: Optional[str] = None
    source_name: Optional[str] = None
    destination_call: Optional[str] = None
    destination_name: Optional[str] = None

    total_calls: int = 0
    total_duration: int = 0
    avg_duration: int = 0
    min_duration: Optional[int] = None
    max_duration: Optional[int] = None
    first_call_start: Optional[int] = None
    last_call_start: Optional[int] = None


class HourlySummaryOut(BaseModel):
    hour_start: int
    hour_end: int
    source_id: int
    source_call: Optional[str] = None
    source_name: Optional[str] = None
    destination_id: int
    destination_call: Optional[str] = None
    destination_name: Optional[str] = None
    total_calls: int
    total_duration: int
    avg_duration: int
    min_duration: Optional[int] = None
    max_duration: Optional[int] = None
    first_call_start: Optional[int] = None
    last_call_start: Optional[int] = None
    updated_at: int

    model_config = ConfigDict(from_attributes=True)


# ------------------------------------------------------------
#  ЖУРНАЛ ОБРАБОТКИ И РЕЗУЛЬТАТ ЗАПУСКА
# ------------------------------------------------------------

class ProcessingLogOut(BaseModel):
    id: int
    last_processed_timestamp: int
    last_processed_record_id: int
    started_from_timestamp: int
    started_from_record_id: int
    processing_started_at: int
    processing_completed_at: Optional[int] = None
    heartbeat_at: int
    records_processed: int
    batches_processed: int
    status: str
    error_message: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RunResult(BaseModel):
    """Итог одного вызова инкрементальной агрегации."""
    status: Literal["completed", "failed", "skipped"]
    log_id: Optional[int] = Field(
        default=None,
        description="ID записи журнала; для skipped это ID уже идущего запуска",
    )
    records_processed: int = 0
    batches_processed: int = 0
    cursor: Cursor = Field(default_factory=Cursor)
    cancelled: bool = False
    error_message: Optional[str] = None


class ProcessTriggerResponse(BaseModel):
    message: str
    timestamp: int


# ------------------------------------------------------------
#  АГРЕГИРОВАННЫЕ ЗАПРОСЫ
# ------------------------------------------------------------

class SourceActivity(BaseModel):
    """Активность одного позывного в разговорной группе за период."""
    source_call: Optional[str] = None
    source_name: Optional[str] = None
    total_calls: int
    total_duration: int
    avg_duration: int
    first_activity: Optional[int] = None
    last_activity: Optional[int] = None


class TalkgroupActivity(BaseModel):
    """Строка лидерборда разговорных групп."""
    destination_id: int
    destination_name: Optional[str] = None
    destination_call: Optional[str] = None
    total_calls: int
    total_duration: int
    unique_callsigns: int
    avg_duration: int
    first_activity: Optional[int] = None
    last_activity: Optional[int] = None


class HourlyActivity(BaseModel):
    hour_start: int
    hour_end: int
    total_calls: int
    total_duration: int
    unique_callsigns: int
    unique_talkgroups: int


class SourcesByTalkgroupResponse(BaseModel):
    talkgroup_id: int
    start_time: int
    end_time: int
    total_callsigns: int
    callsigns: List[SourceActivity]


class TalkgroupActivityResponse(BaseModel):
    start_time: int
    end_time: int
    limit: int
    total_talkgroups: int
    talkgroups: List[TalkgroupActivity]


class HourlyActivityResponse(BaseModel):
    start_time: int
    end_time: int
    talkgroup_id: Optional[int] = None
    total_hours: int
    hourly_activity: List[HourlyActivity]


# ------------------------------------------------------------
#  СТАТИСТИКА ХРАНИЛИЩА
# ------------------------------------------------------------

class LastProcessingRun(BaseModel):
    processing_completed_at: Optional[int] = None
    records_processed: int
    status: str


class SummaryStatistics(BaseModel):
    """
    Сводная информация по таблице сводок.
    По last_processing_run видно, насколько данные устарели.
    """
    total_summary_records: int
    oldest_summary_hour: Optional[int] = None
    newest_summary_hour: Optional[int] = None
    unique_talkgroups: int
    unique_callsigns: int
    total_calls: int
    total_duration: int
    last_processing_run: Optional[LastProcessingRun] = None


class SummaryStatusResponse(BaseModel):
    processing_logs: List[ProcessingLogOut]
    statistics: SummaryStatistics
    timestamp: int
