# services/summary/routers/summary.py

import time
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from config import settings
from database import SessionLocal, get_db
from errors import QueryValidationError, TransientStorageError
from processing_log import get_recent_runs
from queries import (
    get_activity_by_destination,
    get_hourly_breakdown,
    get_sources_by_destination,
    get_summary_statistics,
)
from runner import SummaryRunner
from schemas import (
    HourlyActivityResponse,
    ProcessingLogOut,
    ProcessTriggerResponse,
    SourcesByTalkgroupResponse,
    SummaryStatusResponse,
    TalkgroupActivityResponse,
)
from utils.logging import setup_logging

logger = setup_logging().bind(component="api")

router = APIRouter(prefix="/api/v1/summary", tags=["summary"])


def get_runner() -> SummaryRunner:
    """Зависимость FastAPI: раннер агрегации поверх общей фабрики сессий."""
    return SummaryRunner(SessionLocal)


def _run_in_background(runner: SummaryRunner) -> None:
    try:
        result = runner.run()
        logger.info(
            f"🛠️ Manual summary processing finished: status={result.status}, "
            f"records={result.records_processed}"
        )
    except TransientStorageError as e:
        logger.error(f"❌ Manual summary processing failed to start: {e}")
    except Exception:
        # Фоновая задача: исключение дальше никто не увидит
        logger.exception("❌ Manual summary processing crashed")


# ---------- Агрегированные запросы ----------


@router.get(
    "/talkgroups/{talkgroup_id}/callsigns",
    response_model=SourcesByTalkgroupResponse,
)
async def callsigns_by_talkgroup(
    talkgroup_id: int,
    start_time: int,
    end_time: int,
    db: Session = Depends(get_db),
):
    """Позывные, активные в разговорной группе за период."""
    try:
        callsigns = get_sources_by_destination(db, talkgroup_id, start_time, end_time)
    except QueryValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return SourcesByTalkgroupResponse(
        talkgroup_id=talkgroup_id,
        start_time=start_time,
        end_time=end_time,
        total_callsigns=len(callsigns),
        callsigns=callsigns,
    )


@router.get("/talkgroups", response_model=TalkgroupActivityResponse)
async def talkgroup_activity(
    start_time: int,
    end_time: int,
    limit: int = settings.DEFAULT_ACTIVITY_LIMIT,
    db: Session = Depends(get_db),
):
    """Лидерборд разговорных групп за период (limit не больше 500)."""
    try:
        talkgroups = get_activity_by_destination(db, start_time, end_time, limit)
    except QueryValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return TalkgroupActivityResponse(
        start_time=start_time,
        end_time=end_time,
        limit=limit,
        total_talkgroups=len(talkgroups),
        talkgroups=talkgroups,
    )


@router.get("/hourly", response_model=HourlyActivityResponse)
async def hourly_activity(
    start_time: int,
    end_time: int,
    talkgroup_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    """Почасовая разбивка активности."""
    try:
        hours = get_hourly_breakdown(db, start_time, end_time, talkgroup_id)
    except QueryValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return HourlyActivityResponse(
        start_time=start_time,
        end_time=end_time,
        talkgroup_id=talkgroup_id,
        total_hours=len(hours),
        hourly_activity=hours,
    )


# ---------- Управление и статус ----------


@router.post("/process", response_model=ProcessTriggerResponse)
async def trigger_processing(
    background_tasks: BackgroundTasks,
    runner: SummaryRunner = Depends(get_runner),
):
    """
    Ручной запуск агрегации (админский эндпойнт).
    Выполняется в фоне; если запуск уже идёт, он будет пропущен.
    """
    logger.info("🛠️ Manual summary processing triggered")
    background_tasks.add_task(_run_in_background, runner)

    return ProcessTriggerResponse(
        message="Summary processing started in background",
        timestamp=int(time.time()),
    )


@router.get("/runs", response_model=list[ProcessingLogOut])
async def recent_runs(
    limit: int = settings.RECENT_RUNS_LIMIT,
    db: Session = Depends(get_db),
):
    try:
        return get_recent_runs(db, limit)
    except QueryValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/status", response_model=SummaryStatusResponse)
async def summary_status(db: Session = Depends(get_db)):
    """
    История последних запусков + статистика хранилища сводок.
    Устаревшие данные видны по statistics.last_processing_run.
    """
    return SummaryStatusResponse(
        processing_logs=get_recent_runs(db, settings.RECENT_RUNS_LIMIT),
        statistics=get_summary_statistics(db),
        timestamp=int(time.time()),
    )
