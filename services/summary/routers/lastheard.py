from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from event_store import insert_raw_event, list_recent_events
from schemas import RawEventIn, RawEventRecord
from utils.logging import setup_logging

logger = setup_logging().bind(component="api")

router = APIRouter(prefix="/api/v1/lastheard", tags=["lastheard"])


@router.post("/ingest", response_model=RawEventRecord, status_code=201)
async def ingest_event(event: RawEventIn, db: Session = Depends(get_db)):
    """
    Приём одной завершённой голосовой сессии.
    Этим эндпойнтом пользуется внешний listener сети Brandmeister.
    """
    record = insert_raw_event(db, event)
    db.commit()

    logger.info(
        f"📥 Ingested lastheard id={record.id}: "
        f"{record.source_call} → {record.destination_name} ({record.duration}s)"
    )
    return record


@router.get("/recent", response_model=List[RawEventRecord])
async def recent_events(limit: int = 50, db: Session = Depends(get_db)):
    """Последние N событий, для отладки ленты."""
    if limit <= 0:
        raise HTTPException(status_code=400, detail="limit must be positive")

    return list_recent_events(db, limit)
