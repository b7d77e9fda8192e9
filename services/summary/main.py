# services/summary/main.py

from fastapi import FastAPI, HTTPException
from prometheus_fastapi_instrumentator import Instrumentator

from utils.logging import setup_logging
from config import settings
from database import SessionLocal, check_connection, engine, ensure_schema
from models import Base
from routers import lastheard as lastheard_router
from routers import summary as summary_router
from runner import SummaryRunner
from scheduler import SummaryScheduler


# --- Логирование ---
logger = setup_logging()

# --- Приложение FastAPI ---
app = FastAPI(
    title=settings.SERVICE_NAME,
    version=settings.VERSION,
    description=(
        "Last Heard Summary Service: инкрементальная почасовая агрегация "
        "активности DMR-сети и аналитические запросы по сводкам."
    ),
)

# --- Метрики Prometheus ---
Instrumentator().instrument(app).expose(app, include_in_schema=False)

# --- Планировщик агрегации ---
scheduler = SummaryScheduler(SummaryRunner(SessionLocal), settings.RUN_INTERVAL_SEC)


# --- События приложения ---
@app.on_event("startup")
def startup_event():
    """Создаёт схему и таблицы при старте и, если включено, запускает планировщик."""
    ensure_schema()
    Base.metadata.create_all(bind=engine)
    logger.info("📊 summary_service started and schema ensured.")

    if settings.SCHEDULER_ENABLED:
        scheduler.start()


@app.on_event("shutdown")
def shutdown_event():
    if scheduler.is_running:
        scheduler.stop(timeout=30)


# --- Health & readiness ---
@app.get("/health", tags=["system"])
async def health():
    return {"status": "ok", "service": "summary"}


@app.get("/ready", tags=["system"])
def ready():
    """Готовность = доступна БД; планировщик сообщается для наглядности."""
    if not check_connection():
        raise HTTPException(status_code=503, detail="database is not reachable")
    return {"status": "ready", "scheduler_running": scheduler.is_running}


@app.get("/", include_in_schema=False)
async def root():
    return {"message": "Last Heard Summary Service is operational"}


# --- Маршруты ---
app.include_router(lastheard_router.router)
app.include_router(summary_router.router)
