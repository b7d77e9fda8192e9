# services/summary/runner.py

import enum
import time
from typing import Callable, Optional, Tuple

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from aggregator import aggregate_by_hour
from config import settings
from errors import InvariantViolation, TransientStorageError
from event_store import fetch_next_batch
from metrics import (
    SUMMARY_BATCHES_COMMITTED,
    SUMMARY_EVENTS_PROCESSED,
    SUMMARY_RUN_DURATION,
    SUMMARY_RUNS,
)
from processing_log import (
    abandon_stale_runs,
    complete_run,
    derive_cursor,
    fail_run,
    find_active_run,
    record_checkpoint,
    start_run,
)
from schemas import Cursor, RunResult
from summary_store import merge_into

logger = logger.bind(component="runner")


class RunState(str, enum.Enum):
    IDLE = "idle"
    STARTED = "started"
    BATCH_FETCHED = "batch_fetched"
    MERGED = "merged"
    ADVANCED = "advanced"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


def unix_now() -> int:
    return int(time.time())


class SummaryRunner:
    """
    Инкрементальная почасовая агрегация lastheard.

    Один вызов run():
      - по журналу обработки определяет курсор и открывает запись in_progress,
      - батчами читает события после курсора в порядке (start, id),
      - сворачивает батч в частичные сводки и сливает их в lastheard_hourly_summary,
      - в той же транзакции пишет чекпоинт в журнал,
      - повторяет, пока батч не окажется пустым.

    Хранилище передаётся явно (session_factory), глобальных сессий нет.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        batch_size: int = settings.BATCH_SIZE,
        hour_seconds: int = settings.HOUR_SECONDS,
        stale_after: int = settings.STALE_RUN_TIMEOUT_SEC,
        clock: Callable[[], int] = unix_now,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if hour_seconds <= 0:
            raise ValueError("hour_seconds must be positive")

        self._session_factory = session_factory
        self._batch_size = batch_size
        self._hour_seconds = hour_seconds
        self._stale_after = stale_after
        self._clock = clock
        self.state = RunState.IDLE

    def _transition(self, state: RunState) -> None:
        logger.debug(f"🔁 Summary run state: {self.state.value} → {state.value}")
        self.state = state

    # ---------- Публичная точка входа ----------

    def run(self, should_stop: Optional[Callable[[], bool]] = None) -> RunResult:
        """
        Безопасно вызывать сколько угодно раз: без новых событий запуск
        ничего не меняет в сводках и курсоре.
        """
        self.state = RunState.IDLE
        started = time.monotonic()
        logger.info("🚀 Starting incremental summary process...")

        try:
            log_id, cursor, active_id = self._start()
        except SQLAlchemyError as exc:
            SUMMARY_RUNS.labels(status="failed").inc()
            logger.error(f"❌ Could not start summary run: {exc}")
            raise TransientStorageError(f"could not start summary run: {exc}") from exc

        if log_id is None:
            self._transition(RunState.SKIPPED)
            SUMMARY_RUNS.labels(status="skipped").inc()
            logger.warning(f"⏭️ Summary run id={active_id} is still in progress, skipping")
            return RunResult(status="skipped", log_id=active_id)

        records = 0
        batches = 0
        cancelled = False

        try:
            while True:
                if should_stop is not None and should_stop():
                    cancelled = True
                    self._complete(log_id, records)
                    break

                done, cursor, records, batches = self._process_batch(
                    log_id, cursor, records, batches
                )
                if done:
                    break
        except (TransientStorageError, InvariantViolation) as exc:
            message = f"{type(exc).__name__}: {exc}"
            self._fail(log_id, message)
            SUMMARY_RUNS.labels(status="failed").inc()
            logger.opt(exception=exc).error(f"❌ Summary run id={log_id} failed: {message}")
            return RunResult(
                status="failed",
                log_id=log_id,
                records_processed=records,
                batches_processed=batches,
                cursor=cursor,
                error_message=message,
            )
        except Exception as exc:
            self._fail(log_id, f"{type(exc).__name__}: {exc}")
            SUMMARY_RUNS.labels(status="failed").inc()
            raise
        finally:
            SUMMARY_RUN_DURATION.observe(time.monotonic() - started)

        self._transition(RunState.COMPLETED)
        SUMMARY_RUNS.labels(status="completed").inc()

        if cancelled:
            logger.warning(
                f"🛑 Summary run id={log_id} cancelled after {batches} batches, "
                f"{records} records processed"
            )
        else:
            logger.info(
                f"✅ Incremental summary completed. Total records processed: {records}"
            )

        return RunResult(
            status="completed",
            log_id=log_id,
            records_processed=records,
            batches_processed=batches,
            cursor=cursor,
            cancelled=cancelled,
        )

    # ---------- Шаги состояния ----------

    def _start(self) -> Tuple[Optional[int], Cursor, Optional[int]]:
        """Возвращает (log_id, cursor, None) или (None, cursor, id_активного_запуска)."""
        with self._session_factory() as db, db.begin():
            now = self._clock()
            abandon_stale_runs(db, now, self._stale_after)

            active = find_active_run(db)
            if active is not None:
                return None, Cursor(), active.id

            cursor = derive_cursor(db)
            entry = start_run(db, cursor, now)
            log_id = entry.id

        self._transition(RunState.STARTED)
        logger.info(
            f"📍 Summary run id={log_id} starts from cursor "
            f"({cursor.last_processed_timestamp}, {cursor.last_processed_record_id})"
        )
        return log_id, cursor, None

    def _process_batch(
        self, log_id: int, cursor: Cursor, records: int, batches: int
    ) -> Tuple[bool, Cursor, int, int]:
        """
        fetch + aggregate + merge + checkpoint одной транзакцией.
        Пустой батч завершает запуск (в той же транзакции пишется completed).
        """
        try:
            with self._session_factory() as db, db.begin():
                batch = fetch_next_batch(db, cursor, self._batch_size)
                self._transition(RunState.BATCH_FETCHED)

                if not batch:
                    complete_run(db, log_id, records, self._clock())
                    return True, cursor, records, batches

                partials = aggregate_by_hour(batch, self._hour_seconds)
                now = self._clock()
                stats = merge_into(db, partials, now)
                self._transition(RunState.MERGED)

                new_cursor = cursor.advanced_to(batch[-1])
                new_records = records + len(batch)
                new_batches = batches + 1
                record_checkpoint(db, log_id, new_cursor, new_records, new_batches, now)
        except SQLAlchemyError as exc:
            raise TransientStorageError(
                f"batch after ({cursor.last_processed_timestamp}, "
                f"{cursor.last_processed_record_id}) failed: {exc}"
            ) from exc

        self._transition(RunState.ADVANCED)
        SUMMARY_EVENTS_PROCESSED.inc(len(batch))
        SUMMARY_BATCHES_COMMITTED.inc()
        logger.info(
            f"📦 Processed batch of {len(batch)} records "
            f"({stats.inserted} new / {stats.updated} merged summaries). Total: {new_records}"
        )
        return False, new_cursor, new_records, new_batches

    def _complete(self, log_id: int, records: int) -> None:
        try:
            with self._session_factory() as db, db.begin():
                complete_run(db, log_id, records, self._clock())
        except SQLAlchemyError as exc:
            raise TransientStorageError(f"could not complete run {log_id}: {exc}") from exc

    def _fail(self, log_id: int, message: str) -> None:
        self._transition(RunState.FAILED)
        try:
            with self._session_factory() as db, db.begin():
                fail_run(db, log_id, message, self._clock())
        except SQLAlchemyError as exc:
            # Запись останется in_progress и будет признана брошенной по таймауту
            logger.error(f"❌ Could not mark summary run id={log_id} as failed: {exc}")


def run_incremental_aggregation(
    session_factory: sessionmaker,
    should_stop: Optional[Callable[[], bool]] = None,
    **runner_kwargs,
) -> RunResult:
    """Один запуск агрегации с настройками по умолчанию из config.py."""
    return SummaryRunner(session_factory, **runner_kwargs).run(should_stop=should_stop)
