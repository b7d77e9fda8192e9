# services/summary/scheduler.py

import threading
from typing import Optional

from loguru import logger

from errors import TransientStorageError
from runner import SummaryRunner

logger = logger.bind(component="scheduler")


class SummaryScheduler:
    """
    Периодический запуск агрегации в фоновом потоке.

    Один поток, один запуск за раз; параллельные вызовы из API
    отсекаются защитой по журналу обработки.
    stop() прерывает текущий запуск на границе батча.
    """

    def __init__(self, runner: SummaryRunner, interval_sec: int):
        if interval_sec <= 0:
            raise ValueError("interval_sec must be positive")
        self._runner = runner
        self._interval = interval_sec
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="summary-scheduler", daemon=True
        )
        self._thread.start()
        logger.info(f"⏰ Summary scheduler started (every {self._interval}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        logger.info("⏰ Stopping summary scheduler...")
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("⏰ Summary scheduler is still finishing the current run")
            else:
                self._thread = None

    def run_once(self) -> None:
        try:
            result = self._runner.run(should_stop=self._stop.is_set)
            logger.info(
                f"⏰ Scheduled summary run: status={result.status}, "
                f"records={result.records_processed}"
            )
        except TransientStorageError as exc:
            # Следующая попытка по расписанию
            logger.error(f"❌ Scheduled summary run could not start: {exc}")
        except Exception:
            # Поток планировщика не должен умирать из-за одного запуска
            logger.exception("❌ Scheduled summary run crashed")

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self._interval)
