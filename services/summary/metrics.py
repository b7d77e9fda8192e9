# services/summary/metrics.py
#
# Доменные метрики агрегации. HTTP-метрики отдаёт Instrumentator на том же /metrics.

from prometheus_client import Counter, Histogram

SUMMARY_RUNS = Counter(
    "lastheard_summary_runs_total",
    "Запуски инкрементальной агрегации по итоговому статусу",
    ["status"],
)

SUMMARY_EVENTS_PROCESSED = Counter(
    "lastheard_summary_events_processed_total",
    "События lastheard, слитые в почасовые сводки",
)

SUMMARY_BATCHES_COMMITTED = Counter(
    "lastheard_summary_batches_committed_total",
    "Закоммиченные батчи агрегации",
)

SUMMARY_RUN_DURATION = Histogram(
    "lastheard_summary_run_duration_seconds",
    "Длительность одного запуска агрегации",
)
