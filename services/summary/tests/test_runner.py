from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[3]
SVC_DIR = ROOT / "services" / "summary"
if str(SVC_DIR) not in sys.path:
    sys.path.insert(0, str(SVC_DIR))

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

import runner as runner_module
import summary_store
from conftest import add_events, event, make_session_factory
from models import HourlySummary, ProcessingLog, ProcessingStatus
from processing_log import derive_cursor
from runner import RunState, SummaryRunner, run_incremental_aggregation


SUMMARY_FIELDS = (
    "hour_start",
    "hour_end",
    "source_id",
    "source_call",
    "source_name",
    "destination_id",
    "destination_call",
    "destination_name",
    "total_calls",
    "total_duration",
    "avg_duration",
    "min_duration",
    "max_duration",
    "first_call_start",
    "last_call_start",
)


def _ten_events():
    # Два часа, два источника, одна нулевая сессия
    return [
        event(1, 91, 100, 10),
        event(2, 91, 200, 30),
        event(1, 91, 300, 0),
        event(1, 92, 400, 5),
        event(2, 91, 1000, 20),
        event(1, 91, 3599, 8),
        event(1, 91, 3600, 12),
        event(2, 91, 3700, 40),
        event(2, 92, 4000, 1),
        event(1, 91, 5000, 6),
    ]


def _summaries(session_factory):
    with session_factory() as db:
        rows = db.execute(
            select(HourlySummary).order_by(
                HourlySummary.hour_start, HourlySummary.source_id, HourlySummary.destination_id
            )
        ).scalars().all()
        return [tuple(getattr(r, f) for f in SUMMARY_FIELDS) for r in rows]


def _log_entries(session_factory):
    with session_factory() as db:
        return [
            (e.id, e.status, e.records_processed, e.last_processed_timestamp, e.last_processed_record_id)
            for e in db.execute(select(ProcessingLog).order_by(ProcessingLog.id)).scalars()
        ]


def _total_calls(session_factory) -> int:
    return sum(row[SUMMARY_FIELDS.index("total_calls")] for row in _summaries(session_factory))


def test_run_aggregates_all_events_and_completes(session_factory, clock) -> None:
    records = add_events(session_factory, *_ten_events())

    result = SummaryRunner(session_factory, batch_size=4, clock=clock).run()

    assert result.status == "completed"
    assert result.records_processed == 10
    assert result.batches_processed == 3
    assert result.cursor.last_processed_timestamp == 5000
    assert result.cursor.last_processed_record_id == records[-1].id
    assert _total_calls(session_factory) == 10

    entries = _log_entries(session_factory)
    assert entries == [(result.log_id, "completed", 10, 5000, records[-1].id)]


def test_run_without_new_events_changes_nothing(session_factory, clock) -> None:
    add_events(session_factory, *_ten_events())
    runner = SummaryRunner(session_factory, batch_size=3, clock=clock)

    runner.run()
    before = _summaries(session_factory)

    clock.now += 60
    second = runner.run()

    assert second.status == "completed"
    assert second.records_processed == 0
    assert second.batches_processed == 0
    assert _summaries(session_factory) == before

    with session_factory() as db:
        cursor = derive_cursor(db)
    assert cursor == second.cursor


def test_new_events_after_run_are_picked_up(session_factory, clock) -> None:
    add_events(session_factory, *_ten_events()[:5])
    runner = SummaryRunner(session_factory, clock=clock)
    runner.run()

    add_events(session_factory, *_ten_events()[5:])
    result = runner.run()

    assert result.records_processed == 5
    assert _total_calls(session_factory) == 10


def test_one_batch_equals_two_separate_runs(clock) -> None:
    events = _ten_events()

    single = make_session_factory()
    add_events(single, *events)
    SummaryRunner(single, batch_size=100, clock=clock).run()

    split = make_session_factory()
    add_events(split, *events[:5])
    SummaryRunner(split, batch_size=100, clock=clock).run()
    add_events(split, *events[5:])
    SummaryRunner(split, batch_size=100, clock=clock).run()

    assert _summaries(single) == _summaries(split)


def test_failed_batch_resumes_from_last_committed_checkpoint(session_factory, clock, monkeypatch) -> None:
    records = add_events(session_factory, *_ten_events())
    calls = []

    def flaky_merge(db, partials, now):
        calls.append(now)
        if len(calls) == 3:
            raise OperationalError("UPDATE lastheard_hourly_summary", {}, Exception("connection reset"))
        return summary_store.merge_into(db, partials, now)

    monkeypatch.setattr(runner_module, "merge_into", flaky_merge)

    runner = SummaryRunner(session_factory, batch_size=3, clock=clock)
    failed = runner.run()

    assert failed.status == "failed"
    assert failed.records_processed == 6
    assert failed.batches_processed == 2
    assert "TransientStorageError" in failed.error_message
    assert runner.state == RunState.FAILED
    assert _total_calls(session_factory) == 6

    entries = _log_entries(session_factory)
    assert entries[-1][1] == "failed"
    assert entries[-1][3:] == (records[5].start, records[5].id)

    monkeypatch.setattr(runner_module, "merge_into", summary_store.merge_into)
    resumed = runner.run()

    assert resumed.status == "completed"
    assert resumed.records_processed == 4
    assert _total_calls(session_factory) == 10

    clean = make_session_factory()
    add_events(clean, *_ten_events())
    SummaryRunner(clean, batch_size=3, clock=clock).run()
    assert _summaries(session_factory) == _summaries(clean)


def test_fresh_in_progress_run_blocks_new_run(session_factory, clock) -> None:
    add_events(session_factory, *_ten_events())
    with session_factory() as db, db.begin():
        db.add(
            ProcessingLog(
                processing_started_at=clock.now - 10,
                heartbeat_at=clock.now - 10,
                status=ProcessingStatus.IN_PROGRESS.value,
            )
        )

    runner = SummaryRunner(session_factory, clock=clock)
    result = runner.run()

    assert result.status == "skipped"
    assert result.log_id == 1
    assert runner.state == RunState.SKIPPED
    assert _summaries(session_factory) == []


def test_stale_in_progress_run_is_abandoned(session_factory, clock) -> None:
    add_events(session_factory, *_ten_events())
    with session_factory() as db, db.begin():
        db.add(
            ProcessingLog(
                processing_started_at=clock.now - 5000,
                heartbeat_at=clock.now - 1000,
                status=ProcessingStatus.IN_PROGRESS.value,
            )
        )

    result = SummaryRunner(session_factory, stale_after=900, clock=clock).run()

    assert result.status == "completed"
    assert result.records_processed == 10

    entries = _log_entries(session_factory)
    assert entries[0][1] == "failed"
    assert entries[1][1] == "completed"

    with session_factory() as db:
        abandoned = db.get(ProcessingLog, 1)
        assert abandoned.error_message.startswith("abandoned")


def test_cancellation_stops_at_batch_boundary(session_factory, clock) -> None:
    records = add_events(session_factory, *_ten_events())
    checks = iter([False, True])

    result = SummaryRunner(session_factory, batch_size=4, clock=clock).run(
        should_stop=lambda: next(checks)
    )

    assert result.status == "completed"
    assert result.cancelled is True
    assert result.records_processed == 4
    assert result.cursor.last_processed_record_id == records[3].id

    resumed = SummaryRunner(session_factory, batch_size=4, clock=clock).run()
    assert resumed.records_processed == 6
    assert _total_calls(session_factory) == 10


def test_runner_rejects_bad_batch_size(session_factory) -> None:
    with pytest.raises(ValueError):
        SummaryRunner(session_factory, batch_size=0)


def test_run_incremental_aggregation_helper(session_factory, clock) -> None:
    add_events(session_factory, *_ten_events())

    result = run_incremental_aggregation(session_factory, batch_size=7, clock=clock)

    assert result.status == "completed"
    assert result.batches_processed == 2


def test_unexpected_error_marks_run_failed_and_is_timed(session_factory, clock, monkeypatch) -> None:
    add_events(session_factory, *_ten_events())

    def broken_merge(db, partials, now):
        raise RuntimeError("boom")

    monkeypatch.setattr(runner_module, "merge_into", broken_merge)
    timed_before = REGISTRY.get_sample_value("lastheard_summary_run_duration_seconds_count") or 0

    with pytest.raises(RuntimeError):
        SummaryRunner(session_factory, clock=clock).run()

    timed_after = REGISTRY.get_sample_value("lastheard_summary_run_duration_seconds_count")
    assert timed_after == timed_before + 1

    entries = _log_entries(session_factory)
    assert entries[-1][1] == "failed"
    assert _summaries(session_factory) == []
