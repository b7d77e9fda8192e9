from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[3]
SVC_DIR = ROOT / "services" / "summary"
if str(SVC_DIR) not in sys.path:
    sys.path.insert(0, str(SVC_DIR))

import pytest

from errors import InvariantViolation
from models import ProcessingLog, ProcessingStatus
from processing_log import (
    abandon_stale_runs,
    complete_run,
    derive_cursor,
    fail_run,
    find_active_run,
    record_checkpoint,
    start_run,
)
from schemas import Cursor

NOW = 1_700_000_000


def _stale_entry(session_factory) -> int:
    with session_factory() as db, db.begin():
        entry = ProcessingLog(
            last_processed_timestamp=100,
            last_processed_record_id=7,
            processing_started_at=NOW - 5000,
            heartbeat_at=NOW - 1000,
            status=ProcessingStatus.IN_PROGRESS.value,
        )
        db.add(entry)
        db.flush()
        return entry.id


def test_abandoned_run_is_not_active_in_same_transaction(session_factory) -> None:
    log_id = _stale_entry(session_factory)

    with session_factory() as db, db.begin():
        abandoned = abandon_stale_runs(db, NOW, stale_after=900)
        active = find_active_run(db)

    assert abandoned == [log_id]
    assert active is None


def test_fresh_run_is_not_abandoned(session_factory) -> None:
    with session_factory() as db, db.begin():
        start_run(db, Cursor(), NOW - 10)

    with session_factory() as db, db.begin():
        assert abandon_stale_runs(db, NOW, stale_after=900) == []
        assert find_active_run(db) is not None


def test_abandoned_run_cannot_write_checkpoint_or_complete(session_factory) -> None:
    log_id = _stale_entry(session_factory)
    with session_factory() as db, db.begin():
        abandon_stale_runs(db, NOW, stale_after=900)

    with session_factory() as db:
        with pytest.raises(InvariantViolation):
            with db.begin():
                record_checkpoint(
                    db,
                    log_id,
                    Cursor(last_processed_timestamp=500, last_processed_record_id=50),
                    records_processed=50,
                    batches_processed=1,
                    now=NOW,
                )

    with session_factory() as db:
        with pytest.raises(InvariantViolation):
            with db.begin():
                complete_run(db, log_id, records_processed=50, now=NOW)

    with session_factory() as db:
        entry = db.get(ProcessingLog, log_id)
        assert entry.status == "failed"
        assert entry.records_processed == 0
        assert (entry.last_processed_timestamp, entry.last_processed_record_id) == (100, 7)
        assert entry.error_message.startswith("abandoned")

        assert derive_cursor(db) == Cursor(
            last_processed_timestamp=100, last_processed_record_id=7
        )


def test_fail_run_keeps_existing_final_status(session_factory) -> None:
    with session_factory() as db, db.begin():
        log_id = start_run(db, Cursor(), NOW).id

    with session_factory() as db, db.begin():
        complete_run(db, log_id, records_processed=3, now=NOW)

    with session_factory() as db, db.begin():
        fail_run(db, log_id, "late failure", NOW + 1)

    with session_factory() as db:
        entry = db.get(ProcessingLog, log_id)
        assert entry.status == "completed"
        assert entry.error_message is None


def test_checkpoint_cannot_move_backwards(session_factory) -> None:
    with session_factory() as db, db.begin():
        log_id = start_run(
            db, Cursor(last_processed_timestamp=200, last_processed_record_id=9), NOW
        ).id

    with session_factory() as db:
        with pytest.raises(InvariantViolation):
            with db.begin():
                record_checkpoint(
                    db,
                    log_id,
                    Cursor(last_processed_timestamp=100, last_processed_record_id=1),
                    records_processed=1,
                    batches_processed=1,
                    now=NOW,
                )
