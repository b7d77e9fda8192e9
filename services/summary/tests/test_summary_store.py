from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[3]
SVC_DIR = ROOT / "services" / "summary"
if str(SVC_DIR) not in sys.path:
    sys.path.insert(0, str(SVC_DIR))

import pytest
from sqlalchemy import select

from errors import InvariantViolation
from models import HourlySummary
from schemas import PartialSummary
from summary_store import merge_into


def _partial(**overrides) -> PartialSummary:
    data = dict(
        hour_start=0,
        hour_end=3599,
        source_id=5,
        destination_id=9000,
        source_call="DL1ABC",
        destination_name="TG 9000",
        total_calls=2,
        total_duration=40,
        avg_duration=20,
        min_duration=10,
        max_duration=30,
        first_call_start=100,
        last_call_start=200,
    )
    data.update(overrides)
    return PartialSummary(**data)


def _only_row(db) -> HourlySummary:
    return db.execute(select(HourlySummary)).scalar_one()


def test_first_merge_inserts_partial_as_is(db) -> None:
    stats = merge_into(db, {(0, 5, 9000): _partial()}, now=111)
    db.commit()

    row = _only_row(db)
    assert stats.inserted == 1
    assert stats.updated == 0
    assert row.total_calls == 2
    assert row.total_duration == 40
    assert row.avg_duration == 20
    assert row.min_duration == 10
    assert row.max_duration == 30
    assert row.updated_at == 111


def test_second_merge_adds_sums_and_combines_extrema(db) -> None:
    merge_into(db, {(0, 5, 9000): _partial()}, now=111)
    db.commit()

    stats = merge_into(
        db,
        {
            (0, 5, 9000): _partial(
                source_call="DL2XYZ",
                total_calls=1,
                total_duration=7,
                avg_duration=7,
                min_duration=7,
                max_duration=7,
                first_call_start=50,
                last_call_start=3000,
            )
        },
        now=222,
    )
    db.commit()

    row = _only_row(db)
    assert stats.updated == 1
    assert row.total_calls == 3
    assert row.total_duration == 47
    assert row.avg_duration == 16
    assert row.min_duration == 7
    assert row.max_duration == 30
    assert row.first_call_start == 50
    assert row.last_call_start == 3000
    assert row.source_call == "DL2XYZ"
    assert row.updated_at == 222


def test_extrema_stay_absent_then_adopt(db) -> None:
    zero_only = _partial(
        total_calls=1, total_duration=0, avg_duration=0, min_duration=None, max_duration=None
    )
    merge_into(db, {(0, 5, 9000): zero_only}, now=1)
    db.commit()

    row = _only_row(db)
    assert row.min_duration is None
    assert row.max_duration is None

    merge_into(
        db,
        {(0, 5, 9000): _partial(total_calls=1, total_duration=12, min_duration=12, max_duration=12)},
        now=2,
    )
    db.commit()

    row = _only_row(db)
    assert row.min_duration == 12
    assert row.max_duration == 12

    merge_into(
        db,
        {(0, 5, 9000): _partial(total_calls=1, total_duration=4, min_duration=4, max_duration=4)},
        now=3,
    )
    db.commit()

    row = _only_row(db)
    assert row.min_duration == 4
    assert row.max_duration == 12


def test_distinct_keys_get_separate_rows(db) -> None:
    stats = merge_into(
        db,
        {
            (0, 5, 9000): _partial(),
            (3600, 5, 9000): _partial(hour_start=3600, hour_end=7199),
            (0, 6, 9000): _partial(source_id=6),
        },
        now=1,
    )
    db.commit()

    assert stats.inserted == 3
    assert len(db.execute(select(HourlySummary)).scalars().all()) == 3


def test_empty_partials_is_noop(db) -> None:
    stats = merge_into(db, {}, now=1)
    assert stats.inserted == 0
    assert stats.updated == 0


def test_partial_without_calls_is_invariant_violation(db) -> None:
    with pytest.raises(InvariantViolation):
        merge_into(db, {(0, 5, 9000): _partial(total_calls=0)}, now=1)


def test_corrupt_stored_row_is_invariant_violation(db) -> None:
    merge_into(db, {(0, 5, 9000): _partial()}, now=1)
    db.commit()

    row = _only_row(db)
    row.first_call_start = None
    db.commit()

    with pytest.raises(InvariantViolation):
        merge_into(db, {(0, 5, 9000): _partial()}, now=2)
