"""create lastheard summary tables

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2025-10-02 21:14:37.512204

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

from database import SUMMARY_SCHEMA

# revision identifiers, used by Alembic.
revision: str = "a1c3e5f7b9d2"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema: raw lastheard events, hourly summaries, processing log."""
    op.create_table(
        "lastheard",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("source_id", sa.Integer, nullable=False),
        sa.Column("destination_id", sa.Integer, nullable=False),
        sa.Column("source_call", sa.String(32)),
        sa.Column("source_name", sa.String(128)),
        sa.Column("destination_call", sa.String(32)),
        sa.Column("destination_name", sa.String(128)),
        sa.Column("talker_alias", sa.String(128)),
        sa.Column("start", sa.BigInteger, nullable=False),
        sa.Column("stop", sa.BigInteger, nullable=False),
        sa.Column("duration", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        schema=SUMMARY_SCHEMA,
    )
    op.create_index("ix_lastheard_start_id", "lastheard", ["start", "id"], schema=SUMMARY_SCHEMA)
    op.create_index(
        "ix_lastheard_source_id", "lastheard", ["source_id"], schema=SUMMARY_SCHEMA
    )
    op.create_index(
        "ix_lastheard_destination_id",
        "lastheard",
        ["destination_id"],
        schema=SUMMARY_SCHEMA,
    )

    op.create_table(
        "lastheard_hourly_summary",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("hour_start", sa.BigInteger, nullable=False),
        sa.Column("hour_end", sa.BigInteger, nullable=False),
        sa.Column("source_id", sa.Integer, nullable=False),
        sa.Column("source_call", sa.String(32)),
        sa.Column("source_name", sa.String(128)),
        sa.Column("destination_id", sa.Integer, nullable=False),
        sa.Column("destination_call", sa.String(32)),
        sa.Column("destination_name", sa.String(128)),
        sa.Column("total_calls", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_duration", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("avg_duration", sa.Integer, nullable=False, server_default="0"),
        sa.Column("min_duration", sa.Integer),
        sa.Column("max_duration", sa.Integer),
        sa.Column("first_call_start", sa.BigInteger),
        sa.Column("last_call_start", sa.BigInteger),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.BigInteger, nullable=False),
        sa.UniqueConstraint(
            "hour_start", "source_id", "destination_id", name="uq_hourly_summary_key"
        ),
        schema=SUMMARY_SCHEMA,
    )
    op.create_index(
        "ix_hourly_summary_hour_start",
        "lastheard_hourly_summary",
        ["hour_start"],
        schema=SUMMARY_SCHEMA,
    )
    op.create_index(
        "ix_hourly_summary_destination_id",
        "lastheard_hourly_summary",
        ["destination_id"],
        schema=SUMMARY_SCHEMA,
    )

    op.create_table(
        "summary_processing_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("last_processed_timestamp", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("last_processed_record_id", sa.Integer, nullable=False, server_default="0"),
        sa.Column("started_from_timestamp", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("started_from_record_id", sa.Integer, nullable=False, server_default="0"),
        sa.Column("processing_started_at", sa.BigInteger, nullable=False),
        sa.Column("processing_completed_at", sa.BigInteger),
        sa.Column("heartbeat_at", sa.BigInteger, nullable=False),
        sa.Column("records_processed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("batches_processed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", sa.String(16), nullable=False, server_default="in_progress"),
        sa.Column("error_message", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        schema=SUMMARY_SCHEMA,
    )
    op.create_index(
        "ix_summary_processing_log_status",
        "summary_processing_log",
        ["status"],
        schema=SUMMARY_SCHEMA,
    )


def downgrade() -> None:
    """Downgrade schema: drop summary tables."""
    op.drop_table("summary_processing_log", schema=SUMMARY_SCHEMA)
    op.drop_table("lastheard_hourly_summary", schema=SUMMARY_SCHEMA)
    op.drop_table("lastheard", schema=SUMMARY_SCHEMA)
