"""SQLAlchemy metadata definitions for sync engine tables."""

from __future__ import annotations

import sqlalchemy as sa

metadata = sa.MetaData()
sqlite_bigint = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

session_state = sa.Table(
    "session_state",
    metadata,
    sa.Column("user_id", sa.Text(), primary_key=True, nullable=False),
    sa.Column("device_id", sa.Text(), nullable=True),
    sa.Column("access_token", sa.Text(), nullable=True),
    sa.Column("next_batch", sa.Text(), nullable=True),
    sa.Column("transaction_counter", sqlite_bigint, nullable=False),
    sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    ),
)
