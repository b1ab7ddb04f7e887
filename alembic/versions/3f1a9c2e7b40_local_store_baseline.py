"""local store baseline

Revision ID: 3f1a9c2e7b40
Revises:
Create Date: 2026-10-16 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2e7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "meaning_entries",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("text", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("time_of_day", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_meaning_entries_updated_at", "meaning_entries", ["updated_at"])

    op.create_table(
        "practices",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("instruction", sa.Text(), nullable=False),
        sa.Column("mode", sa.String(length=32), nullable=False),
        sa.Column("difficulty", sa.Integer(), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("contra_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "practice_sessions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("practice_id", sa.String(length=64), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("user_rating", sa.String(length=32), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_practice_sessions_practice_id", "practice_sessions", ["practice_id"])
    op.create_index("ix_practice_sessions_updated_at", "practice_sessions", ["updated_at"])

    op.create_table(
        "fragments_catalog_cache",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("voice", sa.String(length=32), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_fragments_catalog_cache_voice", "fragments_catalog_cache", ["voice"])

    op.create_table(
        "fragment_reveals_local",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("fragment_id", sa.String(length=64), nullable=False),
        sa.Column("revealed_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("synced", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("fragment_id", name="uq_reveal_fragment_once"),
    )
    op.create_index("ix_reveal_revealed_at", "fragment_reveals_local", ["revealed_at"])

    op.create_table(
        "sync_state",
        sa.Column("key", sa.String(length=128), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("sync_state")
    op.drop_index("ix_reveal_revealed_at", table_name="fragment_reveals_local")
    op.drop_table("fragment_reveals_local")
    op.drop_index("ix_fragments_catalog_cache_voice", table_name="fragments_catalog_cache")
    op.drop_table("fragments_catalog_cache")
    op.drop_index("ix_practice_sessions_updated_at", table_name="practice_sessions")
    op.drop_index("ix_practice_sessions_practice_id", table_name="practice_sessions")
    op.drop_table("practice_sessions")
    op.drop_table("practices")
    op.drop_index("ix_meaning_entries_updated_at", table_name="meaning_entries")
    op.drop_table("meaning_entries")
