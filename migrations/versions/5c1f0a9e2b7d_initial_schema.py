"""initial schema

Revision ID: 5c1f0a9e2b7d
Revises:
Create Date: 2026-10-19 09:12:44.518203

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1f0a9e2b7d"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the notes, boundary and bookkeeping tables."""
    op.create_table(
        "boundary_generation",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("epoch", sa.Integer(), nullable=False),
        sa.Column("country_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_boundary_generation_role"), "boundary_generation", ["role"], unique=False
    )

    op.create_table(
        "country",
        sa.Column("generation_id", sa.Integer(), nullable=False),
        sa.Column("country_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("name_en", sa.Text(), nullable=True),
        sa.Column("name_es", sa.Text(), nullable=True),
        sa.Column("geom", sa.LargeBinary(), nullable=False),
        sa.Column("min_lon", sa.Float(), nullable=False),
        sa.Column("min_lat", sa.Float(), nullable=False),
        sa.Column("max_lon", sa.Float(), nullable=False),
        sa.Column("max_lat", sa.Float(), nullable=False),
        sa.Column("zone_ranks", sa.JSON(), nullable=False),
        sa.Column("is_maritime", sa.Boolean(), nullable=False),
        sa.Column("updated", sa.Boolean(), nullable=False),
        sa.Column("update_failed", sa.Boolean(), nullable=False),
        sa.Column("last_update_attempt", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["generation_id"], ["boundary_generation.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("generation_id", "country_id"),
    )
    op.create_index(
        "ix_country_generation_bbox",
        "country",
        ["generation_id", "min_lon", "max_lon"],
        unique=False,
    )
    op.create_index(
        "ix_country_generation_updated", "country", ["generation_id", "updated"], unique=False
    )

    op.create_table(
        "known_water_area",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("geom", sa.LargeBinary(), nullable=True),
        sa.Column("point_lon", sa.Float(), nullable=True),
        sa.Column("point_lat", sa.Float(), nullable=True),
        sa.Column("is_special_point", sa.Boolean(), nullable=False),
        sa.Column("source", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_known_water_area_source"), "known_water_area", ["source"], unique=False
    )

    op.create_table(
        "note",
        sa.Column("note_id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("country_id", sa.Integer(), nullable=True),
        sa.Column("insert_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_epoch", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("note_id"),
    )
    op.create_index(op.f("ix_note_country_id"), "note", ["country_id"], unique=False)
    op.create_index("ix_note_coordinates", "note", ["longitude", "latitude"], unique=False)

    op.create_table(
        "note_comment",
        sa.Column("id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("note_id", sa.BigInteger(), nullable=False),
        sa.Column("sequence_action", sa.Integer(), nullable=False),
        sa.Column("event", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=True),
        sa.Column("username", sa.Text(), nullable=True),
        sa.Column("processing_time", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["note_id"], ["note.note_id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("note_id", "sequence_action", name="uq_note_comment_sequence"),
    )
    op.create_index(
        "ix_note_comment_event", "note_comment", ["note_id", "event", "created_at"], unique=False
    )

    op.create_table(
        "note_comment_text",
        sa.Column("id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("note_id", sa.BigInteger(), nullable=False),
        sa.Column("sequence_action", sa.Integer(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("processing_time", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "note_id", "sequence_action", name="uq_note_comment_text_sequence"
        ),
    )

    op.create_table(
        "note_user",
        sa.Column("user_id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("username", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "watermark",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "process_lock",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("holder_pid", sa.Integer(), nullable=False),
        sa.Column("tag", sa.String(length=32), nullable=False),
        sa.Column("hostname", sa.String(length=255), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "id_sequence",
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("last_value", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )
    op.create_table(
        "gap_record",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("gap_type", sa.String(length=64), nullable=False),
        sa.Column("gap_count", sa.Integer(), nullable=False),
        sa.Column("total_count", sa.Integer(), nullable=False),
        sa.Column("gap_percentage", sa.Float(), nullable=False),
        sa.Column("affected_ids", sa.JSON(), nullable=False),
        sa.Column("error_details", sa.Text(), nullable=True),
        sa.Column("processed", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_gap_record_gap_type"), "gap_record", ["gap_type"], unique=False)


def downgrade() -> None:
    """Drop every table created by this revision."""
    op.drop_index(op.f("ix_gap_record_gap_type"), table_name="gap_record")
    op.drop_table("gap_record")
    op.drop_table("id_sequence")
    op.drop_table("process_lock")
    op.drop_table("watermark")
    op.drop_table("note_user")
    op.drop_table("note_comment_text")
    op.drop_index("ix_note_comment_event", table_name="note_comment")
    op.drop_table("note_comment")
    op.drop_index("ix_note_coordinates", table_name="note")
    op.drop_index(op.f("ix_note_country_id"), table_name="note")
    op.drop_table("note")
    op.drop_index(op.f("ix_known_water_area_source"), table_name="known_water_area")
    op.drop_table("known_water_area")
    op.drop_index("ix_country_generation_updated", table_name="country")
    op.drop_index("ix_country_generation_bbox", table_name="country")
    op.drop_table("country")
    op.drop_index(op.f("ix_boundary_generation_role"), table_name="boundary_generation")
    op.drop_table("boundary_generation")
