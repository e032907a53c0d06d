"""upload tokens, uploaded documents and events

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "upload_tokens",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("hash", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("document_type", sa.String(length=64), nullable=False),
        sa.Column("subscriber_name", sa.String(length=256), nullable=False),
        sa.Column("issued_by", sa.String(length=128), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_upload_tokens_hash", "upload_tokens", ["hash"], unique=True)

    op.create_table(
        "uploaded_documents",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("token_id", sa.String(length=64), sa.ForeignKey("upload_tokens.id"), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("document_type", sa.String(length=64), nullable=False),
        sa.Column("filename", sa.String(length=256), nullable=False),
        sa.Column("content_type", sa.String(length=128), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("sha256", sa.String(length=64), nullable=False),
        sa.Column("location", sa.String(length=512), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_uploaded_documents_token_id", "uploaded_documents", ["token_id"], unique=True
    )
    op.create_index("ix_uploaded_documents_entity_id", "uploaded_documents", ["entity_id"])

    op.create_table(
        "events",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("level", sa.String(length=16), nullable=False),
        sa.Column("token_id", sa.String(length=64), nullable=True),
        sa.Column("fields", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        *_timestamps(),
    )
    op.create_index("ix_events_category", "events", ["category"])
    op.create_index("ix_events_token_id", "events", ["token_id"])
    op.create_index("ix_events_created_at", "events", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_events_created_at", table_name="events")
    op.drop_index("ix_events_token_id", table_name="events")
    op.drop_index("ix_events_category", table_name="events")
    op.drop_table("events")
    op.drop_index("ix_uploaded_documents_entity_id", table_name="uploaded_documents")
    op.drop_index("ix_uploaded_documents_token_id", table_name="uploaded_documents")
    op.drop_table("uploaded_documents")
    op.drop_index("ix_upload_tokens_hash", table_name="upload_tokens")
    op.drop_table("upload_tokens")
