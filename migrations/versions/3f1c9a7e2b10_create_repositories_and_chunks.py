"""create repositories and chunks

Revision ID: 3f1c9a7e2b10
Revises:
Create Date: 2026-10-18 09:12:44.318204

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "3f1c9a7e2b10"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create repositories and chunks tables for the RepoChat pipeline."""
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # -- repositories table --
    op.create_table(
        "repositories",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("url", sa.String(500), nullable=False),
        sa.Column("owner", sa.String(200), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default="processing",
        ),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("chunk_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("file_tree", sa.Text(), nullable=True),
        sa.Column("languages", JSONB(), nullable=True),
        sa.Column("framework", sa.String(100), nullable=True),
        sa.Column("readme", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("default_branch", sa.String(200), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner", "name", name="uq_repositories_owner_name"),
        sa.CheckConstraint(
            "status IN ('processing', 'ready', 'error')",
            name="ck_repositories_status",
        ),
    )
    op.create_index("ix_repositories_status", "repositories", ["status"])

    # -- chunks table --
    op.create_table(
        "chunks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("repository_id", sa.String(64), nullable=False),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("file_path", sa.String(1000), nullable=True),
        sa.Column("embedding", Vector(384), nullable=False),
        sa.Column(
            "metadata",
            JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["repository_id"],
            ["repositories.id"],
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "repository_id", "chunk_index", name="uq_chunks_repository_chunk"
        ),
    )
    op.create_index("ix_chunks_repository_id", "chunks", ["repository_id"])

    # HNSW index for fast cosine similarity search
    op.execute(
        """
        CREATE INDEX ix_chunks_embedding_hnsw
        ON chunks
        USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 64)
        """
    )


def downgrade() -> None:
    """Drop chunks and repositories tables."""
    op.execute("DROP INDEX IF EXISTS ix_chunks_embedding_hnsw")
    op.drop_index("ix_chunks_repository_id", table_name="chunks")
    op.drop_table("chunks")
    op.drop_index("ix_repositories_status", table_name="repositories")
    op.drop_table("repositories")
