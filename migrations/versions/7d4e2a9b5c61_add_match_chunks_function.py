"""add match_chunks function

Server-side ranking used by VectorStore.search. The threshold has no
default: callers always pass the similarity floor explicitly.

Revision ID: 7d4e2a9b5c61
Revises: 3f1c9a7e2b10
Create Date: 2026-10-18 09:40:02.551873

"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7d4e2a9b5c61"
down_revision: str | Sequence[str] | None = "3f1c9a7e2b10"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


MATCH_CHUNKS_DDL = """
CREATE OR REPLACE FUNCTION match_chunks(
    query_embedding vector(384),
    match_repository_id text,
    match_threshold float,
    match_count int
)
RETURNS TABLE (
    chunk_index int,
    content text,
    file_path varchar,
    metadata jsonb,
    similarity float
)
LANGUAGE plpgsql STABLE
AS $$
BEGIN
    RETURN QUERY
    SELECT
        c.chunk_index,
        c.content,
        c.file_path,
        c.metadata,
        (1 - (c.embedding <=> query_embedding))::float AS similarity
    FROM chunks c
    WHERE c.repository_id = match_repository_id
      AND 1 - (c.embedding <=> query_embedding) >= match_threshold
    ORDER BY c.embedding <=> query_embedding, c.chunk_index
    LIMIT match_count;
END;
$$
"""


def upgrade() -> None:
    """Create match_chunks(query, repository, threshold, count)."""
    op.execute(MATCH_CHUNKS_DDL)


def downgrade() -> None:
    """Drop match_chunks."""
    op.execute("DROP FUNCTION IF EXISTS match_chunks(vector, text, float, int)")
