"""initial schema"""

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS vector;')

    document_status = postgresql.ENUM('processing', 'ready', 'error', name='document_status')
    vote_value = postgresql.ENUM('up', 'down', name='vote_value')

    op.create_table('documents',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('owner_id', sa.String(255), nullable=False),
        sa.Column('title', sa.String(1024), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('source_category', sa.String(64), nullable=False),
        sa.Column('file_type', sa.String(64), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('status', document_status, nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('embedding_model', sa.String(128), nullable=True),
        sa.Column('embedding_dim', sa.Integer(), nullable=True),
        sa.Column('components', sa.JSON(none_as_null=True), nullable=True),
        sa.Column('metadata_json', sa.JSON(), nullable=False),
        sa.Column('uploaded_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_documents_owner_id', 'documents', ['owner_id'])
    op.create_index('ix_documents_source_category', 'documents', ['source_category'])
    op.create_index('ix_documents_status', 'documents', ['status'])
    op.create_index('ix_documents_uploaded_at', 'documents', ['uploaded_at'])

    op.create_table('chunks',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('document_id', sa.Uuid(), sa.ForeignKey('documents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('token_count', sa.Integer(), nullable=False),
        sa.Column('start_offset', sa.Integer(), nullable=False),
        sa.Column('end_offset', sa.Integer(), nullable=False),
        sa.Column('is_complete_section', sa.Boolean(), nullable=False),
        sa.Column('heading', sa.String(1024), nullable=True),
        sa.Column('text_hash', sa.String(128), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('document_id', 'position', name='uq_chunk_doc_position'),
    )
    op.create_index('ix_chunks_document_id', 'chunks', ['document_id'])
    op.create_index('ix_chunks_text_hash', 'chunks', ['text_hash'])

    op.create_table('embeddings',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('chunk_id', sa.Uuid(), sa.ForeignKey('chunks.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('model', sa.String(128), nullable=False),
        sa.Column('vector', Vector(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table('answer_cache',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('answer_id', sa.Uuid(), nullable=False, unique=True),
        sa.Column('canonical_id', sa.String(512), nullable=False),
        sa.Column('platform', sa.String(64), nullable=False),
        sa.Column('version', sa.String(64), nullable=True),
        sa.Column('question', sa.Text(), nullable=False),
        sa.Column('answer_text', sa.Text(), nullable=False),
        sa.Column('sources', sa.JSON(), nullable=False),
        sa.Column('popularity', sa.Integer(), nullable=False),
        sa.Column('views', sa.Integer(), nullable=False),
        sa.Column('ups', sa.Integer(), nullable=False),
        sa.Column('downs', sa.Integer(), nullable=False),
        sa.Column('quality_score', sa.Float(), nullable=False),
        sa.Column('published_url', sa.String(2048), nullable=True),
        sa.Column('model_used', sa.String(128), nullable=True),
        sa.Column('prompt_tokens', sa.Integer(), nullable=False),
        sa.Column('completion_tokens', sa.Integer(), nullable=False),
        sa.Column('total_tokens', sa.Integer(), nullable=False),
        sa.Column('latency_ms', sa.Integer(), nullable=False),
        sa.Column('context_quality', sa.Float(), nullable=False),
        sa.Column('confidence', sa.String(16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_answer_cache_canonical_id', 'answer_cache', ['canonical_id'])
    op.create_index('ix_answer_cache_platform', 'answer_cache', ['platform'])
    op.create_index('ix_answer_cache_canonical_created', 'answer_cache', ['canonical_id', 'created_at'])

    op.create_table('votes',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('answer_id', sa.Uuid(), sa.ForeignKey('answer_cache.answer_id', ondelete='CASCADE'), nullable=False),
        sa.Column('vote', vote_value, nullable=False),
        sa.Column('reason', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('user_id', 'answer_id', name='uq_vote_user_answer'),
    )
    op.create_index('ix_votes_user_id', 'votes', ['user_id'])
    op.create_index('ix_votes_answer_id', 'votes', ['answer_id'])


def downgrade() -> None:
    op.drop_table('votes')
    op.drop_table('answer_cache')
    op.drop_table('embeddings')
    op.drop_table('chunks')
    op.drop_table('documents')
    op.execute('DROP TYPE IF EXISTS vote_value')
    op.execute('DROP TYPE IF EXISTS document_status')
