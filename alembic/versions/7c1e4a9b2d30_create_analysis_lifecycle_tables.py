"""create analysis lifecycle tables

Revision ID: 7c1e4a9b2d30
Revises:
Create Date: 2026-10-17 09:12:04.518327

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

from reqloom.core.config import get_embedding_dim

# revision identifiers, used by Alembic.
revision: str = '7c1e4a9b2d30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Resolved the same way as the ORM column
EMBED_DIM = get_embedding_dim()


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # 1. users
    op.create_table('users',
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('username', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('api_key', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('user_id'),
        sa.UniqueConstraint('username'),
        sa.UniqueConstraint('email'),
    )
    op.create_index('ix_users_api_key', 'users', ['api_key'])

    # 2. projects
    op.create_table('projects',
        sa.Column('project_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('project_id'),
    )
    op.create_index('idx_user_projects', 'projects', ['user_id', 'created_at'])

    # 3. analyses (one row per document version)
    op.create_table('analyses',
        sa.Column('analysis_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('root_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('parent_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('input_text', sa.Text(), server_default='', nullable=False),
        sa.Column('result_json', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('generated_code', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('status', sa.String(length=20), server_default='PENDING', nullable=False),
        sa.Column('workflow_status', sa.String(length=20), nullable=True),
        sa.Column('is_finalized', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('vector_signature', Vector(EMBED_DIM), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()),
                  server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        sa.Column('completed_at', sa.TIMESTAMP(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['project_id'], ['projects.project_id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['parent_id'], ['analyses.analysis_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('analysis_id'),
        sa.UniqueConstraint('root_id', 'version', name='uq_analysis_root_version'),
    )
    op.create_index('idx_analyses_root_version', 'analyses', ['root_id', 'version'])
    op.create_index('idx_analyses_user_created', 'analyses', ['user_id', 'created_at'])
    op.create_index('idx_analyses_finalized', 'analyses', ['is_finalized'])
    # ANN index over finalized signatures only
    op.execute(
        "CREATE INDEX idx_analyses_signature_hnsw ON analyses "
        "USING hnsw (vector_signature vector_cosine_ops) WHERE is_finalized"
    )

    # 4. knowledge_chunks
    op.create_table('knowledge_chunks',
        sa.Column('chunk_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('type', sa.String(length=64), nullable=False),
        sa.Column('content', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('hash', sa.String(length=64), nullable=False),
        sa.Column('tags', postgresql.JSONB(astext_type=sa.Text()),
                  server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column('source_analysis_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['source_analysis_id'], ['analyses.analysis_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('chunk_id'),
        sa.UniqueConstraint('hash'),
    )

    # 5. chat_messages
    op.create_table('chat_messages',
        sa.Column('message_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('analysis_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['analysis_id'], ['analyses.analysis_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('message_id'),
    )
    op.create_index('idx_chat_analysis_created', 'chat_messages', ['analysis_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('idx_chat_analysis_created', table_name='chat_messages')
    op.drop_table('chat_messages')
    op.drop_table('knowledge_chunks')
    op.execute("DROP INDEX IF EXISTS idx_analyses_signature_hnsw")
    op.drop_index('idx_analyses_finalized', table_name='analyses')
    op.drop_index('idx_analyses_user_created', table_name='analyses')
    op.drop_index('idx_analyses_root_version', table_name='analyses')
    op.drop_table('analyses')
    op.drop_index('idx_user_projects', table_name='projects')
    op.drop_table('projects')
    op.drop_index('ix_users_api_key', table_name='users')
    op.drop_table('users')
