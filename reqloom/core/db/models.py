"""
SQLAlchemy ORM Models for reqloom

Requirements-analysis artifact store:
- User: account owning analyses (session or API-key auth)
- Project: optional grouping for analyses (projectRef)
- Analysis: one row per document version; lineage via root_id/parent_id
- KnowledgeChunk: deduplicated fragment shredded from a finalized analysis
- ChatMessage: conversational revision exchange per analysis version
"""

from sqlalchemy import (
    Column, String, Integer, Text, TIMESTAMP, ForeignKey, JSON,
    Index, TypeDecorator, Boolean, UniqueConstraint,
)
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.dialects.postgresql import UUID as PostgreSQL_UUID, JSONB
from pgvector.sqlalchemy import Vector
import uuid
from datetime import datetime

from ..config import get_embedding_dim

Base = declarative_base()

# Fixed for the life of the process; must match the embedding model output
EMBED_DIM = get_embedding_dim()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")

# pgvector column on PostgreSQL, JSON float list elsewhere
VectorType = JSON(none_as_null=True).with_variant(Vector(EMBED_DIM), "postgresql")


# UUID type that works with both PostgreSQL and SQLite
class UUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL's UUID type when available, otherwise stores as String(36).
    """
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PostgreSQL_UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == 'postgresql':
            return value
        if isinstance(value, uuid.UUID):
            return str(value)
        return str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


# =============================================================================
# Accounts
# =============================================================================

class User(Base):
    """Account that owns analyses."""
    __tablename__ = "users"

    user_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    username = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), unique=True)
    api_key = Column(String(255), nullable=True, index=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    projects = relationship("Project", back_populates="user", cascade="all, delete-orphan")
    analyses = relationship("Analysis", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(user_id={self.user_id}, username='{self.username}')>"


class Project(Base):
    """Optional grouping of analyses."""
    __tablename__ = "projects"
    __table_args__ = (
        Index('idx_user_projects', 'user_id', 'created_at'),
    )

    project_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="projects")
    analyses = relationship("Analysis", back_populates="project")

    def __repr__(self):
        return f"<Project(project_id={self.project_id}, name='{self.name}')>"


# =============================================================================
# Analysis lineage
# =============================================================================

class Analysis(Base):
    """One version of a requirements document.

    Lineage: root_id is the first version's id (its own id for a root),
    parent_id the version it was derived from, version is max+1 within
    the root. status is the job lifecycle; workflow_status is the
    pre-inference intake state.
    """
    __tablename__ = "analyses"
    __table_args__ = (
        UniqueConstraint('root_id', 'version', name='uq_analysis_root_version'),
        Index('idx_analyses_root_version', 'root_id', 'version'),
        Index('idx_analyses_user_created', 'user_id', 'created_at'),
        Index('idx_analyses_finalized', 'is_finalized'),
    )

    analysis_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    project_id = Column(UUID(), ForeignKey("projects.project_id", ondelete="SET NULL"), nullable=True)
    root_id = Column(UUID(), nullable=False)
    parent_id = Column(UUID(), ForeignKey("analyses.analysis_id", ondelete="SET NULL"), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    title = Column(String(255))
    input_text = Column(Text, nullable=False, default="")
    result_json = Column(JSONType, nullable=True)
    generated_code = Column(JSONType, nullable=True)
    status = Column(String(20), nullable=False, default="PENDING")          # PENDING|COMPLETED|FAILED
    workflow_status = Column(String(20), nullable=True)                     # DRAFT|VALIDATING|VALIDATED|NEEDS_FIX|COMPLETED
    is_finalized = Column(Boolean, nullable=False, default=False)
    vector_signature = Column(VectorType, nullable=True)
    analysis_metadata = Column("metadata", JSONType, nullable=False, default=dict)
    error_message = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    completed_at = Column(TIMESTAMP, nullable=True)

    user = relationship("User", back_populates="analyses")
    project = relationship("Project", back_populates="analyses")
    messages = relationship(
        "ChatMessage", back_populates="analysis", cascade="all, delete-orphan",
        order_by="ChatMessage.created_at",
    )

    def __repr__(self):
        return (
            f"<Analysis(analysis_id={self.analysis_id}, root={self.root_id}, "
            f"v{self.version}, status='{self.status}')>"
        )


class KnowledgeChunk(Base):
    """Reusable fragment of a finalized analysis. Immutable, unique by hash."""
    __tablename__ = "knowledge_chunks"

    chunk_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    type = Column(String(64), nullable=False)
    content = Column(JSONType, nullable=False)
    hash = Column(String(64), nullable=False, unique=True)
    tags = Column(JSONType, nullable=False, default=list)
    source_analysis_id = Column(
        UUID(), ForeignKey("analyses.analysis_id", ondelete="SET NULL"), nullable=True,
    )
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<KnowledgeChunk(type='{self.type}', hash='{self.hash[:12]}')>"


class ChatMessage(Base):
    """One side of a chat revision exchange."""
    __tablename__ = "chat_messages"
    __table_args__ = (
        Index('idx_chat_analysis_created', 'analysis_id', 'created_at'),
    )

    message_id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    analysis_id = Column(UUID(), ForeignKey("analyses.analysis_id", ondelete="CASCADE"), nullable=False)
    role = Column(String(20), nullable=False)                # user | assistant
    content = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)

    analysis = relationship("Analysis", back_populates="messages")

    def __repr__(self):
        return f"<ChatMessage(analysis_id={self.analysis_id}, role='{self.role}')>"
