"""
Database module for reqloom.

Exports:
- DatabaseManager: Database connection and session management
- wait_for_db: Database availability checker with retry logic
- Models: User, Project, Analysis, KnowledgeChunk, ChatMessage
- Base: SQLAlchemy declarative base
"""

from .db import DatabaseManager, wait_for_db
from .models import (
    Base,
    User,
    Project,
    Analysis,
    KnowledgeChunk,
    ChatMessage,
)

__all__ = [
    # Database management
    "DatabaseManager",
    "wait_for_db",

    # ORM models
    "Base",
    "User",
    "Project",
    "Analysis",
    "KnowledgeChunk",
    "ChatMessage",
]
