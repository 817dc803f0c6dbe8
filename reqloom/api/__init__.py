"""
REST API module for reqloom.

Provides FastAPI endpoints for:
- Analysis submission, status polling and drafts
- Revisions (chat, edit, regenerate), history and diff
- Finalization
- The signed delivery callback consumed by the queue
"""
