"""Core orchestration package for reqloom.

Subpackages:
- analysis: job lifecycle, version DAG, reuse tiers, linting, validation
- db: ORM models and session management
- queue: job delivery (HTTP relay or in-process) and callback signing
"""
