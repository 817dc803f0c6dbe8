"""reqloom - requirements analysis orchestrator.

Turns natural-language or structured requirements into versioned,
quality-scored specification documents via queued LLM inference.
"""

__version__ = "0.1.0"
