"""
Generative-text features: summaries, simplification, sentiment and file
analysis, served by an external backend.
"""
from app.ai.client import (
    AIServiceUnavailable,
    GenerativeTextClient,
    get_ai_client,
)

__all__ = [
    "AIServiceUnavailable",
    "GenerativeTextClient",
    "get_ai_client",
]
