"""windowkeeper - keep LLM conversation history inside the context window."""

from .context import (
    CanonicalHistory,
    ContextWindowInfo,
    ContextWindowManager,
    DeletionRange,
    EditLedger,
    Message,
    ReductionResult,
    Session,
    UsageSnapshot,
)
from .errors import ContextOverflowError, ContextWindowError, PersistenceError

__version__ = "0.1.0"

__all__ = [
    "CanonicalHistory",
    "ContextOverflowError",
    "ContextWindowError",
    "ContextWindowInfo",
    "ContextWindowManager",
    "DeletionRange",
    "EditLedger",
    "Message",
    "PersistenceError",
    "ReductionResult",
    "Session",
    "UsageSnapshot",
]
