"""Context window reduction: edit ledger, optimization, truncation and views."""

from .messages import CanonicalHistory, ContentBlock, Message, Role, StructuredBlock, TextBlock
from .ledger import ContentUpdate, DeletionRange, EditLedger, UpdateKind
from .budget import ContextWindowInfo, UsageSnapshot, estimate_view_tokens, needs_reduction
from .optimizer import DuplicateContentOptimizer
from .truncation import TRUNCATION_NOTICE, TruncationPlanner, TruncationPolicy
from .view import MaterializedView, materialize
from .manager import ContextWindowManager, ReductionResult, Session

__all__ = [
    "CanonicalHistory",
    "ContentBlock",
    "ContentUpdate",
    "ContextWindowInfo",
    "ContextWindowManager",
    "DeletionRange",
    "DuplicateContentOptimizer",
    "EditLedger",
    "MaterializedView",
    "Message",
    "ReductionResult",
    "Role",
    "Session",
    "StructuredBlock",
    "TRUNCATION_NOTICE",
    "TextBlock",
    "TruncationPlanner",
    "TruncationPolicy",
    "UpdateKind",
    "UsageSnapshot",
    "estimate_view_tokens",
    "materialize",
    "needs_reduction",
]
