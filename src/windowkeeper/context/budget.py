"""Budget evaluation: does the conversation need reducing this turn?"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional

from .messages import Message, block_text

logger = logging.getLogger(__name__)

# Rough estimate: ~4 characters per token
CHARS_PER_TOKEN = 4

# Safety buffers for well-known window sizes
_KNOWN_SAFETY_BUFFERS = {
    64_000: 27_000,
    128_000: 30_000,
    200_000: 40_000,
}


@dataclass(frozen=True)
class UsageSnapshot:
    """Token accounting from the most recent model response."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0

    @property
    def total(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_read_tokens
            + self.cache_write_tokens
        )


def default_safety_buffer(capacity: int) -> int:
    """Safety margin kept free below the model's capacity.

    Known window sizes use fixed buffers. Anything else keeps at most 40k
    tokens, and never more than a fifth of the window.
    """
    if capacity in _KNOWN_SAFETY_BUFFERS:
        return _KNOWN_SAFETY_BUFFERS[capacity]
    return min(40_000, capacity // 5)


@dataclass(frozen=True)
class ContextWindowInfo:
    """Capacity of the selected model and the margins reserved below it."""

    capacity: int
    reserved_output_tokens: int = 0
    safety_buffer: Optional[int] = None

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError(f"capacity must be positive, got {self.capacity}")
        if self.reserved_output_tokens < 0:
            raise ValueError("reserved_output_tokens cannot be negative")
        if self.safety_buffer is not None and self.safety_buffer < 0:
            raise ValueError("safety_buffer cannot be negative")

    @property
    def effective_safety_buffer(self) -> int:
        if self.safety_buffer is not None:
            return self.safety_buffer
        return default_safety_buffer(self.capacity)

    @property
    def allowed_size(self) -> int:
        """Capacity minus reserved output and safety buffer."""
        return max(0, self.capacity - self.reserved_output_tokens - self.effective_safety_buffer)


def needs_reduction(usage: Optional[UsageSnapshot], window: ContextWindowInfo) -> bool:
    """True when the last reported usage has reached the allowed size.

    Missing usage (first turn, or a response without usage data) never
    triggers reduction.
    """
    if usage is None:
        return False
    total = usage.total
    allowed = window.allowed_size
    if total >= allowed:
        logger.info(f"Context over budget: {total} >= {allowed} allowed tokens")
        return True
    logger.debug(f"Context within budget: {total} < {allowed} allowed tokens")
    return False


def estimate_tokens(text: str) -> int:
    """Estimate token count for a string using the ~4 chars/token heuristic."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def count_view_chars(messages: Iterable[Message]) -> int:
    """Total rendered characters across all blocks of a message sequence."""
    return sum(len(block_text(block)) for message in messages for block in message.blocks)


def estimate_view_tokens(messages: Iterable[Message]) -> int:
    """Estimate token count for a materialized view."""
    return math.ceil(count_view_chars(messages) / CHARS_PER_TOKEN)


def project_usage(total_tokens: int, chars_before: int, chars_after: int) -> int:
    """Scale a reported token total by the character savings of a rewrite.

    Used to judge whether content optimization alone brought the
    conversation back under budget before any truncation is attempted.
    """
    if chars_before <= 0:
        return total_tokens
    return math.ceil(total_tokens * chars_after / chars_before)
