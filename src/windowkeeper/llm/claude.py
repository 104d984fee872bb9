"""Glue between Claude API payloads and the context window manager."""

import logging
from typing import Any, Optional

from anthropic.types import MessageParam, TextBlockParam

from ..context.budget import UsageSnapshot
from ..context.messages import ContentBlock, Message, StructuredBlock, TextBlock

logger = logging.getLogger(__name__)

STRUCTURED_HEADER = "[{kind} for '{identifier}'] Result:"


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def usage_from_response(response: Any) -> Optional[UsageSnapshot]:
    """Build a usage snapshot from a Claude response.

    Accepts an anthropic Message, its Usage, or the equivalent raw dicts.
    Cache fields missing from the response count as zero.

    Returns:
        The snapshot, or None if the response carries no usage data.
    """
    if response is None:
        return None
    usage = _field(response, "usage")
    if usage is None and _field(response, "input_tokens") is not None:
        usage = response
    if usage is None or _field(usage, "input_tokens") is None:
        logger.debug("Response carried no usage data")
        return None

    return UsageSnapshot(
        input_tokens=_field(usage, "input_tokens") or 0,
        output_tokens=_field(usage, "output_tokens") or 0,
        cache_read_tokens=_field(usage, "cache_read_input_tokens") or 0,
        cache_write_tokens=_field(usage, "cache_creation_input_tokens") or 0,
    )


def render_block(block: ContentBlock) -> TextBlockParam:
    """Render one content block as a Claude text block."""
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, StructuredBlock):
        header = STRUCTURED_HEADER.format(kind=block.kind, identifier=block.identifier or "unknown")
        return {"type": "text", "text": f"{header}\n{block.body}"}
    raise TypeError(f"Not a content block: {type(block).__name__}")


def to_message_params(view: list[Message]) -> list[MessageParam]:
    """Render a materialized view as messages for the Claude API."""
    return [
        {
            "role": message.role.value,
            "content": [render_block(block) for block in message.blocks],
        }
        for message in view
    ]
