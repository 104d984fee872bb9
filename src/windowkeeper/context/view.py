"""Materialize the message sequence actually sent to the model."""

import logging
from itertools import chain
from typing import Optional

from .ledger import ContentUpdate, EditLedger
from .messages import CanonicalHistory, ContentBlock, Message, StructuredBlock, TextBlock

logger = logging.getLogger(__name__)

MaterializedView = list[Message]


def render_block(block: ContentBlock, update: Optional[ContentUpdate]) -> ContentBlock:
    """Apply a replacement to one block, keeping its shape."""
    if update is None:
        return block
    if isinstance(block, TextBlock):
        return TextBlock(text=update.replacement_body)
    if isinstance(block, StructuredBlock):
        return StructuredBlock(
            kind=block.kind,
            identifier=block.identifier,
            body=update.replacement_body,
        )
    raise TypeError(f"Not a content block: {type(block).__name__}")


def retained_indices(history_len: int, ledger: EditLedger) -> list[int]:
    """Canonical indices that survive the deletion range."""
    rng = ledger.deletion_range
    if rng is None:
        return list(range(history_len))
    head = range(0, min(rng.start, history_len))
    rest = range(min(rng.end, history_len), history_len)
    return list(chain(head, rest))


def materialize(history: CanonicalHistory, ledger: EditLedger) -> MaterializedView:
    """Combine canonical history and ledger into the view for this turn.

    Pure: neither the history nor the ledger is modified. The view keeps the
    preserved head, drops the deletion range, and renders the latest
    replacement for every retained block that has one.
    """
    updates = ledger.latest_updates()
    view: MaterializedView = []
    for index in retained_indices(len(history), ledger):
        message = history[index]
        blocks = tuple(
            render_block(block, updates.get((index, block_index)))
            for block_index, block in enumerate(message.blocks)
        )
        view.append(Message(role=message.role, blocks=blocks))
    return view
