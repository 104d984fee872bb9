"""Duplicate-content optimization.

Collapses repeated structured content (e.g. the same file read several times)
down to its newest copy. Older copies are replaced in the view by a short
notice pointing forward in the conversation. The scan is incremental: only
messages past the ledger watermark are examined, and the authoritative
occurrence of every identifier is remembered in the ledger between passes.
"""

import logging
import time
from typing import Optional

from .budget import estimate_tokens
from .ledger import ContentUpdate, EditLedger, Location, UpdateKind
from .messages import CanonicalHistory, StructuredBlock, TextBlock

logger = logging.getLogger(__name__)

SUPERSEDED_NOTICE = (
    "[{kind} for '{identifier}'] This content has been superseded by a newer "
    "copy later in the conversation."
)


def superseded_notice(block: StructuredBlock) -> str:
    return SUPERSEDED_NOTICE.format(kind=block.kind, identifier=block.identifier)


class DuplicateContentOptimizer:
    """Replaces stale copies of repeated structured blocks with placeholders."""

    def optimize(
        self,
        history: CanonicalHistory,
        ledger: EditLedger,
        now: Optional[float] = None,
    ) -> int:
        """Scan history past the watermark and supersede older duplicates.

        Args:
            history: Canonical history (read only).
            ledger: Ledger to append updates to; its watermark and
                occurrence index are advanced.
            now: Timestamp for new updates. Defaults to time.time().

        Returns:
            Number of content updates added.
        """
        start = ledger.watermark
        end = len(history)
        if start >= end:
            return 0

        timestamp = time.time() if now is None else now
        added = 0

        for message_index in range(start, end):
            for block_index, block in enumerate(history[message_index].blocks):
                if isinstance(block, TextBlock):
                    continue
                if not isinstance(block, StructuredBlock):
                    raise TypeError(
                        f"Unexpected content block at ({message_index}, {block_index}): "
                        f"{type(block).__name__}"
                    )
                if not block.is_well_formed:
                    logger.debug(
                        f"Skipping malformed structured block at ({message_index}, {block_index})"
                    )
                    continue

                location = (message_index, block_index)
                previous = ledger.latest_occurrences.get(block.identifier)
                if previous is not None and previous != location:
                    if self._supersede(history, ledger, previous, timestamp):
                        added += 1
                ledger.latest_occurrences[block.identifier] = location

        ledger.watermark = end
        if added:
            logger.info(
                f"Superseded {added} duplicate block(s) in messages {start}..{end - 1}"
            )
        return added

    @staticmethod
    def _supersede(
        history: CanonicalHistory,
        ledger: EditLedger,
        location: Location,
        timestamp: float,
    ) -> bool:
        message_index, block_index = location
        try:
            block = history[message_index].blocks[block_index]
        except IndexError:
            logger.warning(f"Recorded occurrence {location} is outside the history, skipping")
            return False
        if not isinstance(block, StructuredBlock):
            return False

        notice = superseded_notice(block)
        existing = ledger.latest_update(message_index, block_index)
        if existing is not None and existing.replacement_body.startswith(notice):
            return False

        # A truncation notice appended to this block stays after the placeholder
        suffix = ""
        if (
            existing is not None
            and existing.kind == UpdateKind.TRUNCATION_NOTICE
            and existing.replacement_body.startswith(block.body)
        ):
            suffix = existing.replacement_body[len(block.body):]

        ledger.add_update(
            ContentUpdate(
                message_index=message_index,
                block_index=block_index,
                replacement_body=notice + suffix,
                timestamp=timestamp,
                kind=UpdateKind.SUPERSEDED,
            )
        )
        logger.debug(
            f"Superseded '{block.identifier}' at {location}, "
            f"~{estimate_tokens(block.body) - estimate_tokens(notice)} tokens freed"
        )
        return True
