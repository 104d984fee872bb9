"""Structural truncation of conversation history.

When content optimization is not enough, a contiguous run of whole
user/assistant pairs is elided from the view. The run always starts right
after the first pair and only ever grows:

  [pair 0] [ elided ... ) [ rest ... ] [preserved tail]

Each pass removes a fraction of the rest, rounded up to a whole pair.
"""

import logging
import math
import time
from enum import Enum
from typing import Optional

from ..errors import ContextOverflowError
from .ledger import HEAD_END, ContentUpdate, DeletionRange, EditLedger, Location, UpdateKind
from .messages import CanonicalHistory, StructuredBlock, TextBlock, block_text
from .optimizer import superseded_notice

logger = logging.getLogger(__name__)

TRUNCATION_NOTICE = (
    "[NOTE] Some previous conversation history with the user has been removed "
    "to maintain optimal context window length. The initial user task and the "
    "most recent exchanges have been retained for continuity, while "
    "intermediate conversation history has been removed. Please keep this in "
    "mind as you continue assisting the user."
)

# Index of the message that carries the truncation notice.
NOTICE_MESSAGE_INDEX = 1

HALF = 0.5
THREE_QUARTERS = 0.75


class TruncationPolicy(str, Enum):
    """How much of the remaining history a truncation pass removes."""

    HALF = "half"  # remove half of the rest
    QUARTER = "quarter"  # keep only a quarter of the rest
    ADAPTIVE = "adaptive"  # quarter when more than 2x over budget, else half
    ESCALATING = "escalating"  # half first, quarter once a range exists


def _newest_superseded_copy(
    history: CanonicalHistory,
    ledger: EditLedger,
    identifier: str,
    head_end: int,
) -> Optional[Location]:
    """Newest copy of identifier before head_end, if the view shows it as superseded.

    The placeholder may also carry the truncation notice appended after it.
    """
    for message_index in reversed(range(min(head_end, len(history)))):
        blocks = history[message_index].blocks
        for block_index in reversed(range(len(blocks))):
            block = blocks[block_index]
            if not (
                isinstance(block, StructuredBlock)
                and block.is_well_formed
                and block.identifier == identifier
            ):
                continue
            latest = ledger.latest_update(message_index, block_index)
            if latest is not None and latest.replacement_body.startswith(superseded_notice(block)):
                return (message_index, block_index)
            return None
    return None


class TruncationPlanner:
    """Computes and extends the deletion range."""

    def __init__(
        self,
        policy: TruncationPolicy = TruncationPolicy.ADAPTIVE,
        preserved_tail_pairs: int = 1,
        notice: str = TRUNCATION_NOTICE,
    ) -> None:
        """Initialize truncation planner.

        Args:
            policy: Fraction schedule for each pass.
            preserved_tail_pairs: Most recent complete pairs that are never removed.
            notice: Text appended to the first assistant message once history is elided.
        """
        if preserved_tail_pairs < 1:
            raise ValueError("preserved_tail_pairs must be at least 1, the latest pair is never removed")
        self._policy = TruncationPolicy(policy)
        self._tail_pairs = preserved_tail_pairs
        self._notice = notice

    @property
    def policy(self) -> TruncationPolicy:
        return self._policy

    def removal_fraction(self, current: Optional[DeletionRange], pressure: float) -> float:
        """Fraction of the rest to remove on this pass.

        Args:
            current: Existing deletion range, if any.
            pressure: Reported usage divided by the allowed size.
        """
        if self._policy == TruncationPolicy.HALF:
            return HALF
        if self._policy == TruncationPolicy.QUARTER:
            return THREE_QUARTERS
        if self._policy == TruncationPolicy.ESCALATING:
            return HALF if current is None else THREE_QUARTERS
        return THREE_QUARTERS if pressure > 2 else HALF

    def removable_limit(self, history_len: int) -> int:
        """First index of the preserved tail, i.e. the furthest a range may reach."""
        complete_pairs = history_len // 2
        return max(0, (complete_pairs - self._tail_pairs) * 2)

    def next_range(
        self,
        history_len: int,
        current: Optional[DeletionRange],
        pressure: float = 1.0,
    ) -> DeletionRange:
        """Compute the deletion range for the next pass without applying it.

        Raises:
            ContextOverflowError: If no whole pair is left to remove between
                the preserved head and the preserved tail.
        """
        start_of_rest = current.end if current is not None else HEAD_END
        limit = self.removable_limit(history_len)
        if limit - start_of_rest < 2:
            raise ContextOverflowError(
                f"Cannot truncate further: {history_len} messages, "
                f"range ends at {start_of_rest}, preserved tail starts at {limit}",
                history_len=history_len,
                deletion_end=start_of_rest,
            )

        rest = history_len - start_of_rest
        fraction = self.removal_fraction(current, pressure)
        to_remove = max(2, math.ceil(rest * fraction / 2) * 2)
        end = min(start_of_rest + to_remove, limit)
        return DeletionRange(start=HEAD_END, end=end)

    def apply(
        self,
        history: CanonicalHistory,
        ledger: EditLedger,
        pressure: float = 1.0,
        now: Optional[float] = None,
    ) -> DeletionRange:
        """Extend the ledger's deletion range and attach the truncation notice.

        Content whose newest copy is now elided is restored at its newest
        surviving copy in the head, so the view never holds only a
        placeholder for it.

        Raises:
            ContextOverflowError: If the history cannot be truncated further.
                The ledger is left unchanged.
        """
        current = ledger.deletion_range
        new_range = self.next_range(len(history), current, pressure)
        ledger.set_deletion_range(new_range)
        logger.info(
            f"Deletion range {'extended' if current else 'created'}: "
            f"[{new_range.start}, {new_range.end}) "
            f"({new_range.pair_count} pairs elided, pressure {pressure:.2f})"
        )
        timestamp = time.time() if now is None else now
        self._restore_elided_content(history, ledger, new_range, timestamp)
        self._attach_notice(history, ledger, timestamp)
        return new_range

    @staticmethod
    def _restore_elided_content(
        history: CanonicalHistory,
        ledger: EditLedger,
        rng: DeletionRange,
        timestamp: float,
    ) -> None:
        for identifier, (message_index, _) in list(ledger.latest_occurrences.items()):
            if message_index not in rng:
                continue
            survivor = _newest_superseded_copy(history, ledger, identifier, rng.start)
            if survivor is None:
                continue

            block = history[survivor[0]].blocks[survivor[1]]
            ledger.add_update(
                ContentUpdate(
                    message_index=survivor[0],
                    block_index=survivor[1],
                    replacement_body=block.body,
                    timestamp=timestamp,
                    kind=UpdateKind.RESTORED,
                )
            )
            # A later read supersedes the restored copy, not the elided one
            ledger.latest_occurrences[identifier] = survivor
            logger.info(
                f"Restored '{identifier}' at {survivor}, newest copy at message {message_index} was elided"
            )

    def _attach_notice(self, history: CanonicalHistory, ledger: EditLedger, timestamp: float) -> None:
        if len(history) <= NOTICE_MESSAGE_INDEX:
            return
        blocks = history[NOTICE_MESSAGE_INDEX].blocks
        if not blocks:
            logger.warning("First assistant message has no content, truncation notice skipped")
            return

        block_index = next(
            (i for i, block in enumerate(blocks) if isinstance(block, TextBlock)),
            0,
        )
        existing = ledger.latest_update(NOTICE_MESSAGE_INDEX, block_index)
        if existing is not None and existing.replacement_body.endswith(self._notice):
            return

        # Build on what the view currently shows for the block
        current = existing.replacement_body if existing is not None else block_text(blocks[block_index])
        body = f"{current}\n\n{self._notice}" if current else self._notice

        ledger.add_update(
            ContentUpdate(
                message_index=NOTICE_MESSAGE_INDEX,
                block_index=block_index,
                replacement_body=body,
                timestamp=timestamp,
                kind=UpdateKind.TRUNCATION_NOTICE,
            )
        )
