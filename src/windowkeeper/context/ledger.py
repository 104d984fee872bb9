"""Edit ledger: replayable content edits plus the active deletion range.

The canonical history is never mutated. Every reduction decision is recorded
here instead and applied lazily when the view is materialized. The ledger is
the unit that gets persisted per session.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# First message index that may ever be elided (pair 0 is preserved).
HEAD_END = 2

Location = tuple[int, int]  # (message_index, block_index)


class UpdateKind(str, Enum):
    """Why a block's rendered content was replaced."""

    SUPERSEDED = "superseded"
    TRUNCATION_NOTICE = "truncation_notice"
    # Original body put back once the newer copy was elided by truncation
    RESTORED = "restored"


@dataclass(frozen=True)
class ContentUpdate:
    """Replace the rendered content of one block.

    Several updates may target the same location; the one appended last wins.
    """

    message_index: int
    block_index: int
    replacement_body: str
    timestamp: float = field(default_factory=time.time)
    kind: UpdateKind = UpdateKind.SUPERSEDED

    @property
    def location(self) -> Location:
        return (self.message_index, self.block_index)

    def to_dict(self) -> dict:
        return {
            "message_index": self.message_index,
            "block_index": self.block_index,
            "timestamp": self.timestamp,
            "replacement_body": self.replacement_body,
            "kind": self.kind.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ContentUpdate":
        return cls(
            message_index=int(data["message_index"]),
            block_index=int(data["block_index"]),
            replacement_body=str(data["replacement_body"]),
            timestamp=float(data["timestamp"]),
            kind=UpdateKind(data.get("kind", UpdateKind.SUPERSEDED.value)),
        )


@dataclass(frozen=True)
class DeletionRange:
    """Half-open span [start, end) of message indices elided from the view.

    Always pair-aligned: both bounds even and start >= 2, so the first
    user/assistant pair is never removed.
    """

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < HEAD_END:
            raise ValueError(f"Deletion range must start at or after {HEAD_END}, got {self.start}")
        if self.start % 2 or self.end % 2:
            raise ValueError(f"Deletion range must be pair-aligned, got [{self.start}, {self.end})")
        if self.end <= self.start:
            raise ValueError(f"Deletion range must be non-empty, got [{self.start}, {self.end})")

    @property
    def message_count(self) -> int:
        return self.end - self.start

    @property
    def pair_count(self) -> int:
        return self.message_count // 2

    def __contains__(self, index: object) -> bool:
        return isinstance(index, int) and self.start <= index < self.end

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: dict) -> "DeletionRange":
        return cls(start=int(data["start"]), end=int(data["end"]))


@dataclass
class EditLedger:
    """All content updates, the deletion range and the optimizer scan state."""

    updates: list[ContentUpdate] = field(default_factory=list)
    deletion_range: Optional[DeletionRange] = None
    # History index up to which the optimizer has already scanned.
    watermark: int = 0
    # identifier -> location of its authoritative (newest) occurrence
    latest_occurrences: dict[str, Location] = field(default_factory=dict)
    revision: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.updates and self.deletion_range is None and self.watermark == 0

    def add_update(self, update: ContentUpdate) -> None:
        self.updates.append(update)
        logger.debug(
            f"Ledger update {update.kind.value} at "
            f"({update.message_index}, {update.block_index}), "
            f"{len(self.updates)} updates total"
        )

    def latest_update(self, message_index: int, block_index: int) -> Optional[ContentUpdate]:
        """Most recent update for a location, or None."""
        for update in reversed(self.updates):
            if update.message_index == message_index and update.block_index == block_index:
                return update
        return None

    def latest_updates(self) -> dict[Location, ContentUpdate]:
        """Authoritative update per location (last write wins)."""
        latest: dict[Location, ContentUpdate] = {}
        for update in self.updates:
            latest[update.location] = update
        return latest

    def set_deletion_range(self, new_range: DeletionRange) -> None:
        """Install a new deletion range.

        Deletions are monotonic: start never moves and end never shrinks.

        Raises:
            ValueError: If the new range would move start or shrink end.
        """
        current = self.deletion_range
        if current is not None:
            if new_range.start != current.start:
                raise ValueError(
                    f"Deletion range start cannot move ({current.start} -> {new_range.start})"
                )
            if new_range.end < current.end:
                raise ValueError(
                    f"Deletion range cannot shrink ({current.end} -> {new_range.end})"
                )
        self.deletion_range = new_range

    def to_dict(self) -> dict:
        return {
            "schema_version": SCHEMA_VERSION,
            "revision": self.revision,
            "watermark": self.watermark,
            "deletion_range": self.deletion_range.to_dict() if self.deletion_range else None,
            "updates": [u.to_dict() for u in self.updates],
            "latest_occurrences": {
                ident: list(loc) for ident, loc in self.latest_occurrences.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EditLedger":
        """Rebuild a ledger from its persisted record.

        Raises:
            ValueError: On an unknown schema version or malformed fields.
        """
        version = data.get("schema_version")
        if version != SCHEMA_VERSION:
            raise ValueError(f"Unsupported ledger schema version: {version!r}")

        raw_range = data.get("deletion_range")
        try:
            return cls(
                updates=[ContentUpdate.from_dict(u) for u in data.get("updates", [])],
                deletion_range=DeletionRange.from_dict(raw_range) if raw_range else None,
                watermark=int(data.get("watermark", 0)),
                latest_occurrences={
                    str(ident): (int(loc[0]), int(loc[1]))
                    for ident, loc in data.get("latest_occurrences", {}).items()
                },
                revision=int(data.get("revision", 0)),
            )
        except (KeyError, TypeError, IndexError) as e:
            raise ValueError(f"Malformed ledger record: {e}") from e

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, data: str) -> "EditLedger":
        parsed = json.loads(data)
        if not isinstance(parsed, dict):
            raise ValueError("Ledger record must be a JSON object")
        return cls.from_dict(parsed)

    def copy(self) -> "EditLedger":
        return EditLedger.from_dict(self.to_dict())
