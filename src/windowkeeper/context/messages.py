"""Conversation data model: messages, content blocks and canonical history.

Content blocks form a closed union:
  TextBlock       : free-form text
  StructuredBlock : tool output carrying a content identifier (e.g. a file path)

Blocks are addressed by (message_index, block_index) into the canonical history.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Iterator, Optional, Union

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Speaker of a message."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class TextBlock:
    """Free-form text content."""

    text: str

    def to_dict(self) -> dict:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class StructuredBlock:
    """Tool output tied to a content identifier.

    A block whose identifier is not a non-empty string, or whose body is not
    a string, is malformed. It is still kept and rendered, but never
    deduplicated.
    """

    kind: str  # producing tool, e.g. "read_file"
    identifier: Optional[str]
    body: str

    @property
    def is_well_formed(self) -> bool:
        return isinstance(self.identifier, str) and bool(self.identifier) and isinstance(self.body, str)

    def to_dict(self) -> dict:
        return {
            "type": "structured",
            "kind": self.kind,
            "identifier": self.identifier,
            "body": self.body,
        }


ContentBlock = Union[TextBlock, StructuredBlock]


def block_from_dict(data: Any) -> ContentBlock:
    """Parse a loosely-typed block payload.

    Args:
        data: A dict with a "type" key of "text" or "structured".

    Returns:
        The matching content block.

    Raises:
        ValueError: If the payload is not a dict or has an unknown type.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Content block must be an object, got {type(data).__name__}")

    block_type = data.get("type")
    if block_type == "text":
        return TextBlock(text=str(data.get("text", "")))
    if block_type == "structured":
        identifier = data.get("identifier")
        # Identifiers are keyed as strings in the ledger record
        if isinstance(identifier, (int, float)) and not isinstance(identifier, bool):
            identifier = str(identifier)
        return StructuredBlock(
            kind=str(data.get("kind") or "tool_result"),
            identifier=identifier,
            body=data.get("body", ""),
        )
    raise ValueError(f"Unknown content block type: {block_type!r}")


def block_text(block: ContentBlock) -> str:
    """Rendered text of a block, used for size accounting."""
    if isinstance(block, TextBlock):
        return block.text
    if isinstance(block, StructuredBlock):
        return block.body if isinstance(block.body, str) else str(block.body)
    raise TypeError(f"Not a content block: {type(block).__name__}")


@dataclass(frozen=True)
class Message:
    """One turn: a role and an ordered tuple of content blocks."""

    role: Role
    blocks: tuple[ContentBlock, ...] = ()

    @classmethod
    def text(cls, role: Union[Role, str], text: str) -> "Message":
        """Shorthand for a single-text-block message."""
        return cls(role=Role(role), blocks=(TextBlock(text=text),))

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        """Build a message from an API-style dict.

        "content" may be a plain string or a list of block dicts.

        Raises:
            ValueError: On an unknown role or a content of any other type.
        """
        role = Role(data["role"])
        content = data.get("content", [])
        if isinstance(content, str):
            return cls(role=role, blocks=(TextBlock(text=content),))
        if not isinstance(content, list):
            raise ValueError(
                f"Message content must be a string or a list of blocks, got {type(content).__name__}"
            )
        return cls(role=role, blocks=tuple(block_from_dict(b) for b in content))

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "content": [block.to_dict() for block in self.blocks],
        }


class CanonicalHistory:
    """Append-only sequence of messages for one session.

    Indices are stable forever. Roles must alternate starting with user:
    even indices are user turns, odd indices are assistant turns.
    """

    def __init__(self, messages: Optional[Iterable[Message]] = None) -> None:
        self._messages: list[Message] = []
        if messages is not None:
            self.extend(messages)

    def append(self, message: Message) -> int:
        """Append a message and return its index.

        Raises:
            ValueError: If the role breaks user/assistant alternation.
        """
        index = len(self._messages)
        expected = Role.USER if index % 2 == 0 else Role.ASSISTANT
        if message.role != expected:
            raise ValueError(
                f"Invalid role at index {index}: expected {expected.value}, "
                f"got {getattr(message.role, 'value', message.role)}"
            )
        self._messages.append(message)
        return index

    def extend(self, messages: Iterable[Message]) -> None:
        for message in messages:
            self.append(message)

    @classmethod
    def from_dicts(cls, data: Iterable[dict]) -> "CanonicalHistory":
        return cls(Message.from_dict(d) for d in data)

    def to_dicts(self) -> list[dict]:
        return [m.to_dict() for m in self._messages]

    def __len__(self) -> int:
        return len(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __repr__(self) -> str:
        return f"CanonicalHistory({len(self._messages)} messages)"
