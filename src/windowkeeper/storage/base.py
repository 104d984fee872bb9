"""Persistence contract for edit ledgers."""

from typing import Optional, Protocol, runtime_checkable

from ..context.ledger import EditLedger
from ..errors import PersistenceError

__all__ = ["LedgerStore", "PersistenceError"]


@runtime_checkable
class LedgerStore(Protocol):
    """Load/save edit ledgers keyed by session id.

    save() must be atomic: a later load() sees either the previous record
    or the new one, never a partial write.
    """

    def load(self, session_id: str) -> Optional[EditLedger]:
        """Return the stored ledger, or None if the session has none.

        Raises:
            PersistenceError: If a record exists but cannot be read.
        """
        ...

    def save(self, session_id: str, ledger: EditLedger) -> None:
        """Persist the ledger for a session.

        Raises:
            PersistenceError: If the write fails.
        """
        ...

    def delete(self, session_id: str) -> bool:
        """Remove a stored ledger. Returns True if one existed."""
        ...
