"""In-process ledger store."""

import logging
from typing import Optional

from ..context.ledger import EditLedger
from ..errors import PersistenceError

logger = logging.getLogger(__name__)


class MemoryLedgerStore:
    """Keeps serialized ledgers in a dict.

    Records are stored as JSON text, so every load returns an independent
    copy and serialization bugs surface exactly as they would on disk.
    """

    def __init__(self) -> None:
        self._records: dict[str, str] = {}

    def load(self, session_id: str) -> Optional[EditLedger]:
        record = self._records.get(session_id)
        if record is None:
            return None
        try:
            return EditLedger.from_json(record)
        except ValueError as e:
            raise PersistenceError(
                f"Corrupt ledger record for session {session_id}: {e}",
                session_id=session_id,
            ) from e

    def save(self, session_id: str, ledger: EditLedger) -> None:
        self._records[session_id] = ledger.to_json()
        logger.debug(f"Saved ledger for session {session_id} (revision {ledger.revision})")

    def delete(self, session_id: str) -> bool:
        return self._records.pop(session_id, None) is not None

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._records
