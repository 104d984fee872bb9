"""JSON-file ledger store, one file per session."""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union
from urllib.parse import quote, unquote

from ..context.ledger import EditLedger
from ..errors import PersistenceError

logger = logging.getLogger(__name__)


def get_default_store_dir() -> Path:
    """Default ledger directory (XDG compliant)."""
    data_home = os.environ.get("XDG_DATA_HOME", os.path.expanduser("~/.local/share"))
    return Path(data_home) / "windowkeeper" / "sessions"


class FileLedgerStore:
    """Stores each session's ledger as <directory>/<quoted id>.json.

    Writes go to a temp file in the same directory and are moved into place
    with os.replace, which is atomic on POSIX and Windows.
    """

    SUFFIX = ".json"

    def __init__(self, directory: Optional[Union[str, Path]] = None) -> None:
        self._directory = Path(directory).expanduser() if directory else get_default_store_dir()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, session_id: str) -> Path:
        if not session_id:
            raise ValueError("session_id cannot be empty")
        return self._directory / f"{quote(session_id, safe='')}{self.SUFFIX}"

    def load(self, session_id: str) -> Optional[EditLedger]:
        path = self.path_for(session_id)
        try:
            data = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(
                f"Cannot read ledger for session {session_id}: {e}",
                session_id=session_id,
            ) from e

        try:
            ledger = EditLedger.from_json(data)
        except ValueError as e:
            raise PersistenceError(
                f"Corrupt ledger file {path}: {e}",
                session_id=session_id,
            ) from e

        logger.debug(f"Loaded ledger for session {session_id} (revision {ledger.revision})")
        return ledger

    def save(self, session_id: str, ledger: EditLedger) -> None:
        path = self.path_for(session_id)
        payload = ledger.to_json()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=str(path.parent),
                prefix=".ledger_",
                suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(temp_path, path)
            except BaseException:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise
        except OSError as e:
            raise PersistenceError(
                f"Cannot save ledger for session {session_id}: {e}",
                session_id=session_id,
            ) from e

        logger.debug(f"Saved ledger for session {session_id} to {path} (revision {ledger.revision})")

    def delete(self, session_id: str) -> bool:
        path = self.path_for(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(
                f"Cannot delete ledger for session {session_id}: {e}",
                session_id=session_id,
            ) from e
        return True

    def list_sessions(self) -> list[str]:
        """Session ids with a stored ledger."""
        if not self._directory.is_dir():
            return []
        return sorted(
            unquote(p.name[: -len(self.SUFFIX)])
            for p in self._directory.glob(f"*{self.SUFFIX}")
        )
