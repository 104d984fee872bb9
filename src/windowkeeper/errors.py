"""Exceptions raised by windowkeeper."""


class ContextWindowError(Exception):
    """Base class for context window management failures."""


class ContextOverflowError(ContextWindowError):
    """Raised when history cannot be truncated any further.

    The preserved head and tail pairs are all that remain, yet the
    conversation is still over budget. Retry policy belongs to the caller.
    """

    def __init__(self, message: str, history_len: int = 0, deletion_end: int = 0):
        super().__init__(message)
        self.history_len = history_len
        self.deletion_end = deletion_end


class PersistenceError(ContextWindowError):
    """Raised when a ledger cannot be loaded from or saved to a store."""

    def __init__(self, message: str, session_id: str = ""):
        super().__init__(message)
        self.session_id = session_id
