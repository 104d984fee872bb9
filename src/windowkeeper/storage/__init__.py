"""Ledger persistence backends."""

from .base import LedgerStore, PersistenceError
from .file import FileLedgerStore, get_default_store_dir
from .memory import MemoryLedgerStore

__all__ = [
    "FileLedgerStore",
    "LedgerStore",
    "MemoryLedgerStore",
    "PersistenceError",
    "get_default_store_dir",
]
