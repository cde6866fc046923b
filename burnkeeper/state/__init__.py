"""
State management package.

This package contains the file-backed record store, the Ledger of Record
built on top of it, and the burn submission journal.
"""

from burnkeeper.state.journal import BurnJournal, JournalEntryType, PendingIntent
from burnkeeper.state.records import LedgerOfRecord
from burnkeeper.state.store import RecordStore

__all__ = [
    "BurnJournal",
    "JournalEntryType",
    "PendingIntent",
    "LedgerOfRecord",
    "RecordStore",
]
