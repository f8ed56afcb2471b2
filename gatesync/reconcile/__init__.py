"""
Reconciliation

Diffs desired gateway objects against the local state store and applies the
change set through the admin API.
"""

from .differ import ChangeSet, ObjectKey, diff
from .state_store import LocalStateStore, StoredObject
from .sync_engine import SyncEngine, SyncReport

__all__ = [
    "ChangeSet",
    "ObjectKey",
    "diff",
    "LocalStateStore",
    "StoredObject",
    "SyncEngine",
    "SyncReport",
]
