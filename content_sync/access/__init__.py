"""
Data access.

The DataAccessLayer unifies the remote and fallback stores behind one
contract; the ReconciliationQueue tracks what changed while offline.
"""

from .data_access import LAST_SYNC_KEY, DataAccessLayer
from .reconciliation import Divergence, DivergenceKind, PendingChange, ReconciliationQueue

__all__ = [
    "LAST_SYNC_KEY",
    "DataAccessLayer",
    "Divergence",
    "DivergenceKind",
    "PendingChange",
    "ReconciliationQueue",
]
