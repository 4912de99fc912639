"""Repository layer for data access.

Change stores encapsulate the partitioned change table and its boundary
catalog behind the ``ChangeStore`` contract used by the change feed services.
"""

from changefeed.repositories.base import ChangeRecord, ChangeStore, ChangeStoreTransaction
from changefeed.repositories.memory import InMemoryChangeStore
from changefeed.repositories.resource_change import SqlChangeStore

__all__ = [
    "ChangeRecord",
    "ChangeStore",
    "ChangeStoreTransaction",
    "InMemoryChangeStore",
    "SqlChangeStore",
]
