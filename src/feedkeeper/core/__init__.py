"""核心业务逻辑."""

from feedkeeper.core.events import (
    EventStream,
    FeedSynced,
    SyncEvent,
    SyncFinished,
    SyncNotifier,
    SyncStarted,
)
from feedkeeper.core.facade import QueryFacade
from feedkeeper.core.store import ArticleFilter, MergeResult, Store, UpsertOutcome
from feedkeeper.core.sync import SyncEngine

__all__ = [
    "ArticleFilter",
    "EventStream",
    "FeedSynced",
    "MergeResult",
    "QueryFacade",
    "Store",
    "SyncEngine",
    "SyncEvent",
    "SyncFinished",
    "SyncNotifier",
    "SyncStarted",
    "UpsertOutcome",
]
