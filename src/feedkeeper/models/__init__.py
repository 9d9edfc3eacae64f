"""数据模型."""

from feedkeeper.models.article import Article, article_id_for
from feedkeeper.models.database import (
    SCHEMA_VERSION,
    create_engine,
    create_session_factory,
    init_db,
)
from feedkeeper.models.feed import (
    DedupStrategy,
    Feed,
    FeedStatus,
    FeedSummary,
    feed_id_for_url,
)
from feedkeeper.models.schema import SchemaVersion
from feedkeeper.models.sync import SyncAttempt, SyncOutcome, SyncProgress

__all__ = [
    "SCHEMA_VERSION",
    "Article",
    "DedupStrategy",
    "Feed",
    "FeedStatus",
    "FeedSummary",
    "SchemaVersion",
    "SyncAttempt",
    "SyncOutcome",
    "SyncProgress",
    "article_id_for",
    "create_engine",
    "create_session_factory",
    "feed_id_for_url",
    "init_db",
]
