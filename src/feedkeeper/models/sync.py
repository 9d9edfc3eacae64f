"""同步结果模型（不持久化）."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from feedkeeper.errors import FailureKind


class SyncOutcome(StrEnum):
    """单个 Feed 一次同步的结果."""

    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"  # 有条目被跳过
    FAILURE = "failure"
    SKIPPED = "skipped"  # 取消后未启动


@dataclass
class SyncAttempt:
    """单个 Feed 一次同步的记录."""

    feed_id: str
    feed_title: str
    outcome: SyncOutcome
    failure_kind: FailureKind | None = None
    error: str | None = None
    items_added: int = 0
    items_updated: int = 0
    items_skipped: int = 0
    not_modified: bool = False
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome in (SyncOutcome.SUCCESS, SyncOutcome.PARTIAL_SUCCESS)

    @property
    def is_fatal(self) -> bool:
        """存储层错误需要在 UI 上醒目提示."""
        return self.failure_kind == FailureKind.STORAGE


@dataclass
class SyncProgress:
    """同步进度快照."""

    status: str = "idle"  # idle | running | cancelling
    total: int = 0
    completed: int = 0
    failed: int = 0
    current_feed: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
