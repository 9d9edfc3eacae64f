"""错误分类."""

from dataclasses import dataclass
from enum import StrEnum


class FailureKind(StrEnum):
    """失败类型代码（持久化到 feeds.last_error_kind）."""

    TIMEOUT = "timeout"
    CONNECTION = "connection"
    HTTP = "http"
    TOO_LARGE = "too_large"
    PARSE = "parse"
    STORAGE = "storage"
    INTERNAL = "internal"

    @property
    def is_network(self) -> bool:
        return self in (FailureKind.TIMEOUT, FailureKind.CONNECTION, FailureKind.HTTP)


@dataclass(frozen=True)
class FeedError:
    """记录在 Feed 上的最近一次错误."""

    kind: FailureKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True)
class SkippedItem:
    """解析时被跳过的单个条目."""

    index: int
    reason: str


class FeedKeeperError(Exception):
    """所有 feedkeeper 错误的基类."""


class ParseError(FeedKeeperError):
    """Feed 级解析失败（根节点损坏、返回了 HTML 等）."""


class StorageError(FeedKeeperError):
    """数据库读写失败或约束冲突."""


class FeedNotFoundError(FeedKeeperError):
    """Feed 不存在."""


class ArticleNotFoundError(FeedKeeperError):
    """文章不存在."""
