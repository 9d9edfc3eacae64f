"""Feed 订阅源模型."""

import hashlib
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from feedkeeper.utils.timeutil import utcnow


class FeedStatus(StrEnum):
    """订阅状态."""

    ACTIVE = "active"
    DISABLED = "disabled"


class DedupStrategy(StrEnum):
    """去重键策略."""

    AUTO = "auto"  # guid > link > hash(title, published_at)
    LINK = "link"  # link > hash
    CONTENT = "content"  # 仅 hash


def feed_id_for_url(url: str) -> str:
    """由订阅 URL 推导稳定的 Feed ID."""
    return hashlib.sha1(url.strip().encode("utf-8")).hexdigest()[:16]


class Feed(SQLModel, table=True):
    """RSS/Atom 订阅源."""

    __tablename__ = "feeds"  # type: ignore[assignment]

    id: str = Field(primary_key=True, description="由 URL 推导的稳定 ID")
    url: str = Field(unique=True, description="Feed URL")
    title: str = Field(default="", description="Feed 标题")
    group_title: str = Field(default="", index=True, description="分组，空串表示未分组")
    site_url: str | None = Field(default=None, description="网站 URL")
    last_fetched_at: datetime | None = Field(
        default=None,
        sa_type=DateTime,
        description="最近一次成功连通（含 304）的时间",
    )
    etag: str | None = Field(default=None, description="ETag 缓存令牌")
    last_modified: str | None = Field(default=None, description="Last-Modified 缓存令牌")
    last_error_kind: str | None = Field(default=None, description="最近错误类型")
    last_error: str | None = Field(default=None, description="最近错误信息")
    status: str = Field(default=FeedStatus.ACTIVE, description="状态: active|disabled")
    dedup_strategy: str = Field(
        default=DedupStrategy.AUTO, description="去重策略: auto|link|content"
    )
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    @property
    def is_active(self) -> bool:
        return self.status == FeedStatus.ACTIVE

    @property
    def display_title(self) -> str:
        return self.title or self.url


@dataclass
class FeedSummary:
    """Feed 列表项（带未读数）."""

    feed: Feed
    unread_count: int = 0
    total_count: int = 0
