"""Article 文章模型."""

import hashlib
from datetime import datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from feedkeeper.utils.timeutil import utcnow


def article_id_for(feed_id: str, dedup_key: str) -> str:
    """由 (feed_id, 去重键) 推导稳定的文章 ID."""
    raw = f"{feed_id}\x00{dedup_key}".encode()
    return hashlib.sha1(raw).hexdigest()[:24]


class Article(SQLModel, table=True):
    """文章."""

    __tablename__ = "articles"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("feed_id", "dedup_key", name="uq_articles_feed_dedup"),
    )

    id: str = Field(primary_key=True, description="由 feed_id 与去重键推导")
    feed_id: str = Field(foreign_key="feeds.id", index=True, description="关联 Feed")
    dedup_key: str = Field(description="去重键")
    guid: str | None = Field(default=None, description="Feed 提供的 guid/id")
    link: str | None = Field(default=None, description="原文链接")
    title: str = Field(default="", description="标题")
    author: str | None = Field(default=None, description="作者")
    summary: str | None = Field(default=None, description="摘要")
    body: str | None = Field(default=None, description="HTML 正文")
    content_text: str | None = Field(default=None, description="纯文本正文")
    content_hash: str = Field(description="标题与正文的哈希，用于变更检测")
    published_at: datetime | None = Field(
        default=None, index=True, sa_type=DateTime, description="发布时间"
    )
    fetched_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime, description="首次抓取时间"
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime, description="最近内容更新时间"
    )
    read: bool = Field(default=False, description="是否已读")
    starred: bool = Field(default=False, description="是否收藏")
