"""Normalizer 公共类型与 feedparser 条目辅助函数."""

import hashlib
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from urllib.parse import urljoin, urlsplit

from feedparser import FeedParserDict
from pydantic import BaseModel, Field

from feedkeeper.errors import SkippedItem
from feedkeeper.models.feed import DedupStrategy
from feedkeeper.normalizer.dates import from_struct_time
from feedkeeper.normalizer.document import FeedDocument
from feedkeeper.utils.html_parser import absolutize_links, html_to_text


class FeedFormat(StrEnum):
    """支持的 Feed 格式."""

    RSS = "rss"
    ATOM = "atom"
    RDF = "rdf"


def _collapse(text: str | None) -> str:
    return " ".join((text or "").split())


class ArticleDraft(BaseModel):
    """归一化后、尚未入库的文章."""

    feed_id: str
    guid: str | None = None
    link: str | None = None
    title: str = ""
    author: str | None = None
    summary: str | None = None
    body: str | None = None
    content_text: str | None = None
    published_at: datetime
    has_published_date: bool = Field(
        default=True, description="False 表示 published_at 取自抓取时间"
    )

    @property
    def content_hash(self) -> str:
        """标题与正文（空白归一化后）的 SHA-256."""
        raw = f"{_collapse(self.title)}\n{_collapse(self.body)}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def _fallback_key(self) -> str:
        published = self.published_at.isoformat() if self.has_published_date else ""
        raw = f"{_collapse(self.title)}\x00{published}"
        return "hash:" + hashlib.sha1(raw.encode("utf-8")).hexdigest()

    def dedup_key(self, strategy: DedupStrategy | str = DedupStrategy.AUTO) -> str:
        """按优先级推导去重键: guid > link > hash(title, published_at)."""
        if strategy == DedupStrategy.AUTO and self.guid:
            return f"guid:{self.guid}"
        if strategy in (DedupStrategy.AUTO, DedupStrategy.LINK) and self.link:
            return f"link:{self.link}"
        return self._fallback_key()


class NormalizedFeed(BaseModel):
    """一次解析的结果."""

    format: FeedFormat
    title: str | None = None
    site_url: str | None = None
    articles: list[ArticleDraft] = Field(default_factory=list)
    skipped: list[SkippedItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# 条目字段
# ---------------------------------------------------------------------------


def resolve_url(url: str | None, base_url: str | None) -> str | None:
    if not url:
        return None
    url = url.strip()
    if not url:
        return None
    return urljoin(base_url, url) if base_url else url


def entry_link(entry: FeedParserDict) -> str | None:
    """条目链接；忽略 feedparser 由非 URL 的 guid 推导出的链接."""
    link = entry.get("link")
    if link and entry.get("guidislink") and link == entry.get("id"):
        if not urlsplit(link).scheme:
            return None
    return link


def entry_content(entry: FeedParserDict) -> str | None:
    """content:encoded 或 Atom <content> 的第一段非空内容."""
    for content in entry.get("content") or []:
        value = content.get("value")
        if value and value.strip():
            return value
    return None


def entry_date(entry: FeedParserDict, *fields: str) -> datetime | None:
    """按顺序取第一个可解析的日期字段（feedparser 的 *_parsed）."""
    for name in fields:
        value = from_struct_time(entry.get(f"{name}_parsed"))
        if value is not None:
            return value
    return None


# ---------------------------------------------------------------------------
# 条目构建
# ---------------------------------------------------------------------------


def build_draft(
    feed_id: str,
    *,
    fetched_at: datetime,
    base_url: str | None,
    guid: str | None,
    link: str | None,
    title: str | None,
    author: str | None,
    summary: str | None,
    content: str | None,
    published_at: datetime | None,
) -> ArticleDraft | None:
    """由抽取出的字段构建 ArticleDraft；缺少全部标识字段时返回 None."""
    guid = (guid or "").strip() or None
    link = resolve_url(link, base_url)
    title = _collapse(title)

    if not (guid or link or title):
        return None

    body = content or summary
    if body:
        body = absolutize_links(body, base_url)

    return ArticleDraft(
        feed_id=feed_id,
        guid=guid,
        link=link,
        title=title,
        author=_collapse(author) or None,
        summary=summary,
        body=body,
        content_text=html_to_text(body) if body else None,
        published_at=published_at or fetched_at,
        has_published_date=published_at is not None,
    )


def collect_entries(
    document: FeedDocument,
    parse_entry: Callable[[FeedParserDict], ArticleDraft | None],
) -> tuple[list[ArticleDraft], list[SkippedItem]]:
    """逐条构建；单个条目失败只记录跳过，不影响其他条目."""
    articles: list[ArticleDraft] = []
    skipped = list(document.skipped)

    for index, entry in document.entries:
        try:
            draft = parse_entry(entry)
        except Exception as e:
            skipped.append(SkippedItem(index=index, reason=f"条目解析失败: {e}"))
            continue

        if draft is None:
            skipped.append(SkippedItem(index=index, reason="条目缺少 guid、link 和标题"))
            continue

        articles.append(draft)

    skipped.sort(key=lambda item: item.index)
    return articles, skipped
