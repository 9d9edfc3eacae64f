"""Atom 1.0（兼容 0.3）解析."""

from datetime import datetime

from feedparser import FeedParserDict

from feedkeeper.normalizer.base import (
    ArticleDraft,
    FeedFormat,
    NormalizedFeed,
    build_draft,
    collect_entries,
    entry_content,
    entry_date,
    resolve_url,
)
from feedkeeper.normalizer.document import FeedDocument


def parse_atom(
    document: FeedDocument,
    feed_id: str,
    *,
    base_url: str | None,
    fetched_at: datetime,
) -> NormalizedFeed:
    """条目没有作者时沿用 Feed 级作者."""
    feed_author = document.feed.get("author")

    def parse_entry(entry: FeedParserDict) -> ArticleDraft | None:
        return build_draft(
            feed_id,
            fetched_at=fetched_at,
            base_url=base_url,
            guid=entry.get("id"),
            link=entry.get("link"),
            title=entry.get("title"),
            author=entry.get("author") or feed_author,
            summary=entry.get("summary"),
            content=entry_content(entry),
            published_at=entry_date(entry, "published", "created", "updated"),
        )

    articles, skipped = collect_entries(document, parse_entry)

    return NormalizedFeed(
        format=FeedFormat.ATOM,
        title=document.feed.get("title") or None,
        site_url=resolve_url(document.feed.get("link"), base_url),
        articles=articles,
        skipped=skipped,
    )
