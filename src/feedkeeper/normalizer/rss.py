"""RSS 2.0（及 0.9x 变体）解析."""

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
    entry_link,
    resolve_url,
)
from feedkeeper.normalizer.document import FeedDocument


def parse_rss(
    document: FeedDocument,
    feed_id: str,
    *,
    base_url: str | None,
    fetched_at: datetime,
) -> NormalizedFeed:
    """content:encoded 优先于 description；pubDate 优先于 dc:date."""

    def parse_item(entry: FeedParserDict) -> ArticleDraft | None:
        return build_draft(
            feed_id,
            fetched_at=fetched_at,
            base_url=base_url,
            guid=entry.get("id"),
            link=entry_link(entry),
            title=entry.get("title"),
            author=entry.get("author"),
            summary=entry.get("summary"),
            content=entry_content(entry),
            published_at=entry_date(entry, "published", "updated"),
        )

    articles, skipped = collect_entries(document, parse_item)

    return NormalizedFeed(
        format=FeedFormat.RSS,
        title=document.feed.get("title") or None,
        site_url=resolve_url(document.feed.get("link"), base_url),
        articles=articles,
        skipped=skipped,
    )
