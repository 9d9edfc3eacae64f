"""RDF（RSS 1.0 / 0.90）解析，尽力抽取字段."""

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


def parse_rdf(
    document: FeedDocument,
    feed_id: str,
    *,
    base_url: str | None,
    fetched_at: datetime,
) -> NormalizedFeed:
    def parse_item(entry: FeedParserDict) -> ArticleDraft | None:
        # feedparser 把 rdf:about 作为条目 id
        about = entry.get("id")
        return build_draft(
            feed_id,
            fetched_at=fetched_at,
            base_url=base_url,
            guid=about,
            link=entry.get("link") or about,
            title=entry.get("title"),
            author=entry.get("author"),
            summary=entry.get("summary"),
            content=entry_content(entry),
            published_at=entry_date(entry, "published", "updated"),
        )

    articles, skipped = collect_entries(document, parse_item)

    return NormalizedFeed(
        format=FeedFormat.RDF,
        title=document.feed.get("title") or None,
        site_url=resolve_url(document.feed.get("link"), base_url),
        articles=articles,
        skipped=skipped,
    )
