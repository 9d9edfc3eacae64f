"""测试 Store 持久化."""

from datetime import datetime
from pathlib import Path

import pytest
from conftest import FEED_URL, OTHER_URL
from sqlalchemy import Column, DateTime, text
from sqlalchemy.ext.asyncio import create_async_engine

from feedkeeper.core.store import ArticleFilter, Store
from feedkeeper.errors import FailureKind, FeedError, FeedNotFoundError, StorageError
from feedkeeper.models.article import Article, article_id_for
from feedkeeper.models.database import SCHEMA_VERSION, get_schema_version
from feedkeeper.models.feed import DedupStrategy, Feed, FeedStatus, feed_id_for_url
from feedkeeper.models.schema import SchemaVersion
from feedkeeper.normalizer.base import ArticleDraft

NOW = datetime(2024, 6, 1, 12, 0)


def draft(
    feed_id: str,
    n: int,
    *,
    title: str | None = None,
    body: str | None = None,
    published_at: datetime | None = None,
    has_published_date: bool = True,
    link: str | None = None,
) -> ArticleDraft:
    return ArticleDraft(
        feed_id=feed_id,
        guid=f"item-{n}",
        link=link or f"https://example.com/posts/{n}",
        title=title or f"Post {n}",
        body=body or f"<p>Body {n}</p>",
        content_text=f"Body {n}",
        published_at=published_at or datetime(2024, 1, n),
        has_published_date=has_published_date,
    )


async def collect(store: Store, **kwargs: object) -> list:
    return [a async for a in store.list_articles(ArticleFilter(**kwargs))]  # type: ignore[arg-type]


class TestFeeds:
    """测试订阅管理."""

    async def test_add_feed_is_idempotent(self, store: Store) -> None:
        first = await store.add_feed(f"  {FEED_URL} ")
        second = await store.add_feed(FEED_URL, title="Renamed")

        assert first.id == second.id == feed_id_for_url(FEED_URL)
        assert first.url == FEED_URL

        summaries = await store.list_feeds()
        assert len(summaries) == 1
        assert summaries[0].feed.title == "Renamed"

    async def test_list_feeds_ordering_and_counts(self, store: Store) -> None:
        b = await store.add_feed(FEED_URL, title="B", group_title="News")
        a = await store.add_feed(OTHER_URL, title="A", group_title="News")
        c = await store.add_feed("https://c.example.com/rss", title="C")

        await store.merge_feed(b.id, [draft(b.id, 1), draft(b.id, 2)], fetched_at=NOW)
        await store.mark_read(article_id_for(b.id, "guid:item-1"))

        summaries = await store.list_feeds()

        assert [s.feed.id for s in summaries] == [c.id, a.id, b.id]
        by_id = {s.feed.id: s for s in summaries}
        assert by_id[b.id].unread_count == 1
        assert by_id[b.id].total_count == 2
        assert by_id[a.id].unread_count == 0

    async def test_remove_feed_cascades(self, store: Store, sample_feed: Feed) -> None:
        await store.merge_feed(sample_feed.id, [draft(sample_feed.id, 1)], fetched_at=NOW)

        assert await store.remove_feed(sample_feed.id) is True
        assert await store.get_feed(sample_feed.id) is None
        assert await collect(store) == []
        assert await store.remove_feed(sample_feed.id) is False

    async def test_set_feed_status(self, store: Store, sample_feed: Feed) -> None:
        await store.set_feed_status(sample_feed.id, FeedStatus.DISABLED)

        assert await store.list_active_feeds() == []
        with pytest.raises(FeedNotFoundError):
            await store.set_feed_status("missing", FeedStatus.ACTIVE)

    async def test_sync_feed_list(self, store: Store, sample_feed: Feed) -> None:
        """新增缺失的订阅，删除不在列表中的订阅."""
        await store.merge_feed(sample_feed.id, [draft(sample_feed.id, 1)], fetched_at=NOW)

        added, removed = await store.sync_feed_list([OTHER_URL, OTHER_URL, " "])

        assert (added, removed) == (1, 1)
        feeds = [s.feed.url for s in await store.list_feeds()]
        assert feeds == [OTHER_URL]
        assert await collect(store) == []


class TestSyncResult:
    """测试同步结果写入."""

    async def test_error_keeps_tokens(self, store: Store, sample_feed: Feed) -> None:
        await store.merge_feed(
            sample_feed.id, [], fetched_at=NOW, etag='"v1"', last_modified="lm"
        )

        feed = await store.upsert_feed_sync_result(
            sample_feed.id, error=FeedError(FailureKind.TIMEOUT, "slow")
        )

        assert feed.etag == '"v1"'
        assert feed.last_modified == "lm"
        assert feed.last_fetched_at == NOW
        assert feed.last_error_kind == "timeout"
        assert feed.last_error == "slow"

    async def test_success_clears_error(self, store: Store, sample_feed: Feed) -> None:
        await store.upsert_feed_sync_result(
            sample_feed.id, error=FeedError(FailureKind.PARSE, "bad")
        )
        await store.merge_feed(sample_feed.id, [], fetched_at=NOW, etag='"v2"')

        feed = await store.get_feed(sample_feed.id)
        assert feed is not None
        assert feed.last_error is None
        assert feed.last_error_kind is None
        assert feed.etag == '"v2"'

    async def test_not_modified_clears_error(
        self, store: Store, sample_feed: Feed
    ) -> None:
        """304 只更新抓取时间并清除上次错误，缓存令牌不变."""
        await store.merge_feed(sample_feed.id, [], fetched_at=NOW, etag='"v1"')
        await store.upsert_feed_sync_result(
            sample_feed.id, error=FeedError(FailureKind.TIMEOUT, "slow")
        )
        later = datetime(2024, 6, 2, 12, 0)
        await store.upsert_feed_sync_result(sample_feed.id, fetched_at=later)

        feed = await store.get_feed(sample_feed.id)
        assert feed is not None
        assert feed.last_error is None
        assert feed.last_error_kind is None
        assert feed.last_fetched_at == later
        assert feed.etag == '"v1"'

    async def test_merge_fills_empty_title(self, store: Store, sample_feed: Feed) -> None:
        await store.merge_feed(
            sample_feed.id, [], fetched_at=NOW, title="From Feed", site_url="https://x/"
        )
        await store.merge_feed(sample_feed.id, [], fetched_at=NOW, title="Other")

        feed = await store.get_feed(sample_feed.id)
        assert feed is not None
        assert feed.title == "From Feed"
        assert feed.site_url == "https://x/"

    async def test_rename_keeps_user_title(
        self, store: Store, sample_feed: Feed
    ) -> None:
        """用户设置的标题不会被 Feed 自带标题覆盖；清空后重新填入."""
        renamed = await store.rename_feed(sample_feed.id, "My Reading")
        assert renamed.title == "My Reading"

        await store.merge_feed(sample_feed.id, [], fetched_at=NOW, title="From Feed")
        feed = await store.get_feed(sample_feed.id)
        assert feed is not None
        assert feed.title == "My Reading"

        await store.rename_feed(sample_feed.id, "")
        await store.merge_feed(sample_feed.id, [], fetched_at=NOW, title="From Feed")
        feed = await store.get_feed(sample_feed.id)
        assert feed is not None
        assert feed.title == "From Feed"

        with pytest.raises(FeedNotFoundError):
            await store.rename_feed("missing", "x")

    async def test_unknown_feed(self, store: Store) -> None:
        with pytest.raises(FeedNotFoundError):
            await store.merge_feed("missing", [], fetched_at=NOW)


class TestArticles:
    """测试文章 upsert 与查询."""

    async def test_merge_is_idempotent(self, store: Store, sample_feed: Feed) -> None:
        drafts = [draft(sample_feed.id, n) for n in (1, 2, 3)]

        first = await store.merge_feed(sample_feed.id, drafts, fetched_at=NOW)
        second = await store.merge_feed(sample_feed.id, drafts, fetched_at=NOW)

        assert (first.added, first.updated) == (3, 0)
        assert (second.added, second.updated, second.unchanged) == (0, 0, 3)
        assert len(await collect(store)) == 3

    async def test_duplicate_keys_in_one_batch(
        self, store: Store, sample_feed: Feed
    ) -> None:
        drafts = [draft(sample_feed.id, 1), draft(sample_feed.id, 1, title="Again")]

        result = await store.merge_feed(sample_feed.id, drafts, fetched_at=NOW)

        assert result.added == 1
        assert len(await collect(store)) == 1

    async def test_update_keeps_read_and_starred(
        self, store: Store, sample_feed: Feed
    ) -> None:
        """内容变化时更新文章，但不改变已读与收藏状态."""
        feed_id = sample_feed.id
        article_id = await store.upsert_article(draft(feed_id, 1))
        await store.mark_read(article_id)
        await store.set_starred(article_id, True)

        result = await store.merge_feed(
            feed_id,
            [draft(feed_id, 1, title="Edited", link="https://example.com/moved")],
            fetched_at=NOW,
        )

        article = await store.get_article(article_id)
        assert result.updated == 1
        assert article is not None
        assert article.title == "Edited"
        assert article.link == "https://example.com/moved"
        assert article.read is True
        assert article.starred is True

    async def test_fallback_date_does_not_overwrite(
        self, store: Store, sample_feed: Feed
    ) -> None:
        feed_id = sample_feed.id
        article_id = await store.upsert_article(
            draft(feed_id, 1, published_at=datetime(2024, 1, 1))
        )

        await store.upsert_article(
            draft(feed_id, 1, title="New", published_at=NOW, has_published_date=False)
        )

        article = await store.get_article(article_id)
        assert article is not None
        assert article.title == "New"
        assert article.published_at == datetime(2024, 1, 1)

    async def test_dedup_strategy_link(self, store: Store, sample_feed: Feed) -> None:
        """按链接去重时，guid 变化不产生新文章."""
        feed_id = sample_feed.id
        await store.set_dedup_strategy(feed_id, DedupStrategy.LINK)

        first = draft(feed_id, 1)
        second = first.model_copy(update={"guid": "regenerated"})
        await store.merge_feed(feed_id, [first], fetched_at=NOW)
        result = await store.merge_feed(feed_id, [second], fetched_at=NOW)

        assert result.added == 0
        assert len(await collect(store)) == 1

    async def test_list_articles_order_and_filters(
        self, store: Store, sample_feed: Feed
    ) -> None:
        other = await store.add_feed(OTHER_URL, group_title="Blogs")
        await store.merge_feed(
            sample_feed.id,
            [draft(sample_feed.id, n) for n in (1, 3, 2)],
            fetched_at=NOW,
        )
        await store.merge_feed(other.id, [draft(other.id, 4)], fetched_at=NOW)

        newest = await collect(store)
        assert [a.title for a in newest] == ["Post 4", "Post 3", "Post 2", "Post 1"]

        await store.mark_read(newest[0].id)
        await store.set_starred(newest[1].id, True)

        assert len(await collect(store, feed_id=sample_feed.id)) == 3
        assert [a.title for a in await collect(store, read=False)] == [
            "Post 3",
            "Post 2",
            "Post 1",
        ]
        assert [a.title for a in await collect(store, starred=True)] == ["Post 3"]
        assert [a.title for a in await collect(store, group_title="Blogs")] == ["Post 4"]
        assert len(await collect(store, limit=2)) == 2

    async def test_mark_all_read(self, store: Store, sample_feed: Feed) -> None:
        other = await store.add_feed(OTHER_URL, group_title="Blogs")
        await store.merge_feed(
            sample_feed.id, [draft(sample_feed.id, n) for n in (1, 2)], fetched_at=NOW
        )
        await store.merge_feed(
            other.id, [draft(other.id, n) for n in (3, 4, 5)], fetched_at=NOW
        )

        assert await store.mark_all_read(sample_feed.id) == 2
        assert await store.count_unread() == 3
        assert await store.mark_all_read(group_title="Blogs") == 3
        assert await store.count_unread() == 0
        assert await store.mark_all_read() == 0

    async def test_mark_all_read_everything(
        self, store: Store, sample_feed: Feed
    ) -> None:
        other = await store.add_feed(OTHER_URL)
        await store.merge_feed(sample_feed.id, [draft(sample_feed.id, 1)], fetched_at=NOW)
        await store.merge_feed(other.id, [draft(other.id, 2)], fetched_at=NOW)

        assert await store.mark_all_read() == 2
        assert await store.count_unread(sample_feed.id) == 0

    async def test_toggle_starred(self, store: Store, sample_feed: Feed) -> None:
        article_id = await store.upsert_article(draft(sample_feed.id, 1))

        assert await store.toggle_starred(article_id) is True
        assert await store.toggle_starred(article_id) is False
        assert await store.toggle_starred("missing") is None
        assert await store.mark_read("missing") is False


V1_SCHEMA = [
    """CREATE TABLE feeds (
        id VARCHAR PRIMARY KEY,
        url VARCHAR NOT NULL UNIQUE,
        title VARCHAR NOT NULL,
        group_title VARCHAR NOT NULL,
        site_url VARCHAR,
        last_fetched_at DATETIME,
        etag VARCHAR,
        last_modified VARCHAR,
        last_error_kind VARCHAR,
        last_error VARCHAR,
        status VARCHAR NOT NULL,
        created_at DATETIME NOT NULL,
        updated_at DATETIME NOT NULL
    )""",
    """CREATE TABLE articles (
        id VARCHAR PRIMARY KEY,
        feed_id VARCHAR NOT NULL REFERENCES feeds (id),
        dedup_key VARCHAR NOT NULL,
        guid VARCHAR,
        link VARCHAR,
        title VARCHAR NOT NULL,
        author VARCHAR,
        summary VARCHAR,
        body VARCHAR,
        content_text VARCHAR,
        content_hash VARCHAR NOT NULL,
        published_at DATETIME,
        fetched_at DATETIME NOT NULL,
        updated_at DATETIME NOT NULL,
        read BOOLEAN NOT NULL,
        CONSTRAINT uq_articles_feed_dedup UNIQUE (feed_id, dedup_key)
    )""",
    """INSERT INTO feeds VALUES ('f1', 'https://legacy.example.com/rss', 'Legacy',
        '', NULL, NULL, NULL, NULL, NULL, NULL, 'active',
        '2024-01-01 00:00:00.000000', '2024-01-01 00:00:00.000000')""",
    """INSERT INTO articles VALUES ('a1', 'f1', 'guid:1', '1', NULL, 'Old post',
        NULL, NULL, NULL, NULL, 'hash', '2024-01-01 00:00:00.000000',
        '2024-01-01 00:00:00.000000', '2024-01-01 00:00:00.000000', 1)""",
]


class TestMigrations:
    """测试 schema 初始化与迁移."""

    async def test_fresh_database(self, store: Store) -> None:
        assert store._engine is not None
        async with store._engine.connect() as conn:
            assert await get_schema_version(conn) == SCHEMA_VERSION

    async def test_migrates_v1_database(self, tmp_path: Path) -> None:
        """旧库补充新列，原有数据保留."""
        url = f"sqlite+aiosqlite:///{tmp_path / 'legacy.db'}"
        engine = create_async_engine(url)
        async with engine.begin() as conn:
            for statement in V1_SCHEMA:
                await conn.execute(text(statement))
        await engine.dispose()

        async with Store(url) as store:
            feed = await store.get_feed("f1")
            article = await store.get_article("a1")

            assert feed is not None
            assert feed.dedup_strategy == DedupStrategy.AUTO
            assert article is not None
            assert article.read is True
            assert article.starred is False

            assert await store.toggle_starred("a1") is True
            assert store._engine is not None
            async with store._engine.connect() as conn:
                assert await get_schema_version(conn) == SCHEMA_VERSION

    async def test_reopen_is_noop(self, tmp_path: Path) -> None:
        url = f"sqlite+aiosqlite:///{tmp_path / 'again.db'}"
        async with Store(url) as store:
            await store.add_feed(FEED_URL)

        async with Store(url) as store:
            assert len(await store.list_feeds()) == 1

    async def test_newer_version_rejected(self, tmp_path: Path) -> None:
        """不支持降级."""
        url = f"sqlite+aiosqlite:///{tmp_path / 'future.db'}"
        async with Store(url) as store:
            assert store._engine is not None
            async with store._engine.begin() as conn:
                await conn.execute(text("UPDATE schema_version SET version = 99"))

        with pytest.raises(StorageError):
            await Store(url).open()

    async def test_closed_store_raises(self, tmp_path: Path) -> None:
        store = Store(f"sqlite+aiosqlite:///{tmp_path / 'closed.db'}")
        with pytest.raises(RuntimeError):
            await store.get_feed("x")


class TestDatetimeColumns:
    """测试时间列类型."""

    @pytest.mark.parametrize(
        "column",
        [
            Feed.__table__.c.last_fetched_at,
            Feed.__table__.c.created_at,
            Article.__table__.c.published_at,
            Article.__table__.c.fetched_at,
            SchemaVersion.__table__.c.updated_at,
        ],
    )
    def test_datetime_columns_store_naive_utc(self, column: Column) -> None:
        """时间列固定为不带时区的 DATETIME，与 utcnow() 一致."""
        assert type(column.type) is DateTime
        assert column.type.timezone is False

    async def test_naive_datetimes_round_trip(
        self, store: Store, sample_feed: Feed
    ) -> None:
        await store.merge_feed(sample_feed.id, [draft(sample_feed.id, 1)], fetched_at=NOW)

        feed = await store.get_feed(sample_feed.id)
        assert feed is not None
        assert feed.last_fetched_at == NOW
        assert feed.created_at.tzinfo is None
        [article] = await collect(store)
        assert article.published_at == datetime(2024, 1, 1)
