"""持久化存储：Feed 与文章的事务性读写."""

import asyncio
import logging
from collections.abc import AsyncGenerator, AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from sqlalchemy import case, delete, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import select

from feedkeeper.errors import FeedError, FeedNotFoundError, StorageError
from feedkeeper.models.article import Article, article_id_for
from feedkeeper.models.database import create_engine, create_session_factory, init_db
from feedkeeper.models.feed import (
    DedupStrategy,
    Feed,
    FeedStatus,
    FeedSummary,
    feed_id_for_url,
)
from feedkeeper.normalizer.base import ArticleDraft
from feedkeeper.utils.timeutil import utcnow

logger = logging.getLogger(__name__)


class UpsertOutcome(StrEnum):
    """单篇文章 upsert 的结果."""

    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class MergeResult:
    """一次 Feed 合并的统计."""

    added: int = 0
    updated: int = 0
    unchanged: int = 0


@dataclass
class ArticleFilter:
    """文章查询条件."""

    feed_id: str | None = None
    group_title: str | None = None
    read: bool | None = None
    starred: bool | None = None
    limit: int | None = None


class Store:
    """SQLite 存储.

    所有写操作通过 `_write()` 在同一把锁下串行执行，每次写入是一个完整事务；
    读操作各自使用独立会话，只会看到已提交的数据。
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._write_lock = asyncio.Lock()

    async def open(self) -> None:
        """打开数据库并执行必要的 schema 初始化/迁移."""
        if self._engine is not None:
            return

        engine = create_engine(self.database_url)
        try:
            version = await init_db(engine)
        except SQLAlchemyError as e:
            await engine.dispose()
            msg = f"数据库初始化失败: {e}"
            raise StorageError(msg) from e
        except StorageError:
            await engine.dispose()
            raise

        self._engine = engine
        self._session_factory = create_session_factory(engine)
        logger.info(f"存储已打开: {self.database_url} (schema v{version})")

    async def close(self) -> None:
        """关闭数据库连接."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    async def __aenter__(self) -> "Store":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            msg = "存储未打开，请先调用 open()"
            raise RuntimeError(msg)
        return self._session_factory

    @asynccontextmanager
    async def _write(self) -> AsyncIterator[AsyncSession]:
        """串行化的写事务；退出时提交，异常时回滚."""
        factory = self._factory()
        async with self._write_lock:
            try:
                async with factory() as session, session.begin():
                    yield session
            except SQLAlchemyError as e:
                msg = f"数据库写入失败: {e}"
                raise StorageError(msg) from e

    @asynccontextmanager
    async def _read(self) -> AsyncIterator[AsyncSession]:
        factory = self._factory()
        try:
            async with factory() as session:
                yield session
        except SQLAlchemyError as e:
            msg = f"数据库读取失败: {e}"
            raise StorageError(msg) from e

    # ------------------------------------------------------------------
    # Feeds
    # ------------------------------------------------------------------

    async def add_feed(
        self,
        url: str,
        *,
        title: str = "",
        group_title: str = "",
        site_url: str | None = None,
    ) -> Feed:
        """订阅 Feed；已存在时更新标题和分组."""
        url = url.strip()
        feed_id = feed_id_for_url(url)

        async with self._write() as session:
            feed = await session.get(Feed, feed_id)
            if feed is None:
                feed = Feed(
                    id=feed_id,
                    url=url,
                    title=title,
                    group_title=group_title,
                    site_url=site_url,
                )
                session.add(feed)
                logger.info(f"新增订阅: {url}")
            else:
                if title:
                    feed.title = title
                if group_title:
                    feed.group_title = group_title
                if site_url:
                    feed.site_url = site_url
                feed.updated_at = utcnow()

        return feed

    async def remove_feed(self, feed_id: str) -> bool:
        """取消订阅，级联删除其文章."""
        async with self._write() as session:
            feed = await session.get(Feed, feed_id)
            if feed is None:
                return False
            url = feed.url
            await session.execute(delete(Article).where(Article.feed_id == feed_id))
            await session.delete(feed)

        logger.info(f"取消订阅: {url}")
        return True

    async def get_feed(self, feed_id: str) -> Feed | None:
        async with self._read() as session:
            return await session.get(Feed, feed_id)

    async def list_feeds(self, *, active_only: bool = False) -> list[FeedSummary]:
        """列出 Feed（按分组、标题排序），附带未读数."""
        counts = (
            select(
                Article.feed_id,
                func.count().label("total"),
                func.sum(case((Article.read == False, 1), else_=0)).label(  # noqa: E712
                    "unread"
                ),
            )
            .group_by(Article.feed_id)
            .subquery()
        )
        stmt = (
            select(
                Feed,
                func.coalesce(counts.c.unread, 0),
                func.coalesce(counts.c.total, 0),
            )
            .outerjoin(counts, counts.c.feed_id == Feed.id)
            .order_by(Feed.group_title, Feed.title, Feed.url)
        )
        if active_only:
            stmt = stmt.where(Feed.status == FeedStatus.ACTIVE)

        async with self._read() as session:
            result = await session.execute(stmt)
            return [
                FeedSummary(feed=feed, unread_count=int(unread), total_count=int(total))
                for feed, unread, total in result.all()
            ]

    async def list_active_feeds(self) -> list[Feed]:
        return [summary.feed for summary in await self.list_feeds(active_only=True)]

    async def _update_feed(self, feed_id: str, **values: object) -> Feed:
        async with self._write() as session:
            feed = await session.get(Feed, feed_id)
            if feed is None:
                msg = f"Feed 不存在: {feed_id}"
                raise FeedNotFoundError(msg)
            for key, value in values.items():
                setattr(feed, key, value)
            feed.updated_at = utcnow()
        return feed

    async def set_feed_status(self, feed_id: str, status: FeedStatus) -> Feed:
        return await self._update_feed(feed_id, status=status)

    async def set_dedup_strategy(self, feed_id: str, strategy: DedupStrategy) -> Feed:
        return await self._update_feed(feed_id, dedup_strategy=strategy)

    async def rename_feed(self, feed_id: str, title: str) -> Feed:
        return await self._update_feed(feed_id, title=title)

    async def sync_feed_list(self, urls: Iterable[str]) -> tuple[int, int]:
        """使订阅与给定 URL 列表一致：新增缺失的，删除不在列表中的.

        Returns:
            (新增数, 删除数)
        """
        wanted = {url.strip(): feed_id_for_url(url) for url in urls if url.strip()}
        added = removed = 0

        async with self._write() as session:
            result = await session.execute(select(Feed))
            existing = {feed.id: feed for feed in result.scalars().all()}

            for feed_id, feed in existing.items():
                if feed_id not in wanted.values():
                    await session.execute(
                        delete(Article).where(Article.feed_id == feed_id)
                    )
                    await session.delete(feed)
                    removed += 1

            for url, feed_id in wanted.items():
                if feed_id not in existing:
                    session.add(Feed(id=feed_id, url=url))
                    added += 1

        if added or removed:
            logger.info(f"订阅列表已同步: 新增 {added}，删除 {removed}")
        return added, removed

    # ------------------------------------------------------------------
    # 同步结果写入
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_sync_result(
        feed: Feed,
        *,
        fetched_at: datetime | None,
        error: FeedError | None,
        tokens: tuple[str | None, str | None] | None,
    ) -> None:
        if fetched_at is not None:
            feed.last_fetched_at = fetched_at
        if tokens is not None:
            feed.etag, feed.last_modified = tokens
        if error is None:
            feed.last_error_kind = None
            feed.last_error = None
        else:
            feed.last_error_kind = error.kind.value
            feed.last_error = error.message
        feed.updated_at = utcnow()

    async def upsert_feed_sync_result(
        self,
        feed_id: str,
        *,
        fetched_at: datetime | None = None,
        etag: str | None = None,
        last_modified: str | None = None,
        error: FeedError | None = None,
        keep_tokens: bool = True,
    ) -> Feed:
        """记录一次同步尝试的结果.

        keep_tokens 为 True 时保留原有缓存令牌（304 或失败时使用）。
        error 为 None 时清除上次的错误记录；304 也按成功处理，
        因此除 last_fetched_at 外还会清除 last_error。
        """
        async with self._write() as session:
            feed = await session.get(Feed, feed_id)
            if feed is None:
                msg = f"Feed 不存在: {feed_id}"
                raise FeedNotFoundError(msg)
            self._apply_sync_result(
                feed,
                fetched_at=fetched_at,
                error=error,
                tokens=None if keep_tokens else (etag, last_modified),
            )
        return feed

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------

    @staticmethod
    async def _upsert(
        session: AsyncSession,
        draft: ArticleDraft,
        strategy: str,
    ) -> tuple[str, UpsertOutcome]:
        key = draft.dedup_key(strategy)
        article_id = article_id_for(draft.feed_id, key)
        content_hash = draft.content_hash
        now = utcnow()

        existing = await session.get(Article, article_id)
        if existing is None:
            session.add(
                Article(
                    id=article_id,
                    feed_id=draft.feed_id,
                    dedup_key=key,
                    guid=draft.guid,
                    link=draft.link,
                    title=draft.title,
                    author=draft.author,
                    summary=draft.summary,
                    body=draft.body,
                    content_text=draft.content_text,
                    content_hash=content_hash,
                    published_at=draft.published_at,
                    fetched_at=now,
                    updated_at=now,
                )
            )
            return article_id, UpsertOutcome.ADDED

        if existing.content_hash == content_hash:
            return article_id, UpsertOutcome.UNCHANGED

        # read / starred 保持不变
        existing.title = draft.title
        existing.author = draft.author
        existing.summary = draft.summary
        existing.body = draft.body
        existing.content_text = draft.content_text
        existing.content_hash = content_hash
        if draft.link:
            existing.link = draft.link
        if draft.has_published_date:
            existing.published_at = draft.published_at
        existing.updated_at = now
        return article_id, UpsertOutcome.UPDATED

    async def upsert_article(self, draft: ArticleDraft) -> str:
        """按去重键插入或更新单篇文章，返回文章 ID."""
        async with self._write() as session:
            feed = await session.get(Feed, draft.feed_id)
            if feed is None:
                msg = f"Feed 不存在: {draft.feed_id}"
                raise FeedNotFoundError(msg)
            article_id, _ = await self._upsert(session, draft, feed.dedup_strategy)
        return article_id

    async def merge_feed(
        self,
        feed_id: str,
        drafts: Iterable[ArticleDraft],
        *,
        fetched_at: datetime,
        etag: str | None = None,
        last_modified: str | None = None,
        title: str | None = None,
        site_url: str | None = None,
    ) -> MergeResult:
        """在一个事务中合并一个 Feed 的全部文章并记录同步结果."""
        merge = MergeResult()

        async with self._write() as session:
            feed = await session.get(Feed, feed_id)
            if feed is None:
                msg = f"Feed 不存在: {feed_id}"
                raise FeedNotFoundError(msg)

            seen: set[str] = set()
            for draft in drafts:
                key = draft.dedup_key(feed.dedup_strategy)
                if key in seen:
                    merge.unchanged += 1
                    continue
                seen.add(key)

                _, outcome = await self._upsert(session, draft, feed.dedup_strategy)
                if outcome == UpsertOutcome.ADDED:
                    merge.added += 1
                elif outcome == UpsertOutcome.UPDATED:
                    merge.updated += 1
                else:
                    merge.unchanged += 1

            if title and not feed.title:
                feed.title = title
            if site_url and not feed.site_url:
                feed.site_url = site_url

            self._apply_sync_result(
                feed,
                fetched_at=fetched_at,
                error=None,
                tokens=(etag, last_modified),
            )

        return merge

    async def get_article(self, article_id: str) -> Article | None:
        async with self._read() as session:
            return await session.get(Article, article_id)

    @staticmethod
    def _article_query(article_filter: ArticleFilter):  # type: ignore[no-untyped-def]
        stmt = select(Article)
        if article_filter.feed_id is not None:
            stmt = stmt.where(Article.feed_id == article_filter.feed_id)
        if article_filter.group_title is not None:
            stmt = stmt.join(Feed, Feed.id == Article.feed_id).where(
                Feed.group_title == article_filter.group_title
            )
        if article_filter.read is not None:
            stmt = stmt.where(Article.read == article_filter.read)
        if article_filter.starred is not None:
            stmt = stmt.where(Article.starred == article_filter.starred)

        stmt = stmt.order_by(
            Article.published_at.desc().nulls_last(),  # type: ignore[union-attr]
            Article.fetched_at.desc(),  # type: ignore[attr-defined]
            Article.id,
        )
        if article_filter.limit is not None:
            stmt = stmt.limit(article_filter.limit)
        return stmt

    async def list_articles(
        self, article_filter: ArticleFilter | None = None
    ) -> AsyncGenerator[Article, None]:
        """按条件惰性遍历文章；每次调用都是一次新的一致快照."""
        stmt = self._article_query(article_filter or ArticleFilter())
        async with self._read() as session:
            result = await session.stream_scalars(stmt)
            async for article in result:
                yield article

    async def count_unread(self, feed_id: str | None = None) -> int:
        stmt = (
            select(func.count())
            .select_from(Article)
            .where(Article.read == False)  # noqa: E712
        )
        if feed_id is not None:
            stmt = stmt.where(Article.feed_id == feed_id)
        async with self._read() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def mark_read(self, article_id: str, read: bool = True) -> bool:
        """设置已读状态，文章不存在时返回 False."""
        async with self._write() as session:
            article = await session.get(Article, article_id)
            if article is None:
                return False
            article.read = read
        return True

    async def mark_all_read(
        self,
        feed_id: str | None = None,
        *,
        group_title: str | None = None,
    ) -> int:
        """批量标记已读；feed_id 与 group_title 都为空时作用于全部 Feed."""
        stmt = update(Article).where(Article.read == False)  # noqa: E712
        if feed_id is not None:
            stmt = stmt.where(Article.feed_id == feed_id)
        if group_title is not None:
            group_feeds = select(Feed.id).where(Feed.group_title == group_title)
            stmt = stmt.where(Article.feed_id.in_(group_feeds))  # type: ignore[attr-defined]

        stmt = stmt.values(read=True).execution_options(synchronize_session=False)
        async with self._write() as session:
            result = await session.execute(stmt)
            return int(result.rowcount or 0)

    async def set_starred(self, article_id: str, starred: bool) -> bool:
        async with self._write() as session:
            article = await session.get(Article, article_id)
            if article is None:
                return False
            article.starred = starred
        return True

    async def toggle_starred(self, article_id: str) -> bool | None:
        """切换收藏状态并返回新值；文章不存在时返回 None."""
        async with self._write() as session:
            article = await session.get(Article, article_id)
            if article is None:
                return None
            article.starred = not article.starred
            return article.starred
