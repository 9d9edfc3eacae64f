"""UI 使用的查询与命令入口."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import aclosing

from feedkeeper.core.events import EventStream, SyncNotifier
from feedkeeper.core.store import ArticleFilter, Store
from feedkeeper.core.sync import SyncEngine
from feedkeeper.errors import ArticleNotFoundError, FeedNotFoundError
from feedkeeper.models.article import Article
from feedkeeper.models.feed import Feed, FeedStatus, FeedSummary
from feedkeeper.models.sync import SyncAttempt, SyncProgress

logger = logging.getLogger(__name__)


class QueryFacade:
    """
    UI 与核心之间唯一的接口.

    读操作直接访问 Store；同步在后台任务中运行，
    进度通过 `sync_progress` 和 `events()` 获取。
    """

    def __init__(self, store: Store, engine: SyncEngine) -> None:
        self.store = store
        self.engine = engine
        self._sync_task: asyncio.Task[list[SyncAttempt]] | None = None

    @property
    def notifier(self) -> SyncNotifier:
        return self.engine.notifier

    # ------------------------------------------------------------------
    # Feeds
    # ------------------------------------------------------------------

    async def list_feeds(self) -> list[FeedSummary]:
        return await self.store.list_feeds()

    async def get_feed(self, feed_id: str) -> Feed:
        feed = await self.store.get_feed(feed_id)
        if feed is None:
            msg = f"Feed 不存在: {feed_id}"
            raise FeedNotFoundError(msg)
        return feed

    async def subscribe(
        self, url: str, *, title: str = "", group_title: str = ""
    ) -> Feed:
        """订阅新 Feed（已订阅时更新标题/分组）."""
        if not url.strip():
            msg = "Feed URL 不能为空"
            raise ValueError(msg)
        return await self.store.add_feed(url, title=title, group_title=group_title)

    async def unsubscribe(self, feed_id: str) -> None:
        if not await self.store.remove_feed(feed_id):
            msg = f"Feed 不存在: {feed_id}"
            raise FeedNotFoundError(msg)

    async def rename_feed(self, feed_id: str, title: str) -> Feed:
        """设置用户自定义标题；留空时下次同步会填入 Feed 自带标题."""
        return await self.store.rename_feed(feed_id, title.strip())

    async def set_feed_enabled(self, feed_id: str, enabled: bool) -> Feed:
        status = FeedStatus.ACTIVE if enabled else FeedStatus.DISABLED
        return await self.store.set_feed_status(feed_id, status)

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------

    async def list_articles(
        self,
        feed_id: str | None = None,
        *,
        group_title: str | None = None,
        unread_only: bool = False,
        starred_only: bool = False,
        limit: int | None = None,
    ) -> list[Article]:
        """按条件获取文章列表（最新在前）."""
        return [
            article
            async for article in self.iter_articles(
                feed_id,
                group_title=group_title,
                unread_only=unread_only,
                starred_only=starred_only,
                limit=limit,
            )
        ]

    async def iter_articles(
        self,
        feed_id: str | None = None,
        *,
        group_title: str | None = None,
        unread_only: bool = False,
        starred_only: bool = False,
        limit: int | None = None,
    ) -> AsyncGenerator[Article, None]:
        """惰性遍历文章."""
        if feed_id is not None:
            await self.get_feed(feed_id)

        article_filter = ArticleFilter(
            feed_id=feed_id,
            group_title=group_title,
            read=False if unread_only else None,
            starred=True if starred_only else None,
            limit=limit,
        )
        async with aclosing(self.store.list_articles(article_filter)) as articles:
            async for article in articles:
                yield article

    async def get_article(self, article_id: str) -> Article:
        article = await self.store.get_article(article_id)
        if article is None:
            msg = f"文章不存在: {article_id}"
            raise ArticleNotFoundError(msg)
        return article

    async def mark_read(self, article_id: str, read: bool = True) -> None:
        if not await self.store.mark_read(article_id, read):
            msg = f"文章不存在: {article_id}"
            raise ArticleNotFoundError(msg)

    async def mark_all_read(
        self, feed_id: str | None = None, *, group_title: str | None = None
    ) -> int:
        """批量标记已读，返回受影响的文章数."""
        if feed_id is not None:
            await self.get_feed(feed_id)
        count = await self.store.mark_all_read(feed_id, group_title=group_title)
        logger.info(f"已标记 {count} 篇文章为已读")
        return count

    async def toggle_starred(self, article_id: str) -> bool:
        starred = await self.store.toggle_starred(article_id)
        if starred is None:
            msg = f"文章不存在: {article_id}"
            raise ArticleNotFoundError(msg)
        return starred

    # ------------------------------------------------------------------
    # 同步
    # ------------------------------------------------------------------

    @property
    def is_syncing(self) -> bool:
        return self._sync_task is not None and not self._sync_task.done()

    @property
    def sync_progress(self) -> SyncProgress:
        return self.engine.progress

    async def trigger_sync(
        self, feed_id: str | None = None
    ) -> asyncio.Task[list[SyncAttempt]]:
        """
        在后台启动一轮同步并立即返回任务.

        已有同步在进行时直接返回正在运行的任务。
        """
        feeds = [await self.get_feed(feed_id)] if feed_id is not None else None

        if self._sync_task is not None and not self._sync_task.done():
            logger.info("已有同步在进行，复用当前任务")
            return self._sync_task

        self._sync_task = asyncio.create_task(
            self.engine.sync_all(feeds), name="feedkeeper-sync"
        )
        return self._sync_task

    def cancel_sync(self) -> None:
        """请求取消当前同步；已开始的 Feed 会完成合并."""
        if self.is_syncing:
            self.engine.cancel()

    async def wait_for_sync(self) -> None:
        """等待后台同步结束（包括取消后的收尾），不抛出同步任务的异常."""
        task = self._sync_task
        if task is None:
            return
        await asyncio.wait([task])
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"后台同步异常结束: {task.exception()}")

    def events(self) -> EventStream:
        """订阅同步事件流；调用时即开始接收，用完需 aclose()."""
        return self.notifier.stream()
