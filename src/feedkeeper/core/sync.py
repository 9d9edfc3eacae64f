"""同步引擎：并发抓取所有 Feed 并合并到存储."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Sequence
from dataclasses import replace
from typing import TypeVar

from feedkeeper.config import SyncConfig
from feedkeeper.core.events import FeedSynced, SyncFinished, SyncNotifier, SyncStarted
from feedkeeper.core.store import Store
from feedkeeper.errors import (
    FailureKind,
    FeedError,
    FeedNotFoundError,
    ParseError,
    StorageError,
)
from feedkeeper.fetcher.http import Fetcher, FetchFailure, FetchResult, NotModified
from feedkeeper.models.feed import Feed
from feedkeeper.models.sync import SyncAttempt, SyncOutcome, SyncProgress
from feedkeeper.normalizer import normalize
from feedkeeper.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncEngine:
    """
    同步引擎.

    每个 Feed 独立执行 抓取 -> 解析 -> 合并，任何失败只记录在该 Feed 上。
    并发数由信号量限制；cancel() 之后尚未开始的 Feed 记为 skipped，
    已经开始的合并事务会完整提交。
    """

    def __init__(
        self,
        store: Store,
        fetcher: Fetcher,
        config: SyncConfig | None = None,
        notifier: SyncNotifier | None = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.config = config or SyncConfig()
        self.notifier = notifier or SyncNotifier()
        self._progress = SyncProgress()
        self._cancel_event = asyncio.Event()
        self._running = False

    @property
    def progress(self) -> SyncProgress:
        """当前进度的快照."""
        return replace(self._progress)

    @property
    def is_running(self) -> bool:
        return self._running

    def cancel(self) -> None:
        """请求取消当前同步."""
        if not self._running:
            return
        self._cancel_event.set()
        self._progress.status = "cancelling"
        logger.info("已请求取消同步，未开始的 Feed 将被跳过")

    async def sync_one(self, feed: Feed) -> SyncAttempt:
        """同步单个 Feed."""
        attempts = await self.sync_all([feed])
        return attempts[0]

    async def sync_all(self, feeds: Sequence[Feed] | None = None) -> list[SyncAttempt]:
        """
        同步一组 Feed（默认所有启用的 Feed）.

        Returns:
            每个 Feed 一条 SyncAttempt，顺序与输入一致
        """
        if self._running:
            msg = "已有同步在进行"
            raise RuntimeError(msg)

        self._running = True
        self._cancel_event.clear()
        attempts: list[SyncAttempt] = []
        interrupted = False

        try:
            if feeds is None:
                feeds = await self.store.list_active_feeds()

            self._progress = SyncProgress(
                status="running",
                total=len(feeds),
                started_at=utcnow(),
            )
            feed_ids = tuple(feed.id for feed in feeds)
            self.notifier.publish(SyncStarted(feed_ids=feed_ids))
            logger.info(f"开始同步，共 {len(feeds)} 个 Feed")

            semaphore = asyncio.Semaphore(self.config.concurrency_limit)

            async def run(feed: Feed) -> SyncAttempt:
                async with semaphore:
                    if self._cancel_event.is_set():
                        attempt = SyncAttempt(
                            feed_id=feed.id,
                            feed_title=feed.display_title,
                            outcome=SyncOutcome.SKIPPED,
                        )
                    else:
                        attempt = await self._sync_feed(feed)
                self._record(attempt)
                attempts.append(attempt)
                return attempt

            return list(await asyncio.gather(*(run(feed) for feed in feeds)))
        except asyncio.CancelledError:
            interrupted = True
            raise
        finally:
            self._finish(
                attempts, cancelled=interrupted or self._cancel_event.is_set()
            )

    def _record(self, attempt: SyncAttempt) -> None:
        self._progress.completed += 1
        if attempt.outcome == SyncOutcome.FAILURE:
            self._progress.failed += 1
        self.notifier.publish(FeedSynced(attempt=attempt))

    def _finish(self, attempts: list[SyncAttempt], *, cancelled: bool) -> None:
        self._running = False
        self._progress.status = "idle"
        self._progress.current_feed = None
        self._progress.finished_at = utcnow()
        self.notifier.publish(
            SyncFinished(attempts=tuple(attempts), cancelled=cancelled)
        )

        added = sum(a.items_added for a in attempts)
        failed = sum(1 for a in attempts if a.outcome == SyncOutcome.FAILURE)
        skipped = sum(1 for a in attempts if a.outcome == SyncOutcome.SKIPPED)
        logger.info(
            f"同步{'已取消' if cancelled else '完成'}: Feed={len(attempts)}, "
            f"新文章={added}, 失败={failed}, 跳过={skipped}"
        )

    async def _sync_feed(self, feed: Feed) -> SyncAttempt:
        """执行单个 Feed 的完整流程，异常全部转为 SyncAttempt."""
        title = feed.display_title
        self._progress.current_feed = title
        started = time.monotonic()

        try:
            attempt = await self._pipeline(feed)
        except FeedNotFoundError:
            logger.info(f"[{title}] 同步期间已取消订阅，跳过")
            attempt = SyncAttempt(
                feed_id=feed.id, feed_title=title, outcome=SyncOutcome.SKIPPED
            )
        except StorageError as e:
            logger.exception(f"[{title}] 存储失败: {e}")
            attempt = self._failure(feed, FailureKind.STORAGE, str(e))
        except Exception as e:
            logger.exception(f"[{title}] 同步异常: {e}")
            message = f"{type(e).__name__}: {e}"
            attempt = self._failure(feed, FailureKind.INTERNAL, message)
            try:
                await self._record_error(feed, FeedError(FailureKind.INTERNAL, message))
            except Exception as store_error:
                logger.warning(f"[{title}] 无法记录错误: {store_error}")

        attempt.duration = time.monotonic() - started
        return attempt

    async def _pipeline(self, feed: Feed) -> SyncAttempt:
        title = feed.display_title

        result = await self._fetch_with_retry(feed)
        if isinstance(result, FetchFailure):
            logger.warning(f"[{title}] 抓取失败: {result.message}")
            await self._record_error(feed, FeedError(result.kind, result.message))
            return self._failure(feed, result.kind, result.message)

        fetched_at = utcnow()

        if isinstance(result, NotModified):
            await self._shielded(
                self.store.upsert_feed_sync_result(feed.id, fetched_at=fetched_at)
            )
            logger.info(f"[{title}] 未修改 (304)")
            return SyncAttempt(
                feed_id=feed.id,
                feed_title=title,
                outcome=SyncOutcome.SUCCESS,
                not_modified=True,
            )

        try:
            normalized = normalize(
                result.content,
                feed.id,
                base_url=result.url,
                fetched_at=fetched_at,
                content_type=result.content_type,
            )
        except ParseError as e:
            logger.warning(f"[{title}] 解析失败: {e}")
            await self._record_error(feed, FeedError(FailureKind.PARSE, str(e)))
            return self._failure(feed, FailureKind.PARSE, str(e))

        merge = await self._shielded(
            self.store.merge_feed(
                feed.id,
                normalized.articles,
                fetched_at=fetched_at,
                etag=result.etag,
                last_modified=result.last_modified,
                title=normalized.title,
                site_url=normalized.site_url,
            )
        )

        skipped = len(normalized.skipped)
        logger.info(
            f"[{title}] 新增 {merge.added}，更新 {merge.updated}，跳过 {skipped}"
        )
        return SyncAttempt(
            feed_id=feed.id,
            feed_title=title,
            outcome=SyncOutcome.PARTIAL_SUCCESS if skipped else SyncOutcome.SUCCESS,
            items_added=merge.added,
            items_updated=merge.updated,
            items_skipped=skipped,
        )

    async def _fetch_with_retry(self, feed: Feed) -> FetchResult:
        """抓取；对可重试的失败按指数退避重试."""
        retries = 0
        while True:
            result = await self.fetcher.fetch(feed)
            if (
                not isinstance(result, FetchFailure)
                or not result.is_transient
                or retries >= self.config.retry_count
                or self._cancel_event.is_set()
            ):
                return result

            delay = self.config.retry_backoff * 2**retries
            retries += 1
            logger.info(
                f"[{feed.display_title}] {result.message}，{delay:.1f}s 后重试 "
                f"({retries}/{self.config.retry_count})"
            )
            if delay > 0:
                await asyncio.sleep(delay)

    async def _record_error(self, feed: Feed, error: FeedError) -> None:
        """只写入错误信息，保留原有缓存令牌和抓取时间."""
        await self._shielded(self.store.upsert_feed_sync_result(feed.id, error=error))

    @staticmethod
    async def _shielded(aw: Awaitable[T]) -> T:
        """写入开始后即使任务被取消也完整提交."""
        return await asyncio.shield(aw)

    @staticmethod
    def _failure(feed: Feed, kind: FailureKind, message: str) -> SyncAttempt:
        return SyncAttempt(
            feed_id=feed.id,
            feed_title=feed.display_title,
            outcome=SyncOutcome.FAILURE,
            failure_kind=kind,
            error=message,
        )
