"""同步通知通道：SyncEngine 向 UI 广播进度事件."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime

from feedkeeper.models.sync import SyncAttempt
from feedkeeper.utils.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncStarted:
    """一轮同步开始."""

    feed_ids: tuple[str, ...]
    started_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class FeedSynced:
    """单个 Feed 处理完毕（数据已提交）."""

    attempt: SyncAttempt


@dataclass(frozen=True)
class SyncFinished:
    """一轮同步结束."""

    attempts: tuple[SyncAttempt, ...]
    cancelled: bool = False
    finished_at: datetime = field(default_factory=utcnow)


SyncEvent = SyncStarted | FeedSynced | SyncFinished


class SyncNotifier:
    """事件广播，每个订阅者持有独立队列."""

    def __init__(self) -> None:
        self._subscribers: set[asyncio.Queue[SyncEvent]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[SyncEvent]:
        queue: asyncio.Queue[SyncEvent] = asyncio.Queue()
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[SyncEvent]) -> None:
        self._subscribers.discard(queue)

    def publish(self, event: SyncEvent) -> None:
        """非阻塞投递给所有订阅者."""
        for queue in self._subscribers:
            queue.put_nowait(event)
        logger.debug(
            f"事件已发布: {type(event).__name__} -> {len(self._subscribers)} 个订阅者"
        )

    @asynccontextmanager
    async def listen(self) -> AsyncIterator[asyncio.Queue[SyncEvent]]:
        """订阅并在退出时自动取消订阅."""
        queue = self.subscribe()
        try:
            yield queue
        finally:
            self.unsubscribe(queue)

    def stream(self) -> "EventStream":
        """立即订阅并返回事件迭代器."""
        return EventStream(self)


class EventStream:
    """
    创建时即完成订阅的事件迭代器.

    在开始迭代之前发布的事件也会保留在队列中；用完后调用 aclose()。
    """

    def __init__(self, notifier: SyncNotifier) -> None:
        self._notifier = notifier
        self._queue = notifier.subscribe()
        self._closed = False

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> SyncEvent:
        if self._closed:
            raise StopAsyncIteration
        return await self._queue.get()

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            self._notifier.unsubscribe(self._queue)

    async def __aenter__(self) -> "EventStream":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
