"""feedkeeper 主入口."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from feedkeeper.config import Settings, SyncConfig, get_settings
from feedkeeper.core.facade import QueryFacade
from feedkeeper.core.store import Store
from feedkeeper.core.sync import SyncEngine
from feedkeeper.fetcher.http import Fetcher
from feedkeeper.models.sync import SyncAttempt, SyncOutcome
from feedkeeper.scheduler import create_scheduler, shutdown_scheduler

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(settings: Settings) -> AsyncIterator[QueryFacade]:
    """打开存储和 HTTP 客户端，退出时全部关闭."""
    logger.info("正在初始化数据库...")
    store = Store(settings.database_url)
    await store.open()

    config = SyncConfig.from_settings(settings)
    fetcher = Fetcher(config)
    try:
        if settings.feed_list:
            await store.sync_feed_list(settings.feed_list)

        engine = SyncEngine(store, fetcher, config)
        yield QueryFacade(store, engine)
    finally:
        logger.info("正在关闭...")
        await fetcher.close()
        await store.close()


async def run_once(settings: Settings | None = None) -> list[SyncAttempt]:
    """执行一轮同步后退出."""
    settings = settings or get_settings()

    async with lifespan(settings) as facade:
        task = await facade.trigger_sync()
        attempts = await task

    for attempt in attempts:
        if attempt.outcome == SyncOutcome.FAILURE:
            logger.warning(
                f"{attempt.feed_title}: {attempt.failure_kind} - {attempt.error}"
            )
    return attempts


async def serve(settings: Settings | None = None) -> None:
    """常驻运行，按计划定时同步."""
    settings = settings or get_settings()

    async with lifespan(settings) as facade:
        create_scheduler(facade, settings)
        logger.info("feedkeeper 启动完成！")
        try:
            await asyncio.Event().wait()
        finally:
            await shutdown_scheduler()
            # 关闭存储前等待已开始的合并提交
            facade.cancel_sync()
            await facade.wait_for_sync()


def run() -> None:
    """命令行入口."""
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("feedkeeper 已关闭")
