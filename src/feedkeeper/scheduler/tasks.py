"""定时任务定义."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from feedkeeper.config import Settings
from feedkeeper.core.facade import QueryFacade

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def sync_task(facade: QueryFacade) -> None:
    """同步任务：触发一轮全部 Feed 的同步."""
    if facade.is_syncing:
        logger.info("已有同步任务在运行，跳过本次调度")
        return

    logger.info("开始定时同步...")
    task = await facade.trigger_sync()
    attempts = await task

    failed = sum(1 for attempt in attempts if not attempt.succeeded)
    logger.info(f"定时同步完成: Feed={len(attempts)}, 未成功={failed}")


def create_scheduler(facade: QueryFacade, settings: Settings) -> AsyncIOScheduler:
    """创建并启动定时任务调度器."""
    global _scheduler

    _scheduler = AsyncIOScheduler()

    _scheduler.add_job(
        sync_task,
        "interval",
        minutes=settings.sync_interval_minutes,
        args=[facade],
        id="sync_task",
        name="Feed 同步",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    if settings.sync_on_start:
        # 启动时立即执行一次
        _scheduler.add_job(
            sync_task,
            "date",
            args=[facade],
            id="sync_task_initial",
            name="初始同步",
        )

    _scheduler.start()
    logger.info(
        f"定时任务调度器已启动，同步间隔: {settings.sync_interval_minutes} 分钟"
    )

    return _scheduler


async def shutdown_scheduler() -> None:
    """关闭定时任务调度器."""
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        logger.info("定时任务调度器已关闭")
        _scheduler = None
