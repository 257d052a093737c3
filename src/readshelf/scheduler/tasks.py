"""定时任务: 周期性同步订阅源."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from readshelf.config import Settings
from readshelf.core.store import ArticleStore
from readshelf.ingest.feeds import FeedIngestor
from readshelf.models.database import async_session_maker

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None
_feed_sync_running = False


async def feed_sync_task(settings: Settings) -> dict[int, int]:
    """同步所有启用的订阅源. 只导入新条目，不触发全文抓取."""
    global _feed_sync_running

    if _feed_sync_running:
        logger.info("已有订阅源同步任务在运行，跳过本次调度")
        return {}

    _feed_sync_running = True
    logger.info("开始同步订阅源...")
    try:
        session_factory = async_session_maker()
        async with session_factory() as session:
            ingestor = FeedIngestor(
                ArticleStore(session), timeout=settings.feed_timeout_seconds
            )
            results = await ingestor.sync_all()
        logger.info(
            f"订阅源同步完成: {len(results)} 个订阅源，新增 {sum(results.values())} 篇"
        )
        return results
    finally:
        _feed_sync_running = False


def create_scheduler(settings: Settings) -> AsyncIOScheduler:
    """创建并启动定时任务调度器."""
    global _scheduler

    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        feed_sync_task,
        "interval",
        minutes=settings.feed_sync_interval_minutes,
        args=[settings],
        id="feed_sync_task",
        name="订阅源同步",
        replace_existing=True,
    )
    _scheduler.start()
    logger.info(
        f"定时任务调度器已启动，同步间隔: {settings.feed_sync_interval_minutes} 分钟"
    )
    return _scheduler


async def shutdown_scheduler() -> None:
    """关闭定时任务调度器."""
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        logger.info("定时任务调度器已关闭")
        _scheduler = None
