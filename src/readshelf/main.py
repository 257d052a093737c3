"""readshelf HTTP 服务入口."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from readshelf import __version__
from readshelf.api import admin, articles, fetch, labels
from readshelf.config import get_settings
from readshelf.logging_utils import configure_logging
from readshelf.models.database import close_db, init_db
from readshelf.scheduler.tasks import create_scheduler, shutdown_scheduler

logger = logging.getLogger(__name__)


class ServiceInfo(BaseModel):
    name: str
    version: str


class HealthStatus(BaseModel):
    status: str


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期管理."""
    app_settings = get_settings()
    configure_logging(app_settings.log_level, app_settings.log_file)

    logger.info("正在初始化数据库...")
    await init_db(app_settings.database_url)

    if app_settings.feed_sync_enabled:
        logger.info("正在启动定时任务...")
        create_scheduler(app_settings)

    logger.info("readshelf 启动完成")
    yield

    logger.info("正在关闭...")
    await shutdown_scheduler()
    await close_db()
    logger.info("readshelf 已关闭")


app = FastAPI(
    title="readshelf",
    description="个人文章库: 收藏、全文抓取与搜索",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(articles.router)
app.include_router(labels.router)
app.include_router(fetch.router)
app.include_router(admin.router)


@app.get("/", response_model=ServiceInfo)
async def root() -> ServiceInfo:
    """根路径."""
    return ServiceInfo(name="readshelf", version=__version__)


@app.get("/health", response_model=HealthStatus)
async def health() -> HealthStatus:
    """健康检查."""
    return HealthStatus(status="ok")
