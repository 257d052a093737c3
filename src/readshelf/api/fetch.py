"""全文抓取 API."""

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from readshelf.config import get_settings
from readshelf.core.fetch_runner import (
    FetchBatchStatus,
    FetchOptions,
    FetchTaskRunner,
    get_batch_status,
    get_current_batch_id,
    get_latest_batch_status,
    release_batch,
    request_stop,
    reserve_batch,
)
from readshelf.models.database import async_session_maker, get_session

router = APIRouter(prefix="/api/fetch", tags=["fetch"])


class FetchRequest(BaseModel):
    """抓取参数."""

    limit: int | None = Field(None, ge=1, le=1000)
    order: Literal["oldest", "newest"] = "oldest"
    search: str | None = None
    prefer_extracted_title: bool | None = None
    store_raw: bool | None = None


class FetchStarted(BaseModel):
    message: str
    count: int


class OutcomeRecord(BaseModel):
    article_id: int
    url: str
    success: bool
    status_code: int
    reason: str
    failed_count: int = 0


class FetchProgress(BaseModel):
    """批次进度."""

    status: str
    batch_id: str | None = None
    total: int = 0
    completed: int = 0
    failed: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    current_item: str | None = None
    pending: int | None = None
    outcomes: list[OutcomeRecord] = Field(default_factory=list)


class StopResponse(BaseModel):
    stopped: bool
    batch_id: str | None = None


def _progress(status: FetchBatchStatus, state: str | None = None) -> FetchProgress:
    return FetchProgress(
        status=state or status.status,
        batch_id=status.batch_id,
        total=status.total,
        completed=status.completed,
        failed=status.failed,
        started_at=status.started_at,
        completed_at=status.completed_at,
        current_item=status.current_article,
        outcomes=[
            OutcomeRecord(
                article_id=o.article_id,
                url=o.url,
                success=o.success,
                status_code=o.status_code,
                reason=o.reason,
                failed_count=o.failed_count,
            )
            for o in status.outcomes
        ],
    )


@router.get("/progress", response_model=FetchProgress)
async def get_fetch_progress(
    session: AsyncSession = Depends(get_session),
) -> FetchProgress:
    """获取当前抓取进度，无任务时返回最近批次."""
    current_id = get_current_batch_id()
    if current_id:
        status = get_batch_status(current_id)
        if status:
            return _progress(status)

    pending = await FetchTaskRunner(session).pending_count()
    latest = get_latest_batch_status()
    if latest:
        progress = _progress(latest, state="idle")
        progress.pending = pending
        return progress

    return FetchProgress(status="idle", pending=pending)


@router.post("/batch", response_model=FetchStarted)
async def trigger_batch_fetch(
    payload: FetchRequest | None = None,
    background_tasks: BackgroundTasks = BackgroundTasks(),
    session: AsyncSession = Depends(get_session),
) -> FetchStarted:
    """触发批量抓取（后台执行）."""
    if not reserve_batch():
        raise HTTPException(status_code=409, detail="已有抓取任务在运行中")

    try:
        pending_count = await FetchTaskRunner(session).pending_count()
    except BaseException:
        release_batch()
        raise
    if pending_count == 0:
        release_batch()
        return FetchStarted(message="没有待抓取的文章", count=0)

    payload = payload or FetchRequest()
    settings = get_settings()
    options = FetchOptions(
        limit=payload.limit or settings.fetch_batch_size,
        order=payload.order,
        search=payload.search,
        prefer_extracted_title=(
            settings.fetch_prefer_extracted_title
            if payload.prefer_extracted_title is None
            else payload.prefer_extracted_title
        ),
        store_raw=settings.fetch_store_raw if payload.store_raw is None else payload.store_raw,
    )
    count = min(options.limit, pending_count)

    background_tasks.add_task(_run_batch_fetch, options)
    return FetchStarted(message=f"开始抓取 {count} 篇文章", count=count)


@router.post("/stop", response_model=StopResponse)
async def stop_fetch() -> StopResponse:
    """请求停止当前批次."""
    batch_id = request_stop()
    return StopResponse(stopped=batch_id is not None, batch_id=batch_id)


async def _run_batch_fetch(options: FetchOptions) -> None:
    """后台执行批量抓取."""
    try:
        async with async_session_maker()() as session:
            runner = FetchTaskRunner(session)
            try:
                await runner.run_batch(options)
            finally:
                runner.fetcher.close()
    finally:
        release_batch()
