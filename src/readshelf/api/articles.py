"""文章 API."""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from readshelf.core.errors import ArticleNotFound
from readshelf.core.store import ArticleStore
from readshelf.export.markdown import MarkdownExporter
from readshelf.models.database import get_session
from readshelf.models.records import ArticleDetail, ArticleSummary
from readshelf.query.search import SearchOptions, SearchService

router = APIRouter(prefix="/api/articles", tags=["articles"])


@router.get("", response_model=list[ArticleSummary])
async def search_articles(
    q: str = Query("", description="搜索关键词"),
    field: Literal["url", "title", "content", "tags", "folder"] | None = Query(
        None, description="限定搜索字段"
    ),
    fts: bool = Query(False, description="使用全文索引"),
    since: str | None = Query(None, description="起始时间，如 7d、2024-01-01"),
    until: str | None = Query(None, description="截止时间"),
    folder: list[str] | None = Query(None, description="文件夹（任一）"),
    tag: list[str] | None = Query(None, description="标签"),
    tag_mode: Literal["all", "any"] = Query("all", description="标签匹配方式"),
    limit: int = Query(50, ge=1, le=500, description="返回数量"),
    session: AsyncSession = Depends(get_session),
) -> list[ArticleSummary]:
    """搜索文章."""
    options = SearchOptions(
        query=q,
        field=field,
        use_fts=fts,
        limit=limit,
        since=since,
        until=until,
        folders=folder or [],
        tags=tag or [],
        tag_mode=tag_mode,
    )
    try:
        return await SearchService(ArticleStore(session)).search(options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.get("/latest", response_model=list[ArticleSummary])
async def latest_articles(
    limit: int = Query(20, ge=1, le=500, description="返回数量"),
    since: str | None = Query(None, description="起始时间"),
    until: str | None = Query(None, description="截止时间"),
    session: AsyncSession = Depends(get_session),
) -> list[ArticleSummary]:
    """最近收藏的文章."""
    try:
        return await SearchService(ArticleStore(session)).latest(limit, since, until)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.get("/{article_id}", response_model=ArticleDetail)
async def get_article(
    article_id: int,
    session: AsyncSession = Depends(get_session),
) -> ArticleDetail:
    """获取文章详情."""
    try:
        return await ArticleStore(session).get_article(article_id)
    except ArticleNotFound as e:
        raise HTTPException(status_code=404, detail="文章不存在") from e


@router.get("/{article_id}/export", response_class=PlainTextResponse)
async def export_article(
    article_id: int,
    session: AsyncSession = Depends(get_session),
) -> str:
    """导出为 Markdown."""
    try:
        return await MarkdownExporter(ArticleStore(session)).export_article(article_id)
    except ArticleNotFound as e:
        raise HTTPException(status_code=404, detail="文章不存在") from e
