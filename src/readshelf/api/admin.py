"""管理 API: 废弃文章、统计与修复."""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from readshelf.core.store import ArticleStore, ObsoleteSelector
from readshelf.models.database import get_session
from readshelf.models.records import (
    IntegrityReport,
    LibraryStats,
    ObsoleteCandidate,
    ObsoleteResult,
    RepairReport,
)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class ObsoleteRequest(BaseModel):
    """废弃条件，多个条件同时满足才会命中."""

    ids: list[int] = Field(default_factory=list)
    status_codes: list[int] = Field(default_factory=list)
    min_failures: int | None = Field(None, ge=1)
    dry_run: bool = True
    confirm: bool = False


@router.post("/obsolete", response_model=ObsoleteResult)
async def mark_obsolete(
    payload: ObsoleteRequest,
    session: AsyncSession = Depends(get_session),
) -> ObsoleteResult:
    """标记文章为废弃，非预览模式需要 confirm."""
    if not payload.dry_run and not payload.confirm:
        raise HTTPException(status_code=400, detail="实际执行需要 confirm=true")

    selector = ObsoleteSelector(
        ids=payload.ids,
        status_codes=payload.status_codes,
        min_failures=payload.min_failures,
    )
    try:
        return await ArticleStore(session).mark_obsolete(selector, dry_run=payload.dry_run)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.get("/obsolete", response_model=list[ObsoleteCandidate])
async def list_obsolete(
    limit: int = Query(100, ge=1, le=1000, description="返回数量"),
    session: AsyncSession = Depends(get_session),
) -> list[ObsoleteCandidate]:
    """已废弃的文章."""
    return await ArticleStore(session).list_obsolete(limit)


@router.get("/stats", response_model=LibraryStats)
async def get_stats(session: AsyncSession = Depends(get_session)) -> LibraryStats:
    """文章库统计."""
    return await ArticleStore(session).stats()


@router.get("/doctor", response_model=IntegrityReport)
async def check_integrity(
    session: AsyncSession = Depends(get_session),
) -> IntegrityReport:
    """数据库完整性检查."""
    return await ArticleStore(session).integrity_report()


@router.post("/repair", response_model=RepairReport)
async def repair(session: AsyncSession = Depends(get_session)) -> RepairReport:
    """重算文件夹路径并重建全文索引."""
    return await ArticleStore(session).repair()
