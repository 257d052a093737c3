"""标签与文件夹 API."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from readshelf.core.store import ArticleStore
from readshelf.models.database import get_session
from readshelf.models.records import FolderInfo, TagInfo

router = APIRouter(prefix="/api", tags=["labels"])


@router.get("/tags", response_model=list[TagInfo])
async def list_tags(session: AsyncSession = Depends(get_session)) -> list[TagInfo]:
    """获取所有标签及文章数."""
    return await ArticleStore(session).list_tags()


@router.get("/folders", response_model=list[FolderInfo])
async def list_folders(
    session: AsyncSession = Depends(get_session),
) -> list[FolderInfo]:
    """获取所有文件夹."""
    return await ArticleStore(session).list_folders()
