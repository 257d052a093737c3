"""文章、文件夹与标签数据模型."""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class Folder(SQLModel, table=True):
    """层级文件夹，``path_cache`` 缓存 ``父/子`` 形式的完整路径."""

    __tablename__ = "folders"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    title: str = Field(unique=True, description="文件夹名称")
    parent_id: int | None = Field(
        default=None,
        foreign_key="folders.id",
        ondelete="SET NULL",
        description="父文件夹",
    )
    path_cache: str | None = Field(default=None, description="完整路径缓存")


class Tag(SQLModel, table=True):
    """标签."""

    __tablename__ = "tags"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    title: str = Field(unique=True, description="标签名")


class ArticleTag(SQLModel, table=True):
    """文章-标签关联."""

    __tablename__ = "article_tags"  # type: ignore[assignment]

    article_id: int = Field(
        foreign_key="articles.id", primary_key=True, ondelete="CASCADE"
    )
    tag_id: int = Field(foreign_key="tags.id", primary_key=True, ondelete="CASCADE")


class Article(SQLModel, table=True):
    """收藏的文章及其抓取状态."""

    __tablename__ = "articles"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    url: str = Field(unique=True, description="规范化 URL")
    title: str = Field(default="", index=True, description="标题")
    selection: str | None = Field(default=None, description="摘录")
    folder_id: int | None = Field(
        default=None,
        foreign_key="folders.id",
        ondelete="SET NULL",
        index=True,
        description="所属文件夹",
    )
    saved_at: datetime = Field(sa_type=DateTime, index=True, description="收藏时间")

    synced_at: datetime | None = Field(
        default=None, sa_type=DateTime, index=True, description="最近一次成功抓取时间"
    )
    sync_failed_at: datetime | None = Field(
        default=None, sa_type=DateTime, description="最近一次抓取失败时间"
    )
    failed_count: int = Field(default=0, description="连续失败次数")
    status_code: int | None = Field(default=None, description="最近 HTTP 状态码")
    status_text: str | None = Field(default=None, description="最近状态描述")
    final_url: str | None = Field(default=None, description="重定向后的 URL")
    content_md: str | None = Field(default=None, description="正文 Markdown")
    raw_html: str | None = Field(default=None, description="正文 HTML（可选）")

    obsolete: bool = Field(default=False, index=True, description="是否已废弃")
