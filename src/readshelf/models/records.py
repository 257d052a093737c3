"""存储层与 HTTP API 返回的只读记录."""

from datetime import datetime

from pydantic import BaseModel, Field, computed_field


class ArticleSummary(BaseModel):
    """搜索或列表中的一行."""

    id: int
    url: str
    title: str
    folder_path: str | None = None
    tags: list[str] = Field(default_factory=list)
    saved_at: datetime
    synced_at: datetime | None = None
    failed_count: int = 0
    status_code: int | None = None


class ArticleDetail(ArticleSummary):
    """文章完整快照（导出使用）."""

    selection: str | None = None
    folder_id: int | None = None
    sync_failed_at: datetime | None = None
    status_text: str | None = None
    final_url: str | None = None
    content_md: str | None = None
    raw_html: str | None = None
    obsolete: bool = False


class ObsoleteCandidate(BaseModel):
    """被废弃条件命中的文章."""

    id: int
    url: str
    title: str
    saved_at: datetime
    folder_id: int | None = None
    status_code: int | None = None
    failed_count: int = 0


class ObsoleteResult(BaseModel):
    """废弃操作结果."""

    candidates: list[ObsoleteCandidate] = Field(default_factory=list)
    affected: int = 0
    dry_run: bool = False


class FolderInfo(BaseModel):
    """文件夹列表项."""

    id: int
    title: str
    parent_id: int | None = None
    path: str


class TagInfo(BaseModel):
    """标签列表项."""

    id: int
    title: str
    article_count: int = 0


class FeedInfo(BaseModel):
    """订阅源及其标签."""

    id: int
    url: str
    name: str
    created_at: datetime
    last_synced_at: datetime | None = None
    active: bool = True
    tags: list[str] = Field(default_factory=list)


class LibraryStats(BaseModel):
    """文章库统计."""

    total: int = 0
    obsolete: int = 0
    fetched: int = 0
    not_fetched: int = 0
    failures_by_count: dict[int, int] = Field(default_factory=dict)
    status_codes: dict[int, int] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def active(self) -> int:
        return self.total - self.obsolete


class IntegrityReport(BaseModel):
    """数据库检查结果."""

    integrity_ok: bool = True
    integrity_messages: list[str] = Field(default_factory=list)
    foreign_key_violations: int = 0
    articles: int = 0
    folders: int = 0
    tags: int = 0
    synced_articles: int = 0
    exhausted_articles: int = 0
    duplicate_urls: dict[str, int] = Field(default_factory=dict)


class RepairReport(BaseModel):
    """修复结果."""

    folders: int = 0
    indexed: int = 0
