"""
MCP 工具服务.

通过 stdio 向支持工具调用的客户端提供只读的检索、阅读与导出工具，
每次工具调用使用独立的数据库会话。
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Literal

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from readshelf.config import Settings, get_settings
from readshelf.core.errors import ReadshelfError
from readshelf.core.policy import RetryPolicy
from readshelf.core.store import ArticleStore
from readshelf.export.markdown import MarkdownExporter
from readshelf.models.database import async_session_maker, close_db, init_db
from readshelf.models.records import ArticleDetail, ArticleSummary, FolderInfo, TagInfo
from readshelf.query.search import SearchOptions, SearchService
from readshelf.utils.dates import utcnow

logger = logging.getLogger(__name__)

SearchField = Literal["url", "title", "content", "tags", "folder"]

INSTRUCTIONS = (
    "个人文章库。查找主题相关文章用 search_articles（例如 query='kubernetes', since='1w'），"
    "只按时间浏览用 get_latest_articles，阅读全文用 get_article，"
    "需要把多篇文章一次性读入上下文时用 export_articles。"
)


class SearchResult(BaseModel):
    """search_articles 的返回."""

    query: str
    total_count: int
    articles: list[ArticleSummary] = Field(default_factory=list)


class ArticleList(BaseModel):
    total_count: int
    articles: list[ArticleSummary] = Field(default_factory=list)


class FolderList(BaseModel):
    folders: list[FolderInfo] = Field(default_factory=list)


class TagList(BaseModel):
    tags: list[TagInfo] = Field(default_factory=list)


class ExportedArticles(BaseModel):
    """export_articles 的返回: 多篇 Markdown 文档依次拼接."""

    exported_count: int
    article_ids: list[int] = Field(default_factory=list)
    content: str = ""


class LibraryTools:
    """MCP 工具实现."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    @asynccontextmanager
    async def _store(self) -> AsyncIterator[ArticleStore]:
        """打开会话；已知错误转为工具错误返回给客户端."""
        factory = self.session_factory or async_session_maker()
        async with factory() as session:
            try:
                yield ArticleStore(session, policy=RetryPolicy.from_settings(self.settings))
            except (ReadshelfError, ValueError) as e:
                raise ToolError(str(e)) from e

    async def search_articles(
        self,
        query: str = "",
        field: SearchField | None = None,
        use_fts: bool = True,
        limit: int = 50,
        tags: list[str] | None = None,
        folders: list[str] | None = None,
        since: str | None = None,
        until: str | None = None,
        only_synced: bool = False,
    ) -> SearchResult:
        """
        搜索文章.

        默认使用全文索引，多个关键词取交集。tags 要求同时带有全部标签，
        folders 命中任一文件夹即可。since/until 支持 today、yesterday、
        1d、1w、1m、1y 以及 YYYY-MM-DD。query 与过滤条件至少给出一个。
        """
        options = SearchOptions(
            query=query,
            field=field,
            use_fts=use_fts,
            limit=limit,
            since=since,
            until=until,
            folders=folders or [],
            tags=tags or [],
        )
        async with self._store() as store:
            articles = await SearchService(store).search(options)

        if only_synced:
            articles = [a for a in articles if a.synced_at is not None]
        return SearchResult(query=query, total_count=len(articles), articles=articles)

    async def get_article(
        self,
        article_id: int,
        include_content: bool = True,
        include_html: bool = False,
        include_tags: bool = True,
    ) -> ArticleDetail:
        """按 ID 读取单篇文章的元数据与正文."""
        async with self._store() as store:
            article = await store.get_article(article_id)

        updates: dict[str, object] = {}
        if not include_content:
            updates["content_md"] = None
        if not include_html:
            updates["raw_html"] = None
        if not include_tags:
            updates["tags"] = []
        return article.model_copy(update=updates)

    async def list_folders(self) -> FolderList:
        """列出全部文件夹及其完整路径."""
        async with self._store() as store:
            return FolderList(folders=await store.list_folders())

    async def list_tags(self, min_count: int = 0) -> TagList:
        """列出标签及文章数，可只保留至少 min_count 篇文章的标签."""
        async with self._store() as store:
            tags = await store.list_tags()
        return TagList(tags=[t for t in tags if t.article_count >= min_count])

    async def export_articles(
        self,
        query: str = "",
        tags: list[str] | None = None,
        limit: int = 10,
        only_synced: bool = True,
    ) -> ExportedArticles:
        """
        把文章导出为 Markdown 并直接返回文本.

        给出 query 或 tags 时导出命中的文章，否则导出最近收藏的文章。
        only_synced 为 True 时跳过尚未抓取正文的文章。
        """
        exported_at = utcnow()
        documents: list[str] = []
        ids: list[int] = []

        async with self._store() as store:
            search = SearchService(store)
            if query or tags:
                found = await search.search(
                    SearchOptions(query=query, use_fts=bool(query), limit=0, tags=tags or [])
                )
            else:
                found = await search.latest(limit=0)

            exporter = MarkdownExporter(store)
            for summary in found:
                if limit > 0 and len(ids) >= limit:
                    break
                article = await store.get_article(summary.id)
                if only_synced and not article.content_md:
                    continue
                documents.append(exporter.render(article, exported_at))
                ids.append(article.id)

        logger.info(f"MCP 导出 {len(ids)} 篇文章")
        return ExportedArticles(
            exported_count=len(ids), article_ids=ids, content="\n".join(documents)
        )

    async def get_latest_articles(
        self,
        limit: int = 20,
        since: str | None = None,
        until: str | None = None,
        only_synced: bool = False,
    ) -> ArticleList:
        """最近收藏的文章，新的在前. 适合“上周存了什么”这类不需要关键词的请求."""
        async with self._store() as store:
            articles = await SearchService(store).latest(limit=limit, since=since, until=until)

        if only_synced:
            articles = [a for a in articles if a.synced_at is not None]
        return ArticleList(total_count=len(articles), articles=articles)


def create_server(
    tools: LibraryTools | None = None, settings: Settings | None = None
) -> FastMCP:
    """创建 MCP 服务并注册工具."""
    settings = settings or get_settings()
    tools = tools or LibraryTools(settings=settings)

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        if tools.session_factory is not None:
            yield
            return
        await init_db(settings.database_url)
        try:
            yield
        finally:
            await close_db()

    server = FastMCP("readshelf", instructions=INSTRUCTIONS, lifespan=lifespan)
    for tool in (
        tools.search_articles,
        tools.get_article,
        tools.list_folders,
        tools.list_tags,
        tools.export_articles,
        tools.get_latest_articles,
    ):
        server.add_tool(tool)
    return server
