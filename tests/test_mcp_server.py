"""测试 MCP 工具服务."""

import pytest
from mcp.server.fastmcp.exceptions import ToolError
from sqlalchemy.ext.asyncio import AsyncEngine

from readshelf.config import Settings
from readshelf.core.store import ArticleStore
from readshelf.mcp_server import LibraryTools, create_server
from readshelf.models.database import create_session_factory


@pytest.fixture
def tools(engine: AsyncEngine, settings: Settings) -> LibraryTools:
    return LibraryTools(session_factory=create_session_factory(engine), settings=settings)


class TestSearchTools:
    """测试检索类工具."""

    async def test_search_articles(
        self, tools: LibraryTools, sample_articles: dict[str, int]
    ) -> None:
        result = await tools.search_articles(query="rust", use_fts=False)

        assert result.query == "rust"
        assert result.total_count == 1
        assert result.articles[0].id == sample_articles["rust"]
        assert result.articles[0].folder_path == "Dev"

    async def test_search_with_fts_and_tags(
        self, tools: LibraryTools, sample_articles: dict[str, int]
    ) -> None:
        result = await tools.search_articles(query="python", tags=["tips"])
        assert [a.id for a in result.articles] == [sample_articles["python"]]

    async def test_only_synced(
        self,
        tools: LibraryTools,
        store: ArticleStore,
        sample_articles: dict[str, int],
    ) -> None:
        await store.record_fetch_success(
            sample_articles["rust"], "# Rust", "https://example.com/rust-intro"
        )

        result = await tools.search_articles(folders=["Dev"], only_synced=True)

        assert [a.id for a in result.articles] == [sample_articles["rust"]]

    async def test_search_without_query_is_tool_error(self, tools: LibraryTools) -> None:
        with pytest.raises(ToolError):
            await tools.search_articles()

    async def test_latest(self, tools: LibraryTools, sample_articles: dict[str, int]) -> None:
        result = await tools.get_latest_articles(limit=2)
        assert [a.id for a in result.articles] == [
            sample_articles["news"],
            sample_articles["rust"],
        ]


class TestReadTools:
    """测试阅读与导出工具."""

    async def test_get_article(
        self,
        tools: LibraryTools,
        store: ArticleStore,
        sample_articles: dict[str, int],
    ) -> None:
        python = sample_articles["python"]
        await store.record_fetch_success(
            python, "# Tips", "https://example.com/python-tips", raw_html="<h1>Tips</h1>"
        )

        full = await tools.get_article(python, include_html=True)
        brief = await tools.get_article(python, include_content=False, include_tags=False)

        assert full.content_md == "# Tips"
        assert full.raw_html == "<h1>Tips</h1>"
        assert full.tags == ["python", "tips"]
        assert brief.content_md is None
        assert brief.raw_html is None
        assert brief.tags == []

    async def test_missing_article(self, tools: LibraryTools) -> None:
        with pytest.raises(ToolError):
            await tools.get_article(999)

    async def test_folders_and_tags(
        self, tools: LibraryTools, sample_articles: dict[str, int]
    ) -> None:
        folders = await tools.list_folders()
        tags = await tools.list_tags(min_count=1)

        assert [f.path for f in folders.folders] == ["Dev"]
        assert [t.title for t in tags.tags] == ["python", "rust", "tips"]
        assert (await tools.list_tags(min_count=2)).tags == []

    async def test_export_articles(
        self,
        tools: LibraryTools,
        store: ArticleStore,
        sample_articles: dict[str, int],
    ) -> None:
        await store.record_fetch_success(
            sample_articles["python"], "# Tips", "https://example.com/python-tips"
        )

        synced = await tools.export_articles()
        everything = await tools.export_articles(only_synced=False, limit=2)

        assert synced.exported_count == 1
        assert synced.article_ids == [sample_articles["python"]]
        assert synced.content.startswith("---\ntitle: Python Tips\n")
        assert synced.content.endswith("# Tips")
        assert everything.article_ids == [sample_articles["news"], sample_articles["rust"]]
        assert "Article content not yet fetched" in everything.content


async def test_server_registers_tools(tools: LibraryTools, settings: Settings) -> None:
    server = create_server(tools, settings=settings)

    names = {tool.name for tool in await server.list_tools()}

    assert names == {
        "search_articles",
        "get_article",
        "list_folders",
        "list_tags",
        "export_articles",
        "get_latest_articles",
    }
