"""测试文章搜索."""

from datetime import datetime

import pytest

from readshelf.core.store import ArticleStore, ObsoleteSelector
from readshelf.query.search import SearchOptions, SearchService

NOW = datetime(2024, 3, 10, 12, 0, 0)


@pytest.fixture
def service(store: ArticleStore) -> SearchService:
    return SearchService(store)


def ids(results) -> list[int]:
    return [r.id for r in results]


class TestSearchOptions:
    def test_defaults(self) -> None:
        first = SearchOptions(query="python")
        second = SearchOptions()
        first.tags.append("tips")

        assert second.tags == []
        assert second.folders == []
        assert second.field is None
        assert first.has_filters is True
        assert second.has_filters is False


class TestKeywordSearch:
    """测试 LIKE 关键词搜索."""

    async def test_matches_url_and_title_newest_first(
        self, service: SearchService, sample_articles: dict[str, int]
    ) -> None:
        results = await service.search(SearchOptions(query="example"))
        assert ids(results) == [
            sample_articles["news"],
            sample_articles["rust"],
            sample_articles["python"],
        ]

    async def test_field_restriction(
        self, service: SearchService, sample_articles: dict[str, int]
    ) -> None:
        assert ids(await service.search(SearchOptions(query="news", field="url"))) == [
            sample_articles["news"]
        ]
        assert ids(await service.search(SearchOptions(query="tip", field="tags"))) == [
            sample_articles["python"]
        ]
        assert ids(await service.search(SearchOptions(query="dev", field="folder"))) == [
            sample_articles["rust"],
            sample_articles["python"],
        ]
        assert await service.search(SearchOptions(query="tips", field="folder")) == []

    async def test_limit(self, service: SearchService, sample_articles: dict[str, int]) -> None:
        results = await service.search(SearchOptions(query="example", limit=1))
        assert ids(results) == [sample_articles["news"]]

    async def test_summary_fields(
        self, service: SearchService, sample_articles: dict[str, int]
    ) -> None:
        [result] = await service.search(SearchOptions(query="Python Tips"))
        assert result.folder_path == "Dev"
        assert result.tags == ["python", "tips"]

    async def test_requires_query_or_filter(self, service: SearchService) -> None:
        with pytest.raises(ValueError):
            await service.search(SearchOptions(query="  "))
        with pytest.raises(ValueError):
            await service.search(SearchOptions(query="x", field="selection"))
        with pytest.raises(ValueError):
            await service.search(SearchOptions(query="x", tag_mode="none"))


class TestFtsSearch:
    """测试全文索引搜索."""

    async def test_content_match(
        self,
        store: ArticleStore,
        service: SearchService,
        sample_articles: dict[str, int],
    ) -> None:
        await store.record_fetch_success(
            sample_articles["rust"], "Ownership and borrowing explained", "https://x.org"
        )

        results = await service.search(SearchOptions(query="borrowing", use_fts=True))

        assert ids(results) == [sample_articles["rust"]]

    async def test_obsolete_hidden(
        self,
        store: ArticleStore,
        service: SearchService,
        sample_articles: dict[str, int],
    ) -> None:
        await store.mark_obsolete(ObsoleteSelector(ids=[sample_articles["python"]]))

        assert await service.search(SearchOptions(query="python", use_fts=True)) == []
        assert await service.search(SearchOptions(query="python")) == []

    async def test_filters_apply_to_fts(
        self, service: SearchService, sample_articles: dict[str, int]
    ) -> None:
        results = await service.search(
            SearchOptions(query="example", use_fts=True, tags=["rust"])
        )
        assert ids(results) == [sample_articles["rust"]]


class TestFilters:
    """测试标签、文件夹与时间过滤."""

    async def test_tags_all_and_any(
        self, service: SearchService, sample_articles: dict[str, int]
    ) -> None:
        all_mode = await service.search(SearchOptions(tags=["python", "tips"]))
        assert ids(all_mode) == [sample_articles["python"]]

        assert await service.search(SearchOptions(tags=["python", "rust"])) == []

        any_mode = await service.search(
            SearchOptions(tags=["Python", "rust"], tag_mode="any")
        )
        assert ids(any_mode) == [sample_articles["rust"], sample_articles["python"]]

    async def test_folders(
        self,
        store: ArticleStore,
        service: SearchService,
        sample_articles: dict[str, int],
    ) -> None:
        reading = await store.upsert_folder("Reading")
        await store.upsert_article(
            "https://news.example.org/daily", "Daily News", folder_id=reading
        )

        results = await service.search(SearchOptions(folders=["dev", "Reading"]))
        assert len(results) == 3

        results = await service.search(SearchOptions(query="example", folders=["reading"]))
        assert ids(results) == [sample_articles["news"]]

    async def test_since_until(
        self, service: SearchService, sample_articles: dict[str, int]
    ) -> None:
        results = await service.search(
            SearchOptions(since="2024-01-15", until="2024-02-01"), now=NOW
        )
        assert ids(results) == [sample_articles["rust"]]

        recent = await service.search(SearchOptions(since="7d"), now=NOW)
        assert ids(recent) == [sample_articles["news"]]

    async def test_latest(self, service: SearchService, sample_articles: dict[str, int]) -> None:
        latest = await service.latest(limit=2)
        assert ids(latest) == [sample_articles["news"], sample_articles["rust"]]

        older = await service.latest(until="2024-01-31", now=NOW)
        assert ids(older) == [sample_articles["python"]]
