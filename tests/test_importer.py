"""测试 CSV 导入."""

import io
from datetime import datetime
from pathlib import Path

import pytest

from readshelf.core.store import ArticleStore, ObsoleteSelector
from readshelf.ingest import importer
from readshelf.ingest.importer import CsvImporter
from readshelf.query.search import SearchOptions, SearchService

HEADER = "URL,Title,Selection,Folder,Timestamp,Tags\n"


async def import_text(store: ArticleStore, body: str):
    return await CsvImporter(store).import_stream(io.StringIO(HEADER + body))


class TestCsvImporter:
    """测试 CsvImporter."""

    async def test_imports_row(self, store: ArticleStore) -> None:
        report = await import_text(
            store, 'http://example.com/a/,Title A,,Reading,1700000000,"[""x"", ""y""]"\n'
        )

        assert report.total == 1
        assert report.processed == 1
        assert report.created == 1
        assert report.skipped == 0

        results = await SearchService(store).search(SearchOptions(query="example.com"))
        assert len(results) == 1
        article = results[0]
        assert article.url == "https://example.com/a"
        assert article.title == "Title A"
        assert article.saved_at == datetime(2023, 11, 14, 22, 13, 20)
        assert article.folder_path == "Reading"
        assert article.tags == ["x", "y"]

    async def test_reimport_updates_instead_of_duplicating(self, store: ArticleStore) -> None:
        await import_text(store, "https://example.com/a,Old,,,1700000000,a\n")
        report = await import_text(store, "http://example.com/a/,New,quote,,1700000100,b\n")

        assert report.created == 0
        assert report.updated == 1
        stats = await store.stats()
        assert stats.total == 1

        results = await SearchService(store).search(SearchOptions(query="example"))
        assert results[0].title == "New"
        assert results[0].tags == ["b"]

    async def test_long_selection_is_imported(self, store: ArticleStore) -> None:
        selection = "x" * 200_000

        report = await import_text(
            store, f"https://example.com/long,Long,{selection},,1700000000,\n"
        )

        assert report.processed == 1
        article = (await SearchService(store).search(SearchOptions(query="long")))[0]
        detail = await store.get_article(article.id)
        assert detail.selection == selection

    async def test_unparseable_record_is_skipped(
        self, store: ArticleStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(importer, "MAX_FIELD_SIZE", 1000)

        report = await import_text(
            store,
            f"https://example.com/huge,Huge,{'x' * 2000},Reading,1700000000,\n"
            "https://example.com/after,After,,Reading,1700000100,\n",
        )

        assert report.total == 2
        assert report.skipped == 1
        assert report.processed == 1
        results = await SearchService(store).search(SearchOptions(query="example.com"))
        assert [r.url for r in results] == ["https://example.com/after"]
        assert results[0].folder_path == "Reading"

    async def test_bad_rows_are_skipped(self, store: ArticleStore) -> None:
        report = await import_text(
            store,
            "https://example.com/ok,OK,,,1700000000,\n"
            "https://example.com/short,Short\n"
            "https://example.com/time,Bad time,,,yesterday,\n"
            "not a url,Bad url,,Ghost,1700000000,\n",
        )

        assert report.total == 4
        assert report.processed == 1
        assert report.skipped == 3
        assert [f.title for f in await store.list_folders()] == []

    async def test_header_checks(self, store: ArticleStore) -> None:
        importer = CsvImporter(store)
        with pytest.raises(ValueError):
            await importer.import_stream(io.StringIO(""))
        with pytest.raises(ValueError):
            await importer.import_stream(io.StringIO("URL,Title\n"))

        # 列名不同但列数正确时只告警
        report = await importer.import_stream(
            io.StringIO("url,title,selection,folder,time,tags\nhttps://e.com/x,X,,,1,\n")
        )
        assert report.processed == 1

    async def test_import_file_with_bom(self, store: ArticleStore, tmp_path: Path) -> None:
        path = tmp_path / "export.csv"
        path.write_text(
            "\ufeff" + HEADER + "https://example.com/a,A,,,1700000000,\n", encoding="utf-8"
        )

        report = await CsvImporter(store).import_file(path)

        assert report.processed == 1

    async def test_obsolete_after_failures_disappears(self, store: ArticleStore) -> None:
        await import_text(store, "https://example.com/dead,Dead link,,,1700000000,\n")
        results = await SearchService(store).search(SearchOptions(query="dead"))
        article_id = results[0].id
        for _ in range(5):
            await store.record_fetch_failure(article_id, 404, "404 Not Found")

        result = await store.mark_obsolete(ObsoleteSelector(min_failures=5))

        assert result.affected == 1
        assert await SearchService(store).search(SearchOptions(query="dead")) == []
        assert (
            await SearchService(store).search(SearchOptions(query="dead", use_fts=True)) == []
        )
