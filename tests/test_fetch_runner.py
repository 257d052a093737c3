"""测试批量抓取执行器."""

from sqlalchemy.ext.asyncio import AsyncSession

from readshelf.config import Settings
from readshelf.core import fetch_runner
from readshelf.core.errors import ExtractionFailure, RemoteError, TransportFailure
from readshelf.core.fetch_runner import FetchOptions, FetchTaskRunner
from readshelf.core.store import ArticleStore
from readshelf.fetcher.extractor import FetchedContent

PYTHON_URL = "https://example.com/python-tips"
RUST_URL = "https://example.com/rust-intro"
NEWS_URL = "https://news.example.org/daily"


class FakeFetcher:
    """按 URL 返回预设结果或抛出预设异常."""

    def __init__(self, results: dict, on_fetch=None) -> None:
        self.results = results
        self.on_fetch = on_fetch
        self.calls: list[tuple[str, bool]] = []

    async def fetch(self, url: str, store_raw: bool = False) -> FetchedContent:
        self.calls.append((url, store_raw))
        if self.on_fetch:
            self.on_fetch(url)
        result = self.results[url]
        if isinstance(result, Exception):
            raise result
        return result

    def close(self) -> None:
        pass


def content(url: str, markdown: str = "Body", title: str | None = None) -> FetchedContent:
    return FetchedContent(markdown=markdown, final_url=url, title=title, raw_html="<p>Body</p>")


class TestRunBatch:
    """测试 FetchTaskRunner.run_batch."""

    async def test_mixed_results(
        self,
        async_session: AsyncSession,
        settings: Settings,
        sample_articles: dict[str, int],
    ) -> None:
        fetcher = FakeFetcher(
            {
                PYTHON_URL: content(PYTHON_URL, "# Python"),
                RUST_URL: RemoteError(404, "404 Not Found"),
                NEWS_URL: TransportFailure("NetworkError: connection refused"),
            }
        )
        runner = FetchTaskRunner(async_session, fetcher=fetcher, settings=settings)

        status = await runner.run_batch(FetchOptions(limit=10))

        assert status.status == "completed"
        assert status.total == 3
        assert status.completed == 1
        assert status.failed == 2
        assert status.processed == 3
        assert [o.status_code for o in status.errors] == [404, 0]
        assert [url for url, _ in fetcher.calls] == [PYTHON_URL, RUST_URL, NEWS_URL]

        store = ArticleStore(async_session)
        python = await store.get_article(sample_articles["python"])
        assert python.content_md == "# Python"
        assert python.title == "Python Tips"
        assert python.status_text == "OK"

        rust = await store.get_article(sample_articles["rust"])
        assert rust.failed_count == 1
        assert rust.status_code == 404
        assert rust.status_text == "404 Not Found"
        assert rust.content_md is None

        news = await store.get_article(sample_articles["news"])
        assert news.status_code == 0
        assert news.status_text == "NetworkError: connection refused"

    async def test_unexpected_error_is_recorded(
        self,
        async_session: AsyncSession,
        settings: Settings,
        sample_articles: dict[str, int],
    ) -> None:
        fetcher = FakeFetcher(
            {
                PYTHON_URL: RuntimeError("lxml blew up"),
                RUST_URL: content(RUST_URL),
                NEWS_URL: content(NEWS_URL),
            }
        )
        runner = FetchTaskRunner(async_session, fetcher=fetcher, settings=settings)

        status = await runner.run_batch(FetchOptions(limit=10, store_raw=True))

        assert status.status == "completed"
        assert status.completed == 2
        assert status.failed == 1
        assert status.errors[0].reason == "ExtractionError: RuntimeError: lxml blew up"

        python = await ArticleStore(async_session).get_article(sample_articles["python"])
        assert python.failed_count == 1
        assert python.status_text == "ExtractionError: RuntimeError: lxml blew up"

    async def test_failed_articles_wait_for_next_window(
        self,
        async_session: AsyncSession,
        settings: Settings,
        sample_articles: dict[str, int],
    ) -> None:
        fetcher = FakeFetcher(
            {
                PYTHON_URL: ExtractionFailure(200, "无法从页面内容中提取正文"),
                RUST_URL: content(RUST_URL),
                NEWS_URL: content(NEWS_URL),
            }
        )
        runner = FetchTaskRunner(async_session, fetcher=fetcher, settings=settings)

        first = await runner.run_batch(FetchOptions(limit=10))
        second = await runner.run_batch(FetchOptions(limit=10))

        assert first.failed == 1
        assert first.outcomes[0].reason.startswith("ExtractionError: ")
        assert first.outcomes[0].status_code == 200
        assert second.batch_id == "empty"
        assert second.total == 0
        assert await runner.pending_count() == 0

    async def test_extracted_title_and_raw_html(
        self,
        async_session: AsyncSession,
        settings: Settings,
        sample_articles: dict[str, int],
    ) -> None:
        fetcher = FakeFetcher({RUST_URL: content(RUST_URL, title="The Rust Book")})
        runner = FetchTaskRunner(async_session, fetcher=fetcher, settings=settings)

        status = await runner.run_batch(
            FetchOptions(
                limit=1,
                search="rust",
                prefer_extracted_title=True,
                store_raw=True,
            )
        )

        assert status.completed == 1
        assert fetcher.calls == [(RUST_URL, True)]
        rust = await ArticleStore(async_session).get_article(sample_articles["rust"])
        assert rust.title == "The Rust Book"
        assert rust.raw_html == "<p>Body</p>"

    async def test_title_kept_by_default(
        self,
        async_session: AsyncSession,
        settings: Settings,
        sample_articles: dict[str, int],
    ) -> None:
        fetcher = FakeFetcher({RUST_URL: content(RUST_URL, title="The Rust Book")})
        runner = FetchTaskRunner(async_session, fetcher=fetcher, settings=settings)

        await runner.run_batch(FetchOptions(limit=1, search="rust"))

        rust = await ArticleStore(async_session).get_article(sample_articles["rust"])
        assert rust.title == "Rust Intro"
        assert rust.raw_html is None

    async def test_stop_between_articles(
        self,
        async_session: AsyncSession,
        settings: Settings,
        sample_articles: dict[str, int],
    ) -> None:
        fetcher = FakeFetcher(
            {
                PYTHON_URL: content(PYTHON_URL),
                RUST_URL: content(RUST_URL),
                NEWS_URL: content(NEWS_URL),
            },
            on_fetch=lambda url: fetch_runner.request_stop(),
        )
        runner = FetchTaskRunner(async_session, fetcher=fetcher, settings=settings)

        status = await runner.run_batch(FetchOptions(limit=10))

        assert status.status == "cancelled"
        assert status.completed == 1
        assert len(fetcher.calls) == 1
        assert await runner.pending_count() == 2

    async def test_registry_tracks_latest_batch(
        self,
        async_session: AsyncSession,
        settings: Settings,
        sample_articles: dict[str, int],
    ) -> None:
        seen: list[str | None] = []
        fetcher = FakeFetcher(
            {NEWS_URL: content(NEWS_URL)},
            on_fetch=lambda url: seen.append(fetch_runner.get_current_batch_id()),
        )
        runner = FetchTaskRunner(async_session, fetcher=fetcher, settings=settings)

        status = await runner.run_batch(FetchOptions(limit=1, order="newest"))

        assert status.batch_id.startswith("fetch_")
        assert seen == [status.batch_id]
        assert fetch_runner.get_current_batch_id() is None
        assert fetch_runner.get_latest_batch_status() is status
        assert fetch_runner.get_batch_status(status.batch_id) is status
        assert status.completed_at is not None
        assert fetch_runner.request_stop() is None
