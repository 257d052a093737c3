"""测试全文提取器."""

from collections.abc import AsyncGenerator
from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio

from readshelf.core.errors import ExtractionFailure, RemoteError, TransportFailure
from readshelf.fetcher import extractor
from readshelf.fetcher.extractor import ContentFetcher, prettify_markdown

PAGE = "<html><head><title>Hello</title></head><body><p>Hello world</p></body></html>"


def make_fetcher(handler) -> ContentFetcher:
    return ContentFetcher(timeout=5, transport=httpx.MockTransport(handler))


@pytest_asyncio.fixture
async def fake_extract(monkeypatch: pytest.MonkeyPatch) -> AsyncGenerator[list, None]:
    """替换 trafilatura，记录调用参数."""
    calls: list = []

    def fake(html, url=None, output_format="txt", **kwargs):
        calls.append(output_format)
        if output_format == "html":
            return "<p>Hello world</p>"
        return "  Hello   world  \n\n\n\nSecond paragraph\n"

    monkeypatch.setattr(extractor, "extract", fake)
    monkeypatch.setattr(
        extractor,
        "extract_metadata",
        lambda html, default_url=None: SimpleNamespace(title=" Extracted Title "),
    )
    yield calls


class TestPrettifyMarkdown:
    def test_collapses_blank_lines_and_trims(self) -> None:
        text = "  # Title  \n\n\n\nBody line   \n"
        assert prettify_markdown(text) == "# Title\n\nBody line"

    def test_drops_tracker_lines(self) -> None:
        text = "Intro\n![](https://www.facebook.com/tr?id=1)\nOutro"
        assert prettify_markdown(text) == "Intro\nOutro"


class TestContentFetcher:
    """测试 ContentFetcher.fetch."""

    async def test_success(self, fake_extract: list) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, html=PAGE)

        fetcher = make_fetcher(handler)
        try:
            content = await fetcher.fetch("https://example.com/a")
        finally:
            fetcher.close()

        assert content.markdown == "Hello   world\n\nSecond paragraph"
        assert content.final_url == "https://example.com/a"
        assert content.status_code == 200
        assert content.status_text == "OK"
        assert content.title == "Extracted Title"
        assert content.raw_html is None
        assert fake_extract == ["markdown"]

    async def test_store_raw_and_redirect(self, fake_extract: list) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old":
                return httpx.Response(301, headers={"Location": "https://example.com/new"})
            return httpx.Response(200, html=PAGE)

        fetcher = make_fetcher(handler)
        try:
            content = await fetcher.fetch("https://example.com/old", store_raw=True)
        finally:
            fetcher.close()

        assert content.final_url == "https://example.com/new"
        assert content.raw_html == "<p>Hello world</p>"

    async def test_non_200_is_remote_error(self) -> None:
        fetcher = make_fetcher(lambda request: httpx.Response(404))
        try:
            with pytest.raises(RemoteError) as exc_info:
                await fetcher.fetch("https://example.com/missing")
        finally:
            fetcher.close()

        assert exc_info.value.status_code == 404
        assert exc_info.value.reason == "404 Not Found"

    async def test_connect_error_is_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = make_fetcher(handler)
        try:
            with pytest.raises(TransportFailure) as exc_info:
                await fetcher.fetch("https://example.com/a")
        finally:
            fetcher.close()

        assert exc_info.value.status_code == 0
        assert exc_info.value.reason.startswith("NetworkError: ")

    async def test_timeout_is_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        fetcher = make_fetcher(handler)
        try:
            with pytest.raises(TransportFailure) as exc_info:
                await fetcher.fetch("https://example.com/a")
        finally:
            fetcher.close()

        assert exc_info.value.reason.startswith("Timeout: ")

    async def test_empty_extraction(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(extractor, "extract", lambda html, **kwargs: None)
        fetcher = make_fetcher(lambda request: httpx.Response(200, html=PAGE))
        try:
            with pytest.raises(ExtractionFailure) as exc_info:
                await fetcher.fetch("https://example.com/a")
        finally:
            fetcher.close()

        assert exc_info.value.status_code == 200
        assert exc_info.value.reason.startswith("ExtractionError: ")

    async def test_raw_html_extraction_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake(html, url=None, output_format="txt", **kwargs):
            if output_format == "html":
                raise RuntimeError("lxml 解析失败")
            return "Hello world"

        monkeypatch.setattr(extractor, "extract", fake)
        monkeypatch.setattr(extractor, "extract_metadata", lambda html, default_url=None: None)
        fetcher = make_fetcher(lambda request: httpx.Response(200, html=PAGE))
        try:
            with pytest.raises(ExtractionFailure) as exc_info:
                await fetcher.fetch("https://example.com/a", store_raw=True)
        finally:
            fetcher.close()

        assert exc_info.value.status_code == 200
        assert exc_info.value.reason == "ExtractionError: lxml 解析失败"
