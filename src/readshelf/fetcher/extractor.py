"""全文提取器."""

import asyncio
import logging
import re
from concurrent.futures import ThreadPoolExecutor

import httpx
from pydantic import BaseModel
from trafilatura import extract
from trafilatura.metadata import extract_metadata

from readshelf.core.errors import ExtractionFailure, RemoteError, TransportFailure

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "readshelf/0.1 (+https://github.com/readshelf/readshelf)"

# 统计与追踪脚本残留
TRACKER_MARKERS = ("facebook.com/tr", "google-analytics", "gtag", "googletagmanager")

_BLANK_RUN_RE = re.compile(r"\n{3,}")


class FetchedContent(BaseModel):
    """全文抓取结果."""

    markdown: str
    final_url: str
    status_code: int = 200
    status_text: str = "OK"
    title: str | None = None
    raw_html: str | None = None


def prettify_markdown(markdown: str) -> str:
    """清理 Markdown: 去掉行首尾空白、合并连续空行、删除追踪代码行."""
    lines = []
    for line in markdown.split("\n"):
        stripped = line.strip()
        if any(marker in stripped for marker in TRACKER_MARKERS):
            continue
        lines.append(stripped)

    text = "\n".join(lines)
    text = _BLANK_RUN_RE.sub("\n\n", text)
    return text.strip()


def _describe(error: Exception) -> str:
    return str(error) or type(error).__name__


class ContentFetcher:
    """下载网页并用 trafilatura 提取正文为 Markdown."""

    def __init__(
        self,
        timeout: float = 20.0,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport
        self._executor = ThreadPoolExecutor(max_workers=2)

    def close(self) -> None:
        """关闭线程池."""
        self._executor.shutdown(wait=False)

    async def fetch(self, url: str, store_raw: bool = False) -> FetchedContent:
        """
        抓取指定 URL 的全文.

        Raises:
            TransportFailure: 网络错误或超时（状态码记为 0）
            RemoteError: 最终响应不是 200
            ExtractionFailure: 无法提取正文
        """
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers=headers,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException as e:
            raise TransportFailure(f"Timeout: {_describe(e)}") from e
        except httpx.InvalidURL as e:
            raise TransportFailure(f"RequestError: {_describe(e)}") from e
        except httpx.HTTPError as e:
            raise TransportFailure(f"NetworkError: {_describe(e)}") from e

        status_code = response.status_code
        if status_code != 200:
            raise RemoteError(status_code, f"{status_code} {response.reason_phrase}".strip())

        final_url = str(response.url)

        # trafilatura 是同步库，这里用线程池包装成异步
        loop = asyncio.get_running_loop()
        markdown, title, raw_html = await loop.run_in_executor(
            self._executor,
            self._extract_sync,
            response.text,
            final_url,
            store_raw,
        )

        return FetchedContent(
            markdown=markdown,
            final_url=final_url,
            status_code=status_code,
            title=title,
            raw_html=raw_html,
        )

    def _extract_sync(
        self, html: str, url: str, store_raw: bool
    ) -> tuple[str, str | None, str | None]:
        """同步提取正文."""
        try:
            markdown = extract(
                html,
                url=url,
                output_format="markdown",
                include_comments=False,
                include_tables=True,
                include_links=True,
                favor_precision=False,
            )
        except Exception as e:
            raise ExtractionFailure(200, _describe(e)) from e

        if not markdown or not markdown.strip():
            raise ExtractionFailure(200, "无法从页面内容中提取正文")

        markdown = prettify_markdown(markdown)
        if not markdown:
            raise ExtractionFailure(200, "清理后正文为空")

        title = None
        try:
            metadata = extract_metadata(html, default_url=url)
        except Exception as e:
            logger.debug(f"元数据提取失败: {url} - {e}")
            metadata = None
        if metadata is not None and metadata.title:
            title = metadata.title.strip() or None

        raw_html = None
        if store_raw:
            try:
                raw_html = extract(
                    html,
                    url=url,
                    output_format="html",
                    include_comments=False,
                    include_tables=True,
                    include_links=True,
                )
            except Exception as e:
                raise ExtractionFailure(200, _describe(e)) from e

        return markdown, title, raw_html
