"""订阅源同步: 把 RSS/Atom 新条目加入文章库."""

import calendar
import logging
from datetime import datetime
from typing import Any

import feedparser
import httpx

from readshelf.config import get_settings
from readshelf.core.errors import FeedSyncError, InvalidURL
from readshelf.core.store import ArticleStore
from readshelf.models.feed import Feed
from readshelf.utils.dates import from_unix, utcnow

logger = logging.getLogger(__name__)


def entry_published(entry: Any) -> datetime | None:
    """条目发布时间（UTC），没有时返回 None."""
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            return from_unix(calendar.timegm(parsed))
    return None


class FeedIngestor:
    """下载订阅源并把未见过的条目写入文章库."""

    def __init__(
        self,
        store: ArticleStore,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.store = store
        self.timeout = timeout or get_settings().feed_timeout_seconds
        self._transport = transport

    async def fetch_entries(self, url: str) -> list[Any]:
        """
        下载并解析订阅源.

        Raises:
            FeedSyncError: 网络错误、非 200 响应或无法解析
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            msg = f"订阅源下载失败 {url}: {e}"
            raise FeedSyncError(msg) from e

        if response.status_code != 200:
            msg = f"订阅源返回状态码 {response.status_code}: {url}"
            raise FeedSyncError(msg)

        parsed = feedparser.parse(response.text)
        if parsed.bozo and not parsed.entries:
            msg = f"订阅源解析失败 {url}: {parsed.get('bozo_exception')}"
            raise FeedSyncError(msg)

        return list(parsed.entries)

    async def sync_feed(self, feed: Feed) -> int:
        """同步单个订阅源，返回新增文章数."""
        assert feed.id is not None
        entries = await self.fetch_entries(feed.url)
        tags = await self.store.feed_tag_titles(feed.id)

        added = 0
        for entry in entries:
            link = (entry.get("link") or "").strip()
            if not link:
                continue

            try:
                article_id = await self.store.insert_if_absent(
                    link,
                    title=(entry.get("title") or "").strip(),
                    saved_at=entry_published(entry) or utcnow(),
                )
            except InvalidURL as e:
                logger.warning(f"跳过无效条目: {e}")
                continue

            if article_id is None:
                continue
            if tags:
                await self.store.replace_tags(article_id, tags)
            added += 1

        await self.store.mark_feed_synced(feed.id)
        logger.info(f"订阅源 {feed.name} 同步完成，新增 {added} 篇")
        return added

    async def sync_all(self) -> dict[int, int]:
        """同步所有启用的订阅源，单个失败不影响其余."""
        results: dict[int, int] = {}
        for feed in await self.store.active_feeds():
            assert feed.id is not None
            try:
                results[feed.id] = await self.sync_feed(feed)
            except FeedSyncError as e:
                logger.warning(f"订阅源 {feed.name} 同步失败: {e}")
        return results
