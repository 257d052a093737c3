"""全文抓取任务执行器."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from readshelf.config import Settings, get_settings
from readshelf.core.errors import ExtractionFailure, FetchFailure
from readshelf.core.policy import RetryPolicy
from readshelf.core.store import ArticleStore
from readshelf.fetcher.extractor import ContentFetcher
from readshelf.models.article import Article
from readshelf.utils.dates import utcnow

logger = logging.getLogger(__name__)


@dataclass
class FetchOptions:
    """单次抓取的参数."""

    limit: int = 10
    order: str = "oldest"  # oldest | newest
    search: str | None = None
    prefer_extracted_title: bool = False
    store_raw: bool = False


@dataclass
class ArticleOutcome:
    """单篇文章的抓取结果."""

    article_id: int
    url: str
    title: str
    success: bool
    status_code: int
    reason: str
    failed_count: int = 0
    finished_at: datetime = field(default_factory=utcnow)


@dataclass
class FetchBatchStatus:
    """批量抓取状态."""

    batch_id: str
    total: int
    completed: int = 0
    failed: int = 0
    status: str = "running"  # running | completed | cancelled | failed
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    current_article: str | None = None
    outcomes: list[ArticleOutcome] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.completed + self.failed

    @property
    def errors(self) -> list[ArticleOutcome]:
        return [o for o in self.outcomes if not o.success]


# 全局状态存储
_fetch_status: dict[str, FetchBatchStatus] = {}
_current_batch_id: str | None = None
_latest_batch_id: str | None = None
_stop_requests: set[str] = set()
_batch_reserved = False


def get_current_batch_id() -> str | None:
    """获取当前正在运行的批次 ID."""
    return _current_batch_id


def is_batch_active() -> bool:
    """是否有批次正在运行或已被占用."""
    return _batch_reserved or _current_batch_id is not None


def reserve_batch() -> bool:
    """占用批次槽位，已被占用时返回 False. 检查与占用之间没有 await."""
    global _batch_reserved
    if is_batch_active():
        return False
    _batch_reserved = True
    return True


def release_batch() -> None:
    """释放 reserve_batch 占用的槽位."""
    global _batch_reserved
    _batch_reserved = False


def get_batch_status(batch_id: str) -> FetchBatchStatus | None:
    """获取指定批次的状态."""
    return _fetch_status.get(batch_id)


def get_latest_batch_status() -> FetchBatchStatus | None:
    """获取最近一次批次状态."""
    if _latest_batch_id is None:
        return None
    return _fetch_status.get(_latest_batch_id)


def request_stop() -> str | None:
    """请求停止当前批次，在两篇文章之间生效. 返回被停止的批次 ID."""
    if _current_batch_id is None:
        return None
    _stop_requests.add(_current_batch_id)
    return _current_batch_id


class FetchTaskRunner:
    """全文抓取任务执行器，按顺序逐篇抓取."""

    def __init__(
        self,
        session: AsyncSession,
        fetcher: ContentFetcher | None = None,
        policy: RetryPolicy | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.policy = policy or RetryPolicy.from_settings(self.settings)
        self.store = ArticleStore(session, policy=self.policy)
        self.fetcher = fetcher or ContentFetcher(
            timeout=self.settings.fetch_timeout_seconds,
            user_agent=self.settings.fetch_user_agent,
        )
        self.delay = self.settings.fetch_delay_seconds
        self._stop = False

    def default_options(self) -> FetchOptions:
        return FetchOptions(
            limit=self.settings.fetch_batch_size,
            prefer_extracted_title=self.settings.fetch_prefer_extracted_title,
            store_raw=self.settings.fetch_store_raw,
        )

    def request_stop(self) -> None:
        """请求在下一篇文章之前停止."""
        self._stop = True

    def _should_stop(self, batch_id: str) -> bool:
        return self._stop or batch_id in _stop_requests

    async def pending_count(self) -> int:
        """获取当前可抓取的文章数量."""
        return await self.store.count_fetch_candidates()

    async def run_batch(self, options: FetchOptions | None = None) -> FetchBatchStatus:
        """
        批量抓取可抓取的文章.

        抓取失败只记录到文章上，不中断批次；存储错误会直接抛出。

        Args:
            options: 抓取参数，默认取配置

        Returns:
            FetchBatchStatus: 抓取结果
        """
        global _current_batch_id, _latest_batch_id

        options = options or self.default_options()
        articles = await self.store.select_fetch_candidates(
            limit=options.limit,
            order=options.order,
            search=options.search,
        )

        if not articles:
            logger.info("没有待抓取的文章")
            return FetchBatchStatus(
                batch_id="empty",
                total=0,
                status="completed",
                completed_at=utcnow(),
            )

        # 创建批次状态
        batch_id = f"fetch_{utcnow():%Y%m%d%H%M%S}_{uuid4().hex[:6]}"
        status = FetchBatchStatus(batch_id=batch_id, total=len(articles))
        _fetch_status[batch_id] = status
        _current_batch_id = batch_id
        _latest_batch_id = batch_id

        logger.info(f"开始批量抓取，共 {len(articles)} 篇待处理")

        try:
            for index, article in enumerate(articles, 1):
                if self._should_stop(batch_id):
                    status.status = "cancelled"
                    logger.info(f"批量抓取已停止，剩余 {len(articles) - index + 1} 篇未处理")
                    break

                if index > 1 and self.delay > 0:
                    await asyncio.sleep(self.delay)

                outcome = await self._fetch_single(article, options, status, index)
                status.outcomes.append(outcome)
        except BaseException:
            status.status = "failed"
            raise
        finally:
            if status.status == "running":
                status.status = "completed"
            status.completed_at = utcnow()
            status.current_article = None
            _current_batch_id = None
            _stop_requests.discard(batch_id)

        logger.info(
            f"批量抓取结束({status.status}): 成功={status.completed}, 失败={status.failed}"
        )
        return status

    async def _fetch_single(
        self,
        article: Article,
        options: FetchOptions,
        status: FetchBatchStatus,
        index: int,
    ) -> ArticleOutcome:
        """抓取单篇文章并记录结果."""
        assert article.id is not None
        article_id = article.id
        prefix = f"[{index}/{status.total}]"
        status.current_article = f"{prefix} {article.title[:30] or article.url}"
        logger.info(f"{prefix} 抓取: {article.url}")

        try:
            content = await self.fetcher.fetch(article.url, store_raw=options.store_raw)
        except FetchFailure as e:
            return await self._record_failure(article_id, article, e, status, prefix)
        except Exception as e:
            # 意外错误同样记为失败，不中断批次
            logger.exception(f"{prefix} 抓取出现意外错误: {article.url}")
            failure = ExtractionFailure(0, f"{type(e).__name__}: {e}")
            return await self._record_failure(article_id, article, failure, status, prefix)

        title = content.title if options.prefer_extracted_title and content.title else None
        await self.store.record_fetch_success(
            article_id,
            content=content.markdown,
            final_url=content.final_url,
            status_code=content.status_code,
            title=title,
            raw_html=content.raw_html if options.store_raw else None,
            status_text=content.status_text,
        )
        status.completed += 1
        logger.info(f"{prefix} 抓取成功: {title or article.title} ({len(content.markdown)} 字)")

        return ArticleOutcome(
            article_id=article_id,
            url=article.url,
            title=title or article.title,
            success=True,
            status_code=content.status_code,
            reason=content.status_text,
        )

    async def _record_failure(
        self,
        article_id: int,
        article: Article,
        failure: FetchFailure,
        status: FetchBatchStatus,
        prefix: str,
    ) -> ArticleOutcome:
        failed_count = await self.store.record_fetch_failure(
            article_id, failure.status_code, failure.reason
        )
        status.failed += 1
        logger.warning(
            f"{prefix} 抓取失败: {article.url} - {failure.reason} (第 {failed_count} 次)"
        )
        return ArticleOutcome(
            article_id=article_id,
            url=article.url,
            title=article.title,
            success=False,
            status_code=failure.status_code,
            reason=failure.reason,
            failed_count=failed_count,
        )
