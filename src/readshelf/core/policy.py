"""全文抓取的重试与退避策略.

每次选取候选时都根据已持久化的字段计算是否可抓取，不保存下次重试时间，
也没有后台定时器。
"""

from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from sqlalchemy import or_
from sqlmodel import col

from readshelf.core import gate
from readshelf.models.article import Article

MAX_FAILURES = 5
COOLDOWN = timedelta(hours=1)


class ArticleState(StrEnum):
    """文章生命周期状态."""

    NEVER_SYNCED = "never_synced"
    SYNCED = "synced"
    FAILED_RETRY_PENDING = "failed_retry_pending"
    FAILED_EXHAUSTED = "failed_exhausted"
    OBSOLETE = "obsolete"


class RetryPolicy:
    """判断文章当前是否可以抓取."""

    def __init__(
        self,
        max_failures: int = MAX_FAILURES,
        cooldown: timedelta = COOLDOWN,
    ) -> None:
        self.max_failures = max_failures
        self.cooldown = cooldown

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_failures=settings.max_failures,
            cooldown=timedelta(minutes=settings.cooldown_minutes),
        )

    def is_eligible(self, article: Article, now: datetime) -> bool:
        """``now`` 时刻可抓取时返回 True."""
        if article.obsolete:
            return False
        if article.synced_at is not None:
            return False
        if article.failed_count >= self.max_failures:
            return False
        if article.sync_failed_at is None:
            return True
        return now - article.sync_failed_at >= self.cooldown

    def conditions(self, now: datetime) -> list[Any]:
        """与 :meth:`is_eligible` 等价的 SQL 条件."""
        return [
            gate.active(),
            col(Article.synced_at).is_(None),
            col(Article.failed_count) < self.max_failures,
            or_(
                col(Article.sync_failed_at).is_(None),
                col(Article.sync_failed_at) <= now - self.cooldown,
            ),
        ]

    def state(self, article: Article) -> ArticleState:
        """根据持久化字段推导生命周期状态."""
        if article.obsolete:
            return ArticleState.OBSOLETE
        if article.sync_failed_at is not None and article.failed_count > 0:
            if article.failed_count >= self.max_failures:
                return ArticleState.FAILED_EXHAUSTED
            return ArticleState.FAILED_RETRY_PENDING
        if article.synced_at is not None:
            return ArticleState.SYNCED
        return ArticleState.NEVER_SYNCED
