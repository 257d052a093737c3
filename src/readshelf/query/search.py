"""文章搜索."""

import logging
from dataclasses import dataclass
from dataclasses import field as dc_field
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_
from sqlmodel import col, select

from readshelf.core import gate
from readshelf.core.store import ArticleStore
from readshelf.models.article import Article, ArticleTag, Folder, Tag
from readshelf.models.records import ArticleSummary
from readshelf.utils.dates import date_range

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("url", "title", "content", "tags", "folder")
TAG_MODES = ("all", "any")


@dataclass
class SearchOptions:
    """搜索参数."""

    query: str = ""
    field: str | None = None
    use_fts: bool = False
    limit: int = 50
    since: str | None = None
    until: str | None = None
    folders: list[str] = dc_field(default_factory=list)
    tags: list[str] = dc_field(default_factory=list)
    tag_mode: str = "all"  # all | any

    @property
    def has_filters(self) -> bool:
        return bool(self.since or self.until or self.folders or self.tags)


def _tagged(title_clause: Any) -> Any:
    """带有满足条件的标签的文章."""
    return col(Article.id).in_(
        select(ArticleTag.article_id)
        .join(Tag, col(Tag.id) == col(ArticleTag.tag_id))
        .where(title_clause)
    )


def _in_folder(folder_clause: Any) -> Any:
    return col(Article.folder_id).in_(select(Folder.id).where(folder_clause))


def _keyword_clause(query: str, search_field: str | None) -> Any:
    pattern = f"%{query}%"
    clauses = {
        "url": col(Article.url).ilike(pattern),
        "title": col(Article.title).ilike(pattern),
        "content": col(Article.content_md).ilike(pattern),
        "tags": _tagged(col(Tag.title).ilike(pattern)),
        "folder": _in_folder(
            or_(col(Folder.path_cache).ilike(pattern), col(Folder.title).ilike(pattern))
        ),
    }
    if search_field:
        return clauses[search_field]
    return or_(*clauses.values())


class SearchService:
    """关键词/全文搜索与过滤."""

    def __init__(self, store: ArticleStore) -> None:
        self.store = store
        self.session = store.session

    def _filters(self, options: SearchOptions, now: datetime | None) -> list[Any]:
        conditions: list[Any] = [gate.active()]

        since_at, until_at = date_range(options.since, options.until, now)
        if since_at is not None:
            conditions.append(col(Article.saved_at) >= since_at)
        if until_at is not None:
            conditions.append(col(Article.saved_at) <= until_at)

        folders = [f.strip().lower() for f in options.folders if f.strip()]
        if folders:
            conditions.append(
                _in_folder(
                    or_(
                        func.lower(Folder.path_cache).in_(folders),
                        func.lower(Folder.title).in_(folders),
                    )
                )
            )

        tags = [t.strip().lower() for t in options.tags if t.strip()]
        if tags:
            if options.tag_mode == "any":
                conditions.append(_tagged(func.lower(Tag.title).in_(tags)))
            else:
                conditions.extend(_tagged(func.lower(Tag.title) == tag) for tag in tags)

        return conditions

    async def find(
        self, options: SearchOptions, now: datetime | None = None
    ) -> list[Article]:
        """
        按条件查找文章.

        关键词模式按收藏时间倒序，全文模式按相关度排序。

        Raises:
            ValueError: 没有关键词也没有过滤条件，或参数不合法
        """
        query = options.query.strip()
        if not query and not options.has_filters:
            msg = "需要搜索关键词或过滤条件"
            raise ValueError(msg)
        if options.field and options.field not in SEARCH_FIELDS:
            msg = f"不支持的搜索字段: {options.field}"
            raise ValueError(msg)
        if options.tag_mode not in TAG_MODES:
            msg = f"不支持的标签匹配方式: {options.tag_mode}"
            raise ValueError(msg)

        stmt = select(Article).where(*self._filters(options, now))

        if options.use_fts and query:
            ranked = await self.store.index.match_ids(query, options.field)
            if not ranked:
                return []
            result = await self.session.execute(
                stmt.where(col(Article.id).in_(ranked))
            )
            by_id = {a.id: a for a in result.scalars().all()}
            articles = [by_id[i] for i in ranked if i in by_id]
            return articles[: options.limit] if options.limit > 0 else articles

        if query:
            stmt = stmt.where(_keyword_clause(query, options.field))

        stmt = stmt.order_by(col(Article.saved_at).desc(), col(Article.id).desc())
        if options.limit > 0:
            stmt = stmt.limit(options.limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def search(
        self, options: SearchOptions, now: datetime | None = None
    ) -> list[ArticleSummary]:
        """搜索并返回列表记录."""
        articles = await self.find(options, now)
        logger.debug(f"搜索 {options.query!r} 命中 {len(articles)} 篇")
        return await self.store.to_summaries(articles)

    async def latest(
        self,
        limit: int = 20,
        since: str | None = None,
        until: str | None = None,
        now: datetime | None = None,
    ) -> list[ArticleSummary]:
        """最近收藏的文章，新的在前."""
        options = SearchOptions(limit=limit, since=since, until=until)
        stmt = (
            select(Article)
            .where(*self._filters(options, now))
            .order_by(col(Article.saved_at).desc(), col(Article.id).desc())
        )
        if limit > 0:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return await self.store.to_summaries(list(result.scalars().all()))
