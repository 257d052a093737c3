"""全文索引同步.

``articles_fts`` 中每篇未废弃文章一行（``rowid`` 即文章 id），保存 url、标题、
正文、文件夹路径和标签的冗余文本，可随时由关系表重建。所有方法都在调用方的
会话内执行且不提交，索引与触发它的修改同属一个事务。
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

FTS_TABLE_DDL = (
    "CREATE VIRTUAL TABLE IF NOT EXISTS articles_fts "
    "USING fts5(url, title, content, folder, tags)"
)

FTS_FIELDS = ("url", "title", "content", "folder", "tags")

_ARTICLE_SQL = text(
    """
    SELECT a.id, a.url, a.title, a.content_md, a.obsolete,
           COALESCE(f.path_cache, f.title) AS folder_path
    FROM articles a
    LEFT JOIN folders f ON a.folder_id = f.id
    WHERE a.id = :id
    """
)

_TAGS_SQL = text(
    """
    SELECT t.title
    FROM tags t
    JOIN article_tags at ON at.tag_id = t.id
    WHERE at.article_id = :id
    ORDER BY t.title
    """
)

_INSERT_SQL = text(
    """
    INSERT INTO articles_fts (rowid, url, title, content, folder, tags)
    VALUES (:id, :url, :title, :content, :folder, :tags)
    """
)

_DELETE_SQL = text("DELETE FROM articles_fts WHERE rowid = :id")


@dataclass
class ProjectionRow:
    """索引中的一行."""

    article_id: int
    url: str
    title: str
    content: str
    folder: str
    tags: str


def join_tags(tags: Iterable[str]) -> str:
    """索引中的标签文本."""
    return ", ".join(sorted(tags))


class IndexSynchronizer:
    """保持 ``articles_fts`` 与文章表一致."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def refresh(self, article_id: int) -> bool:
        """
        重建单篇文章的索引.

        Returns:
            索引行存在时返回 True，文章不存在或已废弃时不写入
        """
        await self.session.execute(_DELETE_SQL, {"id": article_id})

        result = await self.session.execute(_ARTICLE_SQL, {"id": article_id})
        row = result.mappings().first()
        if row is None or row["obsolete"]:
            return False

        tag_result = await self.session.execute(_TAGS_SQL, {"id": article_id})
        tags = [r[0] for r in tag_result.fetchall()]

        await self.session.execute(
            _INSERT_SQL,
            {
                "id": article_id,
                "url": row["url"],
                "title": row["title"] or "",
                "content": row["content_md"] or "",
                "folder": row["folder_path"] or "",
                "tags": join_tags(tags),
            },
        )
        return True

    async def refresh_many(self, article_ids: Iterable[int]) -> None:
        for article_id in article_ids:
            await self.refresh(article_id)

    async def delete(self, article_id: int) -> None:
        await self.session.execute(_DELETE_SQL, {"id": article_id})

    async def rebuild(self) -> int:
        """删除并由文章表重建全文索引."""
        await self.session.execute(text("DROP TABLE IF EXISTS articles_fts"))
        await self.session.execute(text(FTS_TABLE_DDL))

        tag_rows = await self.session.execute(
            text(
                """
                SELECT at.article_id, t.title
                FROM article_tags at
                JOIN tags t ON at.tag_id = t.id
                """
            )
        )
        tags_by_article: dict[int, list[str]] = defaultdict(list)
        for article_id, title in tag_rows.fetchall():
            tags_by_article[article_id].append(title)

        result = await self.session.execute(
            text(
                """
                SELECT a.id, a.url, a.title, a.content_md,
                       COALESCE(f.path_cache, f.title) AS folder_path
                FROM articles a
                LEFT JOIN folders f ON a.folder_id = f.id
                WHERE a.obsolete = 0
                ORDER BY a.id
                """
            )
        )
        params: list[dict[str, Any]] = [
            {
                "id": row["id"],
                "url": row["url"],
                "title": row["title"] or "",
                "content": row["content_md"] or "",
                "folder": row["folder_path"] or "",
                "tags": join_tags(tags_by_article.get(row["id"], [])),
            }
            for row in result.mappings().all()
        ]
        if params:
            await self.session.execute(_INSERT_SQL, params)

        logger.info(f"全文索引已重建，共 {len(params)} 篇")
        return len(params)

    async def projection(self, article_id: int) -> ProjectionRow | None:
        """读取单篇文章的索引行."""
        result = await self.session.execute(
            text(
                "SELECT rowid, url, title, content, folder, tags "
                "FROM articles_fts WHERE rowid = :id"
            ),
            {"id": article_id},
        )
        row = result.first()
        if row is None:
            return None
        return ProjectionRow(*row)

    async def count(self) -> int:
        result = await self.session.execute(text("SELECT COUNT(*) FROM articles_fts"))
        return int(result.scalar() or 0)

    async def match_ids(
        self, query: str, field: str | None = None, limit: int | None = None
    ) -> list[int]:
        """
        按 FTS5 相关度返回匹配的文章 id.

        Raises:
            ValueError: 字段不支持或查询语法错误
        """
        if not query.strip():
            msg = "全文搜索需要关键词"
            raise ValueError(msg)
        if field is not None and field not in FTS_FIELDS:
            msg = f"不支持的全文搜索字段: {field}"
            raise ValueError(msg)

        expression = f"{field}: {query}" if field else query
        sql = "SELECT rowid FROM articles_fts WHERE articles_fts MATCH :q ORDER BY rank"
        params: dict[str, Any] = {"q": expression}
        if limit:
            sql += " LIMIT :limit"
            params["limit"] = limit

        try:
            result = await self.session.execute(text(sql), params)
        except OperationalError as e:
            msg = f"全文查询语法错误 {query!r}: {e.orig}"
            raise ValueError(msg) from e
        return [row[0] for row in result.fetchall()]
