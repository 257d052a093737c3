"""文章库存储.

所有写操作都是单独的事务: 先 flush，再在同一会话内刷新全文索引，最后提交一次。
数据库错误会回滚并以 :class:`StoreFailure` 抛出。
"""

import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, insert, or_, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from readshelf.core import gate
from readshelf.core.errors import (
    ArticleNotFound,
    FeedNotFound,
    FolderCycleError,
    FolderNotFound,
    StoreFailure,
    TagConflict,
    TagNotFound,
)
from readshelf.core.identity import canonicalize_url
from readshelf.core.index import IndexSynchronizer
from readshelf.core.policy import ArticleState, RetryPolicy
from readshelf.models.article import Article, ArticleTag, Folder, Tag
from readshelf.models.feed import Feed, FeedTag
from readshelf.models.records import (
    ArticleDetail,
    ArticleSummary,
    FeedInfo,
    FolderInfo,
    IntegrityReport,
    LibraryStats,
    ObsoleteCandidate,
    ObsoleteResult,
    RepairReport,
    TagInfo,
)
from readshelf.utils.dates import utcnow
from readshelf.utils.text import dedupe_strings

logger = logging.getLogger(__name__)

FOLDER_SEPARATOR = "/"


@dataclass
class ObsoleteSelector:
    """废弃条件，给出的条件之间为 AND 关系."""

    ids: list[int] = field(default_factory=list)
    status_codes: list[int] = field(default_factory=list)
    min_failures: int | None = None

    @property
    def is_empty(self) -> bool:
        return not self.ids and not self.status_codes and self.min_failures is None

    def conditions(self) -> list[Any]:
        clauses: list[Any] = [gate.active()]
        if self.ids:
            clauses.append(col(Article.id).in_(self.ids))
        if self.status_codes:
            clauses.append(col(Article.status_code).in_(self.status_codes))
        if self.min_failures is not None:
            clauses.append(col(Article.failed_count) >= self.min_failures)
        return clauses


def folder_paths(folders: Iterable[Folder]) -> dict[int, str]:
    """
    计算每个文件夹的完整路径.

    沿 parent_id 逐级向上，遇到环时停止，因此损坏的数据也能得到结果。
    """
    by_id = {f.id: f for f in folders if f.id is not None}
    paths: dict[int, str] = {}

    for folder_id, folder in by_id.items():
        parts: list[str] = []
        seen: set[int] = set()
        current: Folder | None = folder
        while current is not None and current.id not in seen:
            seen.add(current.id)  # type: ignore[arg-type]
            parts.append(current.title)
            current = by_id.get(current.parent_id) if current.parent_id else None
        paths[folder_id] = FOLDER_SEPARATOR.join(reversed(parts))

    return paths


class ArticleStore:
    """文章、文件夹、标签与订阅源的持久化操作."""

    def __init__(
        self,
        session: AsyncSession,
        index: IndexSynchronizer | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.session = session
        self.index = index or IndexSynchronizer(session)
        self.policy = policy or RetryPolicy()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """执行一个事务，成功时提交，失败时回滚."""
        try:
            yield
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"数据库操作失败，已回滚: {e}")
            raise StoreFailure(str(e)) from e
        except BaseException:
            await self.session.rollback()
            raise

    # ------------------------------------------------------------------
    # 文章
    # ------------------------------------------------------------------

    async def _find_by_url(self, canonical_url: str) -> Article | None:
        stmt = select(Article).where(Article.url == canonical_url)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def _require_article(self, article_id: int) -> Article:
        article = await self.session.get(Article, article_id)
        if article is None:
            raise ArticleNotFound(article_id)
        return article

    async def upsert_article(
        self,
        url: str,
        title: str,
        selection: str | None = None,
        folder_id: int | None = None,
        saved_at: datetime | None = None,
    ) -> tuple[int, bool]:
        """
        按规范化 URL 新增或更新文章.

        已存在时只更新标题、摘录、文件夹和收藏时间，抓取状态保持不变；
        已废弃的文章仍保持废弃。

        Returns:
            (文章 id, 是否新建)
        """
        canonical = canonicalize_url(url)

        async with self.transaction():
            article = await self._find_by_url(canonical)
            created = article is None

            if article is None:
                article = Article(
                    url=canonical,
                    title=title or "",
                    selection=selection or None,
                    folder_id=folder_id,
                    saved_at=saved_at or utcnow(),
                )
                self.session.add(article)
            else:
                article.title = title or ""
                article.selection = selection or None
                article.folder_id = folder_id
                if saved_at is not None:
                    article.saved_at = saved_at

            await self.session.flush()
            article_id = article.id
            assert article_id is not None
            await self.index.refresh(article_id)

        return article_id, created

    async def insert_if_absent(
        self,
        url: str,
        title: str,
        saved_at: datetime | None = None,
        selection: str | None = None,
        folder_id: int | None = None,
    ) -> int | None:
        """URL 不存在时新增文章，返回新 id；已存在时返回 None."""
        canonical = canonicalize_url(url)

        async with self.transaction():
            if await self._find_by_url(canonical) is not None:
                return None

            article = Article(
                url=canonical,
                title=title or "",
                selection=selection or None,
                folder_id=folder_id,
                saved_at=saved_at or utcnow(),
            )
            self.session.add(article)
            await self.session.flush()
            assert article.id is not None
            await self.index.refresh(article.id)

        return article.id

    async def _get_or_create_tag(self, title: str) -> int:
        result = await self.session.execute(select(Tag).where(Tag.title == title))
        tag = result.scalars().first()
        if tag is None:
            tag = Tag(title=title)
            self.session.add(tag)
            await self.session.flush()
        assert tag.id is not None
        return tag.id

    async def replace_tags(self, article_id: int, titles: Iterable[str]) -> list[str]:
        """用给定标签替换文章的全部标签，空列表表示清空."""
        names = dedupe_strings(list(titles))

        async with self.transaction():
            await self._require_article(article_id)
            await self.session.execute(
                delete(ArticleTag).where(col(ArticleTag.article_id) == article_id)
            )
            for name in names:
                tag_id = await self._get_or_create_tag(name)
                await self.session.execute(
                    insert(ArticleTag).values(article_id=article_id, tag_id=tag_id)
                )
            await self.index.refresh(article_id)

        return sorted(names)

    async def record_fetch_success(
        self,
        article_id: int,
        content: str,
        final_url: str | None,
        status_code: int = 200,
        title: str | None = None,
        raw_html: str | None = None,
        status_text: str = "OK",
        now: datetime | None = None,
    ) -> None:
        """记录抓取成功: 写入正文，清零失败计数."""
        async with self.transaction():
            article = await self._require_article(article_id)
            article.content_md = content
            article.final_url = final_url
            article.status_code = status_code
            article.status_text = status_text
            article.synced_at = now or utcnow()
            article.failed_count = 0
            article.sync_failed_at = None
            if title:
                article.title = title
            if raw_html is not None:
                article.raw_html = raw_html

            await self.session.flush()
            await self.index.refresh(article_id)

    async def record_fetch_failure(
        self,
        article_id: int,
        status_code: int,
        status_text: str,
        now: datetime | None = None,
    ) -> int:
        """记录抓取失败，不改动已有正文，返回新的失败次数."""
        async with self.transaction():
            article = await self._require_article(article_id)
            article.failed_count = (article.failed_count or 0) + 1
            article.sync_failed_at = now or utcnow()
            article.status_code = status_code
            article.status_text = status_text
            failed_count = article.failed_count

        return failed_count

    # ------------------------------------------------------------------
    # 废弃
    # ------------------------------------------------------------------

    async def mark_obsolete(
        self, selector: ObsoleteSelector, dry_run: bool = False
    ) -> ObsoleteResult:
        """
        将满足条件的文章标记为废弃.

        Raises:
            ValueError: 未提供任何条件
        """
        if selector.is_empty:
            msg = "至少需要一个条件: ids、status_codes 或 min_failures"
            raise ValueError(msg)

        async with self.transaction():
            stmt = (
                select(Article)
                .where(*selector.conditions())
                .order_by(col(Article.id))
            )
            result = await self.session.execute(stmt)
            articles = list(result.scalars().all())
            candidates = [self._obsolete_candidate(a) for a in articles]

            if dry_run:
                return ObsoleteResult(candidates=candidates, affected=0, dry_run=True)

            for article in articles:
                article.obsolete = True
                assert article.id is not None
                await self.index.delete(article.id)

        logger.info(f"已标记 {len(articles)} 篇文章为废弃")
        return ObsoleteResult(candidates=candidates, affected=len(articles))

    async def list_obsolete(self, limit: int | None = None) -> list[ObsoleteCandidate]:
        """列出已废弃的文章."""
        stmt = select(Article).where(gate.retired()).order_by(col(Article.id))
        if limit:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [self._obsolete_candidate(a) for a in result.scalars().all()]

    @staticmethod
    def _obsolete_candidate(article: Article) -> ObsoleteCandidate:
        assert article.id is not None
        return ObsoleteCandidate(
            id=article.id,
            url=article.url,
            title=article.title,
            saved_at=article.saved_at,
            folder_id=article.folder_id,
            status_code=article.status_code,
            failed_count=article.failed_count,
        )

    # ------------------------------------------------------------------
    # 文件夹
    # ------------------------------------------------------------------

    async def _all_folders(self) -> list[Folder]:
        result = await self.session.execute(select(Folder))
        return list(result.scalars().all())

    async def _require_folder(self, folder_id: int) -> Folder:
        folder = await self.session.get(Folder, folder_id)
        if folder is None:
            msg = f"文件夹不存在: {folder_id}"
            raise FolderNotFound(msg)
        return folder

    async def _folder_by_title(self, title: str) -> Folder | None:
        result = await self.session.execute(select(Folder).where(Folder.title == title))
        return result.scalars().first()

    async def find_folder(self, ref: str) -> Folder:
        """按 id、名称或完整路径查找文件夹."""
        ref = ref.strip()
        if ref.isdigit():
            return await self._require_folder(int(ref))

        folder = await self._folder_by_title(ref)
        if folder is None:
            result = await self.session.execute(
                select(Folder).where(Folder.path_cache == ref)
            )
            folder = result.scalars().first()
        if folder is None:
            msg = f"文件夹不存在: {ref}"
            raise FolderNotFound(msg)
        return folder

    async def _apply_folder_paths(self, subtree: set[int] | None = None) -> int:
        """重算路径缓存并刷新相关文章的索引，返回路径发生变化的文件夹数."""
        folders = await self._all_folders()
        paths = folder_paths(folders)

        changed: set[int] = set()
        for folder in folders:
            assert folder.id is not None
            path = paths[folder.id]
            if folder.path_cache != path:
                folder.path_cache = path
                changed.add(folder.id)
        await self.session.flush()

        affected = changed | (subtree or set())
        if affected:
            result = await self.session.execute(
                select(Article.id).where(
                    col(Article.folder_id).in_(affected), gate.active()
                )
            )
            await self.index.refresh_many(result.scalars().all())

        return len(changed)

    async def _subtree_ids(self, folder_id: int) -> set[int]:
        folders = await self._all_folders()
        children: dict[int, list[int]] = defaultdict(list)
        for folder in folders:
            if folder.parent_id is not None and folder.id is not None:
                children[folder.parent_id].append(folder.id)

        subtree: set[int] = set()
        queue = [folder_id]
        while queue:
            current = queue.pop()
            if current in subtree:
                continue
            subtree.add(current)
            queue.extend(children.get(current, []))
        return subtree

    async def upsert_folder(self, title: str, parent_id: int | None = None) -> int:
        """按名称查找或创建文件夹，已存在时原样返回."""
        name = title.strip()
        if not name:
            msg = "文件夹名称不能为空"
            raise ValueError(msg)

        async with self.transaction():
            folder = await self._folder_by_title(name)
            if folder is not None:
                assert folder.id is not None
                return folder.id

            parent_path = None
            if parent_id is not None:
                parent = await self._require_folder(parent_id)
                parent_path = parent.path_cache or parent.title

            folder = Folder(
                title=name,
                parent_id=parent_id,
                path_cache=f"{parent_path}{FOLDER_SEPARATOR}{name}" if parent_path else name,
            )
            self.session.add(folder)
            await self.session.flush()
            assert folder.id is not None
            folder_id = folder.id

        return folder_id

    async def move_folder(self, folder_id: int, parent_id: int | None) -> FolderInfo:
        """
        修改父文件夹.

        Raises:
            FolderCycleError: 新父文件夹是它自己或它的子孙
        """
        async with self.transaction():
            folder = await self._require_folder(folder_id)
            if parent_id is not None:
                await self._require_folder(parent_id)
                subtree = await self._subtree_ids(folder_id)
                if parent_id in subtree:
                    msg = f"不能把文件夹 {folder.title} 移到自身或其子文件夹下"
                    raise FolderCycleError(msg)
            else:
                subtree = await self._subtree_ids(folder_id)

            folder.parent_id = parent_id
            await self.session.flush()
            await self._apply_folder_paths(subtree)
            info = self._folder_info(folder)

        return info

    async def rename_folder(self, folder_id: int, title: str) -> FolderInfo:
        """重命名文件夹."""
        name = title.strip()
        if not name:
            msg = "文件夹名称不能为空"
            raise ValueError(msg)

        async with self.transaction():
            folder = await self._require_folder(folder_id)
            existing = await self._folder_by_title(name)
            if existing is not None and existing.id != folder_id:
                msg = f"文件夹已存在: {name}"
                raise ValueError(msg)

            subtree = await self._subtree_ids(folder_id)
            folder.title = name
            await self.session.flush()
            await self._apply_folder_paths(subtree)
            info = self._folder_info(folder)

        return info

    async def refresh_folder_paths(self) -> int:
        """重算所有文件夹的路径缓存."""
        async with self.transaction():
            changed = await self._apply_folder_paths()
        if changed:
            logger.info(f"更新了 {changed} 个文件夹路径")
        return changed

    async def list_folders(self) -> list[FolderInfo]:
        folders = await self._all_folders()
        infos = [self._folder_info(f) for f in folders]
        return sorted(infos, key=lambda f: f.path.lower())

    @staticmethod
    def _folder_info(folder: Folder) -> FolderInfo:
        assert folder.id is not None
        return FolderInfo(
            id=folder.id,
            title=folder.title,
            parent_id=folder.parent_id,
            path=folder.path_cache or folder.title,
        )

    # ------------------------------------------------------------------
    # 标签
    # ------------------------------------------------------------------

    async def list_tags(self) -> list[TagInfo]:
        """列出标签及其未废弃文章数."""
        stmt = (
            select(col(Tag.id), col(Tag.title), func.count(col(Article.id)))
            .select_from(Tag)
            .join(ArticleTag, col(ArticleTag.tag_id) == col(Tag.id), isouter=True)
            .join(
                Article,
                and_(col(Article.id) == col(ArticleTag.article_id), gate.active()),
                isouter=True,
            )
            .group_by(col(Tag.id), col(Tag.title))
            .order_by(col(Tag.title))
        )
        result = await self.session.execute(stmt)
        return [
            TagInfo(id=tag_id, title=title, article_count=count)
            for tag_id, title, count in result.all()
        ]

    async def rename_tag(self, old: str, new: str) -> TagInfo:
        """
        重命名标签.

        Raises:
            TagNotFound: 原标签不存在
            TagConflict: 新名称已被占用
        """
        old_name, new_name = old.strip(), new.strip()
        if not new_name:
            msg = "标签名不能为空"
            raise ValueError(msg)

        async with self.transaction():
            result = await self.session.execute(select(Tag).where(Tag.title == old_name))
            tag = result.scalars().first()
            if tag is None:
                msg = f"标签不存在: {old_name}"
                raise TagNotFound(msg)

            if new_name != old_name:
                result = await self.session.execute(
                    select(Tag).where(Tag.title == new_name)
                )
                if result.scalars().first() is not None:
                    msg = f"标签已存在: {new_name}"
                    raise TagConflict(msg)

            tag.title = new_name
            await self.session.flush()

            links = await self.session.execute(
                select(ArticleTag.article_id).where(ArticleTag.tag_id == tag.id)
            )
            article_ids = list(links.scalars().all())
            await self.index.refresh_many(article_ids)
            assert tag.id is not None
            info = TagInfo(id=tag.id, title=tag.title, article_count=len(article_ids))

        return info

    # ------------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------------

    async def tags_for(self, article_ids: Iterable[int]) -> dict[int, list[str]]:
        """批量读取文章标签（已排序）."""
        ids = list(article_ids)
        tags: dict[int, list[str]] = defaultdict(list)
        if not ids:
            return tags

        stmt = (
            select(ArticleTag.article_id, Tag.title)
            .join(Tag, col(Tag.id) == col(ArticleTag.tag_id))
            .where(col(ArticleTag.article_id).in_(ids))
            .order_by(col(Tag.title))
        )
        result = await self.session.execute(stmt)
        for article_id, title in result.all():
            tags[article_id].append(title)
        return tags

    async def _paths_for(self, folder_ids: Iterable[int | None]) -> dict[int, str]:
        ids = {i for i in folder_ids if i is not None}
        if not ids:
            return {}
        result = await self.session.execute(
            select(Folder).where(col(Folder.id).in_(ids))
        )
        return {
            f.id: f.path_cache or f.title
            for f in result.scalars().all()
            if f.id is not None
        }

    async def to_summaries(self, articles: list[Article]) -> list[ArticleSummary]:
        """转换为列表记录，保持输入顺序."""
        ids = [a.id for a in articles if a.id is not None]
        tags = await self.tags_for(ids)
        paths = await self._paths_for(a.folder_id for a in articles)
        return [
            ArticleSummary(
                id=a.id,
                url=a.url,
                title=a.title,
                folder_path=paths.get(a.folder_id) if a.folder_id else None,
                tags=tags.get(a.id, []),
                saved_at=a.saved_at,
                synced_at=a.synced_at,
                failed_count=a.failed_count,
                status_code=a.status_code,
            )
            for a in articles
            if a.id is not None
        ]

    async def to_detail(self, article: Article) -> ArticleDetail:
        assert article.id is not None
        tags = await self.tags_for([article.id])
        paths = await self._paths_for([article.folder_id])
        return ArticleDetail(
            id=article.id,
            url=article.url,
            title=article.title,
            folder_path=paths.get(article.folder_id) if article.folder_id else None,
            tags=tags.get(article.id, []),
            saved_at=article.saved_at,
            synced_at=article.synced_at,
            failed_count=article.failed_count,
            status_code=article.status_code,
            selection=article.selection,
            folder_id=article.folder_id,
            sync_failed_at=article.sync_failed_at,
            status_text=article.status_text,
            final_url=article.final_url,
            content_md=article.content_md,
            raw_html=article.raw_html,
            obsolete=article.obsolete,
        )

    async def get_article(
        self, article_id: int, include_obsolete: bool = False
    ) -> ArticleDetail:
        """
        读取单篇文章.

        Raises:
            ArticleNotFound: 不存在，或已废弃且未要求包含废弃文章
        """
        article = await self._require_article(article_id)
        if not include_obsolete and not gate.is_visible(article):
            raise ArticleNotFound(article_id)
        return await self.to_detail(article)

    async def article_tags(self, article_id: int) -> list[str]:
        tags = await self.tags_for([article_id])
        return tags.get(article_id, [])

    async def _count(self, *conditions: Any) -> int:
        stmt = select(func.count(col(Article.id))).where(*conditions)
        result = await self.session.execute(stmt)
        return int(result.scalar() or 0)

    async def stats(self) -> LibraryStats:
        """文章库统计，除 total/obsolete 外均只统计未废弃文章."""
        total = await self._count()
        obsolete = await self._count(gate.retired())
        fetched = await self._count(gate.active(), col(Article.synced_at).is_not(None))
        not_fetched = await self._count(gate.active(), col(Article.synced_at).is_(None))

        failures = await self.session.execute(
            select(col(Article.failed_count), func.count(col(Article.id)))
            .where(gate.active(), col(Article.failed_count) > 0)
            .group_by(col(Article.failed_count))
            .order_by(col(Article.failed_count))
        )
        codes = await self.session.execute(
            select(col(Article.status_code), func.count(col(Article.id)))
            .where(
                gate.active(),
                col(Article.status_code).is_not(None),
                col(Article.status_code).not_in([0, 200]),
            )
            .group_by(col(Article.status_code))
            .order_by(col(Article.status_code))
        )

        return LibraryStats(
            total=total,
            obsolete=obsolete,
            fetched=fetched,
            not_fetched=not_fetched,
            failures_by_count=dict(failures.all()),
            status_codes=dict(codes.all()),
        )

    # ------------------------------------------------------------------
    # 抓取候选
    # ------------------------------------------------------------------

    async def select_fetch_candidates(
        self,
        limit: int,
        order: str = "oldest",
        search: str | None = None,
        now: datetime | None = None,
    ) -> list[Article]:
        """按重试策略选取可抓取的文章."""
        now = now or utcnow()
        stmt = select(Article).where(*self.policy.conditions(now))

        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(col(Article.url).ilike(pattern), col(Article.title).ilike(pattern))
            )

        if order == "newest":
            stmt = stmt.order_by(col(Article.saved_at).desc(), col(Article.id).desc())
        else:
            stmt = stmt.order_by(col(Article.saved_at), col(Article.id))

        if limit > 0:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return [a for a in result.scalars().all() if self.policy.is_eligible(a, now)]

    async def count_fetch_candidates(self, now: datetime | None = None) -> int:
        """当前可抓取的文章数."""
        return await self._count(*self.policy.conditions(now or utcnow()))

    def article_state(self, article: Article) -> ArticleState:
        return self.policy.state(article)

    # ------------------------------------------------------------------
    # 检查与修复
    # ------------------------------------------------------------------

    async def integrity_report(self) -> IntegrityReport:
        """运行 SQLite 完整性检查并汇总计数."""
        try:
            result = await self.session.execute(text("PRAGMA integrity_check"))
            messages = [str(row[0]) for row in result.fetchall()]
            result = await self.session.execute(text("PRAGMA foreign_key_check"))
            fk_violations = len(result.fetchall())
        except SQLAlchemyError as e:
            raise StoreFailure(str(e)) from e

        folders = await self.session.execute(select(func.count(col(Folder.id))))
        tags = await self.session.execute(select(func.count(col(Tag.id))))
        duplicates = await self.session.execute(
            select(col(Article.url), func.count(col(Article.id)))
            .group_by(col(Article.url))
            .having(func.count(col(Article.id)) > 1)
        )

        return IntegrityReport(
            integrity_ok=messages == ["ok"],
            integrity_messages=messages,
            foreign_key_violations=fk_violations,
            articles=await self._count(),
            folders=int(folders.scalar() or 0),
            tags=int(tags.scalar() or 0),
            synced_articles=await self._count(col(Article.synced_at).is_not(None)),
            exhausted_articles=await self._count(
                gate.active(),
                col(Article.failed_count) >= self.policy.max_failures,
            ),
            duplicate_urls=dict(duplicates.all()),
        )

    async def repair(self) -> RepairReport:
        """重算文件夹路径并重建全文索引."""
        async with self.transaction():
            folders = await self._apply_folder_paths()
            indexed = await self.index.rebuild()
        return RepairReport(folders=folders, indexed=indexed)

    # ------------------------------------------------------------------
    # 订阅源
    # ------------------------------------------------------------------

    async def _require_feed(self, feed_id: int) -> Feed:
        feed = await self.session.get(Feed, feed_id)
        if feed is None:
            msg = f"订阅源不存在: {feed_id}"
            raise FeedNotFound(msg)
        return feed

    async def _feed_tags(self, feed_id: int) -> list[str]:
        result = await self.session.execute(
            select(Tag.title)
            .join(FeedTag, col(FeedTag.tag_id) == col(Tag.id))
            .where(FeedTag.feed_id == feed_id)
            .order_by(col(Tag.title))
        )
        return list(result.scalars().all())

    async def _set_feed_tags(self, feed_id: int, titles: Iterable[str]) -> None:
        await self.session.execute(
            delete(FeedTag).where(col(FeedTag.feed_id) == feed_id)
        )
        for name in dedupe_strings(list(titles)):
            tag_id = await self._get_or_create_tag(name)
            await self.session.execute(
                insert(FeedTag).values(feed_id=feed_id, tag_id=tag_id)
            )

    async def feed_info(self, feed: Feed) -> FeedInfo:
        assert feed.id is not None
        return FeedInfo(
            id=feed.id,
            url=feed.url,
            name=feed.name,
            created_at=feed.created_at,
            last_synced_at=feed.last_synced_at,
            active=feed.active,
            tags=await self._feed_tags(feed.id),
        )

    async def add_feed(
        self, url: str, name: str | None = None, tags: Iterable[str] = ()
    ) -> FeedInfo:
        """添加订阅源."""
        feed_url = url.strip()
        canonicalize_url(feed_url)

        async with self.transaction():
            result = await self.session.execute(select(Feed).where(Feed.url == feed_url))
            if result.scalars().first() is not None:
                msg = f"订阅源已存在: {feed_url}"
                raise ValueError(msg)

            feed = Feed(url=feed_url, name=(name or "").strip() or feed_url)
            self.session.add(feed)
            await self.session.flush()
            assert feed.id is not None
            await self._set_feed_tags(feed.id, tags)

        logger.info(f"已添加订阅源: {feed.name}")
        return await self.feed_info(feed)

    async def get_feed(self, feed_id: int) -> Feed:
        return await self._require_feed(feed_id)

    async def list_feeds(self, active_only: bool = False) -> list[FeedInfo]:
        feeds = await self.active_feeds() if active_only else await self._all_feeds()
        return [await self.feed_info(f) for f in feeds]

    async def _all_feeds(self) -> list[Feed]:
        result = await self.session.execute(select(Feed).order_by(col(Feed.id)))
        return list(result.scalars().all())

    async def active_feeds(self) -> list[Feed]:
        result = await self.session.execute(
            select(Feed).where(col(Feed.active).is_(True)).order_by(col(Feed.id))
        )
        return list(result.scalars().all())

    async def feed_tag_titles(self, feed_id: int) -> list[str]:
        return await self._feed_tags(feed_id)

    async def update_feed(
        self,
        feed_id: int,
        name: str | None = None,
        tags: Iterable[str] | None = None,
        active: bool | None = None,
    ) -> FeedInfo:
        """更新订阅源名称、标签或启用状态."""
        async with self.transaction():
            feed = await self._require_feed(feed_id)
            if name is not None and name.strip():
                feed.name = name.strip()
            if active is not None:
                feed.active = active
            if tags is not None:
                await self._set_feed_tags(feed_id, tags)
            await self.session.flush()

        return await self.feed_info(feed)

    async def remove_feed(self, feed_id: int) -> None:
        """删除订阅源，已导入的文章保留."""
        async with self.transaction():
            feed = await self._require_feed(feed_id)
            await self.session.delete(feed)

    async def mark_feed_synced(self, feed_id: int, now: datetime | None = None) -> None:
        async with self.transaction():
            feed = await self._require_feed(feed_id)
            feed.last_synced_at = now or utcnow()
