"""Markdown 导出."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import yaml

from readshelf.core.store import ArticleStore
from readshelf.models.records import ArticleDetail
from readshelf.query.search import SearchOptions, SearchService
from readshelf.utils.dates import to_rfc3339, utcnow
from readshelf.utils.text import safe_filename

logger = logging.getLogger(__name__)

SOURCE_TAG = "readshelf"
MAX_FILENAME_LENGTH = 120
MAX_COLLISION_SUFFIX = 100


@dataclass
class ExportReport:
    """批量导出结果."""

    matched: int = 0
    exported: int = 0
    skipped: int = 0
    files: list[Path] = field(default_factory=list)


@dataclass
class ExportFilter:
    """批量导出的筛选条件."""

    only_synced: bool = False
    include_unsynced: bool = False
    folder: str | None = None
    tag: str | None = None
    since: str | None = None
    until: str | None = None
    search: str | None = None
    search_field: str | None = None
    search_fts: bool = False
    search_limit: int = 0


def _folder_dir(base: Path, folder_path: str | None) -> Path:
    """文件夹路径对应的子目录，忽略空段和 ``.``/``..``."""
    if not folder_path:
        return base
    parts = [p.strip() for p in folder_path.split("/")]
    parts = [p for p in parts if p and p not in (".", "..")]
    return base.joinpath(*parts) if parts else base


def resolve_collision(path: Path) -> Path:
    """文件已存在时依次尝试 ``-2``、``-3`` 等后缀."""
    if not path.exists():
        return path

    for counter in range(2, MAX_COLLISION_SUFFIX + 1):
        candidate = path.with_name(f"{path.stem}-{counter}{path.suffix}")
        if not candidate.exists():
            return candidate

    msg = f"文件名冲突过多: {path}"
    raise FileExistsError(msg)


class MarkdownExporter:
    """把文章导出为带 YAML front matter 的 Markdown 文件，只读."""

    def __init__(self, store: ArticleStore) -> None:
        self.store = store
        self.search = SearchService(store)

    def render(self, article: ArticleDetail, exported_at: datetime | None = None) -> str:
        front_matter = {
            "title": article.title,
            "saved_at": to_rfc3339(article.saved_at),
            "exported_at": to_rfc3339(exported_at or utcnow()),
            "source": article.url,
            "tags": [SOURCE_TAG, *article.tags],
        }
        header = yaml.safe_dump(front_matter, sort_keys=False, allow_unicode=True)

        if article.content_md:
            body = article.content_md
        else:
            body = f"*Article content not yet fetched. Source: {article.url}*\n"

        return f"---\n{header}---\n\n{body}"

    async def export_article(self, article_id: int, out_path: str | Path | None = None) -> str:
        """
        导出单篇文章.

        给出 ``out_path`` 时写入文件，否则只返回文本。
        """
        article = await self.store.get_article(article_id)
        content = self.render(article)
        if out_path is not None:
            Path(out_path).write_text(content, encoding="utf-8")
            logger.info(f"已导出文章 {article_id} 到 {out_path}")
        return content

    async def _select(self, criteria: ExportFilter) -> list[ArticleDetail]:
        if criteria.search:
            options = SearchOptions(
                query=criteria.search,
                field=criteria.search_field,
                use_fts=criteria.search_fts,
                limit=criteria.search_limit,
            )
        else:
            options = SearchOptions(limit=0)

        options.since = criteria.since
        options.until = criteria.until
        if criteria.folder:
            options.folders = [criteria.folder]
        if criteria.tag:
            options.tags = [criteria.tag]

        if not criteria.search and not options.has_filters:
            articles = await self.search.latest(limit=0)
            ids = [a.id for a in articles]
        else:
            ids = [a.id for a in await self.search.find(options) if a.id is not None]

        details = [await self.store.get_article(i) for i in ids]
        if criteria.only_synced:
            details = [d for d in details if d.content_md is not None]
        return details

    async def export_all(
        self, directory: str | Path, criteria: ExportFilter | None = None
    ) -> ExportReport:
        """批量导出到目录，按文件夹路径分子目录."""
        criteria = criteria or ExportFilter()
        base = Path(directory)
        base.mkdir(parents=True, exist_ok=True)

        articles = await self._select(criteria)
        report = ExportReport(matched=len(articles))
        exported_at = utcnow()

        for article in articles:
            if not article.content_md and not criteria.include_unsynced:
                report.skipped += 1
                continue

            target_dir = _folder_dir(base, article.folder_path)
            target_dir.mkdir(parents=True, exist_ok=True)
            filename = safe_filename(article.title, article.id, MAX_FILENAME_LENGTH)
            path = resolve_collision(target_dir / f"{filename}.md")
            path.write_text(self.render(article, exported_at), encoding="utf-8")

            report.exported += 1
            report.files.append(path)

        logger.info(f"导出完成: {report.exported} 篇, 跳过 {report.skipped} 篇未抓取文章")
        return report
