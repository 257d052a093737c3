"""废弃过滤: 所有读取与候选查询都要经过的条件."""

from typing import Any

from sqlmodel import col

from readshelf.models.article import Article


def active() -> Any:
    """未废弃文章的 SQL 条件."""
    return col(Article.obsolete).is_(False)


def retired() -> Any:
    """已废弃文章的 SQL 条件（仅管理列表使用）."""
    return col(Article.obsolete).is_(True)


def is_visible(article: Article) -> bool:
    """内存版 :func:`active`."""
    return not article.obsolete
