"""数据模型."""

from readshelf.models.article import Article, ArticleTag, Folder, Tag
from readshelf.models.database import get_session, init_db
from readshelf.models.feed import Feed, FeedTag

__all__ = [
    "Article",
    "ArticleTag",
    "Feed",
    "FeedTag",
    "Folder",
    "Tag",
    "get_session",
    "init_db",
]
