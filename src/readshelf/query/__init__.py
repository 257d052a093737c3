"""文章查询."""

from readshelf.query.search import SearchOptions, SearchService

__all__ = [
    "SearchOptions",
    "SearchService",
]
