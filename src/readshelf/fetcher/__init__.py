"""全文抓取模块."""

from readshelf.fetcher.extractor import (
    ContentFetcher,
    FetchedContent,
    prettify_markdown,
)

__all__ = [
    "ContentFetcher",
    "FetchedContent",
    "prettify_markdown",
]
