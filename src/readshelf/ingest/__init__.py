"""文章导入."""

from readshelf.ingest.feeds import FeedIngestor
from readshelf.ingest.importer import CsvImporter, ImportReport

__all__ = [
    "CsvImporter",
    "FeedIngestor",
    "ImportReport",
]
