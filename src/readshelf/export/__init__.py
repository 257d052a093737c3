"""文章导出."""

from readshelf.export.markdown import ExportFilter, ExportReport, MarkdownExporter

__all__ = [
    "ExportFilter",
    "ExportReport",
    "MarkdownExporter",
]
