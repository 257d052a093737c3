"""CSV 导入."""

import csv
import logging
from collections.abc import Iterable, Iterator
from datetime import datetime
from pathlib import Path
from typing import Any, TextIO

from pydantic import BaseModel

from readshelf.core.errors import InvalidURL
from readshelf.core.identity import canonicalize_url
from readshelf.core.store import ArticleStore
from readshelf.utils.dates import from_unix
from readshelf.utils.text import dedupe_strings, parse_tags

logger = logging.getLogger(__name__)

EXPECTED_HEADERS = ["URL", "Title", "Selection", "Folder", "Timestamp", "Tags"]

# 摘录可能很长，csv 默认单字段上限为 128 KiB
MAX_FIELD_SIZE = 16 * 1024 * 1024


class ImportReport(BaseModel):
    """导入统计."""

    total: int = 0
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0


class CsvImporter:
    """导入 ``URL,Title,Selection,Folder,Timestamp,Tags`` 格式的 CSV 导出文件."""

    def __init__(self, store: ArticleStore) -> None:
        self.store = store

    async def import_file(self, path: str | Path) -> ImportReport:
        with open(path, newline="", encoding="utf-8-sig") as f:
            return await self.import_stream(f)

    async def import_stream(self, stream: TextIO) -> ImportReport:
        """
        逐行导入.

        无法解析、列数不对、时间戳不是整数或 URL 无效的行会被跳过；存储错误直接抛出。

        Raises:
            ValueError: 缺少表头或表头列数不对
        """
        csv.field_size_limit(MAX_FIELD_SIZE)
        reader = csv.reader(stream)
        headers = next(reader, None)
        if headers is None:
            msg = "CSV 文件为空"
            raise ValueError(msg)
        self._check_headers(headers)

        report = ImportReport()
        await self._import_rows(self._read_rows(reader, report), report)

        await self.store.refresh_folder_paths()

        logger.info(
            f"导入完成: 共 {report.total} 行, 处理 {report.processed} 行 "
            f"(新增 {report.created}, 更新 {report.updated}), 跳过 {report.skipped} 行"
        )
        return report

    @staticmethod
    def _check_headers(headers: list[str]) -> None:
        if len(headers) != len(EXPECTED_HEADERS):
            msg = f"CSV 列数不对: 实际 {len(headers)} 列，应为 {len(EXPECTED_HEADERS)} 列"
            raise ValueError(msg)
        for position, (actual, expected) in enumerate(zip(headers, EXPECTED_HEADERS)):
            if actual.strip() != expected:
                logger.warning(f"第 {position} 列表头为 {actual!r}，应为 {expected!r}")

    @staticmethod
    def _read_rows(reader: Any, report: ImportReport) -> Iterator[tuple[int, list[str]]]:
        """逐条读取记录，解析出错的记录计为跳过."""
        while True:
            try:
                row = next(reader)
            except StopIteration:
                return
            except csv.Error as e:
                report.total += 1
                report.skipped += 1
                logger.warning(f"跳过第 {reader.line_num} 行: CSV 解析失败 ({e})")
                continue
            yield reader.line_num, row

    async def _import_rows(
        self, rows: Iterable[tuple[int, list[str]]], report: ImportReport
    ) -> None:
        for line_no, row in rows:
            report.total += 1

            if len(row) != len(EXPECTED_HEADERS):
                logger.warning(f"跳过第 {line_no} 行: 应有 6 列，实际 {len(row)} 列")
                report.skipped += 1
                continue

            url, title, selection, folder, timestamp, tags = row
            try:
                saved_at = from_unix(int(timestamp.strip()))
            except (ValueError, OverflowError, OSError) as e:
                logger.warning(f"跳过第 {line_no} 行: 时间戳无效 {timestamp!r} ({e})")
                report.skipped += 1
                continue

            try:
                created = await self._import_row(url, title, selection, folder, saved_at, tags)
            except InvalidURL as e:
                logger.warning(f"跳过第 {line_no} 行: {e}")
                report.skipped += 1
                continue

            report.processed += 1
            if created:
                report.created += 1
            else:
                report.updated += 1

            if report.processed % 100 == 0:
                logger.info(f"已处理 {report.processed} 行...")

    async def _import_row(
        self,
        url: str,
        title: str,
        selection: str,
        folder: str,
        saved_at: datetime,
        tags: str,
    ) -> bool:
        canonical = canonicalize_url(url)

        folder_id = None
        if folder.strip():
            folder_id = await self.store.upsert_folder(folder)

        article_id, created = await self.store.upsert_article(
            canonical,
            title=title,
            selection=selection or None,
            folder_id=folder_id,
            saved_at=saved_at,
        )
        await self.store.replace_tags(article_id, dedupe_strings(parse_tags(tags)))
        return created
