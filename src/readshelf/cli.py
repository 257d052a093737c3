"""命令行入口."""

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
from pydantic import BaseModel
from rich.console import Console
from rich.table import Table

from readshelf import __version__
from readshelf.config import get_settings, sqlite_url
from readshelf.core.errors import ReadshelfError
from readshelf.core.fetch_runner import FetchOptions, FetchTaskRunner
from readshelf.core.policy import RetryPolicy
from readshelf.core.store import ArticleStore, ObsoleteSelector
from readshelf.export.markdown import ExportFilter, MarkdownExporter
from readshelf.ingest.feeds import FeedIngestor
from readshelf.ingest.importer import CsvImporter
from readshelf.logging_utils import configure_logging
from readshelf.models.database import async_session_maker, close_db, init_db
from readshelf.models.records import ArticleSummary, ObsoleteCandidate
from readshelf.query.search import SEARCH_FIELDS, SearchOptions, SearchService
from readshelf.utils.dates import to_rfc3339

T = TypeVar("T")

console = Console()

app = typer.Typer(
    name="readshelf",
    help="个人文章库: 导入、全文抓取、搜索与导出",
    no_args_is_help=True,
)
folders_app = typer.Typer(help="管理文件夹", no_args_is_help=True)
tags_app = typer.Typer(help="管理标签", no_args_is_help=True)
feeds_app = typer.Typer(help="管理订阅源", no_args_is_help=True)
app.add_typer(folders_app, name="folders")
app.add_typer(tags_app, name="tags")
app.add_typer(feeds_app, name="feeds")


@app.callback()
def main(
    db: str | None = typer.Option(None, "--db", help="数据库文件路径或 URL"),
    log_file: Path | None = typer.Option(None, "--log-file", help="日志文件"),
    log_level: str | None = typer.Option(None, "--log-level", help="日志级别"),
) -> None:
    """readshelf 命令行."""
    settings = get_settings()
    if db:
        settings.database_url = sqlite_url(db)
    if log_file:
        settings.log_file = str(log_file)
    if log_level:
        settings.log_level = log_level.upper()  # type: ignore[assignment]
    configure_logging(settings.log_level, settings.log_file)


def _run(action: Callable[[ArticleStore], Awaitable[T]]) -> T:
    """打开数据库，执行操作后关闭. 已知错误以退出码 1 结束."""
    settings = get_settings()

    async def runner() -> T:
        await init_db(settings.database_url)
        try:
            async with async_session_maker()() as session:
                store = ArticleStore(session, policy=RetryPolicy.from_settings(settings))
                return await action(store)
        finally:
            await close_db()

    try:
        return asyncio.run(runner())
    except (ReadshelfError, ValueError, FileNotFoundError) as e:
        console.print(f"[red]错误: {e}[/red]")
        raise typer.Exit(1) from e


def _print_json(data: Any) -> None:
    if isinstance(data, BaseModel):
        payload = data.model_dump(mode="json")
    elif isinstance(data, list):
        payload = [
            item.model_dump(mode="json") if isinstance(item, BaseModel) else item
            for item in data
        ]
    else:
        payload = data
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))


def _parse_ints(value: str | None, option: str) -> list[int]:
    if not value:
        return []
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError as e:
        msg = f"{option} 需要逗号分隔的整数"
        raise typer.BadParameter(msg) from e


def _article_table(articles: list[ArticleSummary], title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("标题", style="bold")
    table.add_column("文件夹", style="magenta")
    table.add_column("标签", style="green")
    table.add_column("收藏时间")
    table.add_column("状态", style="yellow")

    for article in articles:
        if article.synced_at:
            state = "已抓取"
        elif article.failed_count:
            state = f"失败 {article.failed_count} 次 ({article.status_code})"
        else:
            state = "未抓取"
        table.add_row(
            str(article.id),
            article.title or article.url,
            article.folder_path or "",
            ", ".join(article.tags),
            to_rfc3339(article.saved_at) or "",
            state,
        )
    return table


def _obsolete_table(items: list[ObsoleteCandidate], title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("标题")
    table.add_column("URL", style="blue")
    table.add_column("状态码", justify="right")
    table.add_column("失败次数", justify="right")
    for item in items:
        table.add_row(
            str(item.id),
            item.title,
            item.url,
            str(item.status_code or ""),
            str(item.failed_count),
        )
    return table


# ----------------------------------------------------------------------
# 导入与抓取
# ----------------------------------------------------------------------


@app.command("import")
def import_command(
    csv_path: Path = typer.Option(..., "--csv", help="CSV 导出文件", exists=True),
) -> None:
    """导入 CSV 导出文件."""
    report = _run(lambda store: CsvImporter(store).import_file(csv_path))
    console.print(
        f"[green]导入完成[/green]: 共 {report.total} 行, 处理 {report.processed} 行 "
        f"(新增 {report.created}, 更新 {report.updated}), 跳过 {report.skipped} 行"
    )


@app.command("fetch")
def fetch_command(
    limit: int | None = typer.Option(None, "--limit", "-n", help="本次最多抓取篇数"),
    order: str = typer.Option("oldest", "--order", help="oldest 或 newest"),
    search: str | None = typer.Option(None, "--search", help="只抓取 URL/标题包含该词的文章"),
    prefer_extracted_title: bool = typer.Option(
        False, "--prefer-extracted-title", help="用页面提取到的标题替换原标题"
    ),
    store_raw: bool = typer.Option(False, "--store-raw", help="保存正文 HTML"),
) -> None:
    """抓取未同步文章的全文."""
    if order not in ("oldest", "newest"):
        raise typer.BadParameter("--order 只能是 oldest 或 newest")

    settings = get_settings()
    options = FetchOptions(
        limit=limit or settings.fetch_batch_size,
        order=order,
        search=search,
        prefer_extracted_title=prefer_extracted_title or settings.fetch_prefer_extracted_title,
        store_raw=store_raw or settings.fetch_store_raw,
    )

    async def action(store: ArticleStore):
        runner = FetchTaskRunner(store.session, policy=store.policy, settings=settings)
        try:
            return await runner.run_batch(options)
        finally:
            runner.fetcher.close()

    status = _run(action)
    console.print(
        f"抓取结束 ({status.status}): [green]成功 {status.completed}[/green], "
        f"[red]失败 {status.failed}[/red], 共 {status.total}"
    )


# ----------------------------------------------------------------------
# 查询与导出
# ----------------------------------------------------------------------


@app.command("search")
def search_command(
    query: str = typer.Argument("", help="搜索关键词"),
    field: str | None = typer.Option(None, "--field", help=f"限定字段: {', '.join(SEARCH_FIELDS)}"),
    fts: bool = typer.Option(False, "--fts", help="使用全文索引（支持 FTS5 语法）"),
    limit: int = typer.Option(50, "--limit", "-n", help="返回数量"),
    as_json: bool = typer.Option(False, "--json", help="输出 JSON"),
    since: str | None = typer.Option(None, "--since", help="起始时间: today、7d、2024-01-01 等"),
    until: str | None = typer.Option(None, "--until", help="截止时间"),
    folder: list[str] = typer.Option([], "--folder", help="文件夹，可多次指定（任一）"),
    tag: list[str] = typer.Option([], "--tag", help="标签，可多次指定"),
    any_tag: bool = typer.Option(False, "--any-tag", help="标签只需命中任一"),
) -> None:
    """搜索文章."""
    options = SearchOptions(
        query=query,
        field=field,
        use_fts=fts,
        limit=limit,
        since=since,
        until=until,
        folders=folder,
        tags=tag,
        tag_mode="any" if any_tag else "all",
    )
    results = _run(lambda store: SearchService(store).search(options))
    if as_json:
        _print_json(results)
        return
    if not results:
        console.print("[yellow]没有找到文章[/yellow]")
        return
    console.print(_article_table(results, f"搜索结果 ({len(results)})"))


@app.command("latest")
def latest_command(
    limit: int = typer.Option(20, "--limit", "-n", help="返回数量"),
    since: str | None = typer.Option(None, "--since", help="起始时间"),
    until: str | None = typer.Option(None, "--until", help="截止时间"),
    as_json: bool = typer.Option(False, "--json", help="输出 JSON"),
) -> None:
    """最近收藏的文章."""
    results = _run(lambda store: SearchService(store).latest(limit, since, until))
    if as_json:
        _print_json(results)
        return
    console.print(_article_table(results, "最近收藏"))


@app.command("export")
def export_command(
    article_id: int = typer.Option(..., "--id", help="文章 ID"),
    out: Path | None = typer.Option(None, "--out", help="输出文件"),
    stdout: bool = typer.Option(False, "--stdout", help="输出到标准输出"),
) -> None:
    """导出单篇文章为 Markdown."""
    if out is None and not stdout:
        raise typer.BadParameter("需要 --out 或 --stdout")

    content = _run(
        lambda store: MarkdownExporter(store).export_article(
            article_id, None if stdout else out
        )
    )
    if stdout:
        sys.stdout.write(content)
    else:
        console.print(f"已导出到 {out}")


@app.command("export-all")
def export_all_command(
    directory: Path = typer.Option(..., "--dir", help="输出目录"),
    only_synced: bool = typer.Option(False, "--only-synced", help="只导出已抓取的文章"),
    include_unsynced: bool = typer.Option(
        False, "--include-unsynced", help="未抓取的文章也导出（只有占位内容）"
    ),
    folder: str | None = typer.Option(None, "--folder", help="文件夹"),
    tag: str | None = typer.Option(None, "--tag", help="标签"),
    since: str | None = typer.Option(None, "--since", help="起始时间"),
    until: str | None = typer.Option(None, "--until", help="截止时间"),
    from_search: str | None = typer.Option(None, "--from-search", help="只导出搜索结果"),
    search_field: str | None = typer.Option(None, "--search-field", help="搜索字段"),
    search_fts: bool = typer.Option(False, "--search-fts", help="搜索使用全文索引"),
    search_limit: int = typer.Option(0, "--search-limit", help="搜索结果上限，0 表示不限"),
) -> None:
    """批量导出为 Markdown 文件."""
    criteria = ExportFilter(
        only_synced=only_synced,
        include_unsynced=include_unsynced,
        folder=folder,
        tag=tag,
        since=since,
        until=until,
        search=from_search,
        search_field=search_field,
        search_fts=search_fts,
        search_limit=search_limit,
    )
    report = _run(lambda store: MarkdownExporter(store).export_all(directory, criteria))
    if report.matched == 0:
        console.print("[yellow]没有符合条件的文章[/yellow]")
        return
    console.print(
        f"[green]导出完成[/green]: {report.exported} 篇写入 {directory}，"
        f"跳过 {report.skipped} 篇未抓取文章"
    )


# ----------------------------------------------------------------------
# 文件夹与标签
# ----------------------------------------------------------------------


@folders_app.command("list")
def folders_list() -> None:
    """列出文件夹."""
    folders = _run(lambda store: store.list_folders())
    if not folders:
        console.print("[yellow]还没有文件夹[/yellow]")
        return
    table = Table(title="文件夹")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("路径", style="magenta")
    table.add_column("父文件夹", justify="right")
    for folder in folders:
        table.add_row(str(folder.id), folder.path, str(folder.parent_id or ""))
    console.print(table)


@folders_app.command("mkdir")
def folders_mkdir(
    title: str = typer.Argument(..., help="文件夹名称"),
    parent: str | None = typer.Option(None, "--parent", help="父文件夹（ID、名称或路径）"),
) -> None:
    """创建文件夹."""

    async def action(store: ArticleStore) -> int:
        parent_id = (await store.find_folder(parent)).id if parent else None
        return await store.upsert_folder(title, parent_id)

    folder_id = _run(action)
    console.print(f"文件夹 {title} (ID {folder_id})")


@folders_app.command("mv")
def folders_mv(
    folder: str = typer.Argument(..., help="文件夹（ID、名称或路径）"),
    parent: str | None = typer.Option(None, "--parent", help="新的父文件夹"),
    root: bool = typer.Option(False, "--root", help="移到顶层"),
) -> None:
    """移动文件夹."""
    if not parent and not root:
        raise typer.BadParameter("需要 --parent 或 --root")

    async def action(store: ArticleStore):
        target = await store.find_folder(folder)
        parent_id = None if root else (await store.find_folder(parent)).id  # type: ignore[arg-type]
        assert target.id is not None
        return await store.move_folder(target.id, parent_id)

    info = _run(action)
    console.print(f"已移动: {info.path}")


@folders_app.command("rename")
def folders_rename(
    folder: str = typer.Argument(..., help="文件夹（ID、名称或路径）"),
    title: str = typer.Argument(..., help="新名称"),
) -> None:
    """重命名文件夹."""

    async def action(store: ArticleStore):
        target = await store.find_folder(folder)
        assert target.id is not None
        return await store.rename_folder(target.id, title)

    info = _run(action)
    console.print(f"已重命名: {info.path}")


@tags_app.command("list")
def tags_list(
    as_json: bool = typer.Option(False, "--json", help="输出 JSON"),
) -> None:
    """列出标签."""
    tags = _run(lambda store: store.list_tags())
    if as_json:
        _print_json(tags)
        return
    table = Table(title="标签")
    table.add_column("标签", style="green")
    table.add_column("文章数", justify="right")
    for tag in tags:
        table.add_row(tag.title, str(tag.article_count))
    console.print(table)


@tags_app.command("rename")
def tags_rename(
    old: str = typer.Argument(..., help="原标签"),
    new: str = typer.Argument(..., help="新标签"),
) -> None:
    """重命名标签."""
    info = _run(lambda store: store.rename_tag(old, new))
    console.print(f"已重命名为 {info.title} ({info.article_count} 篇文章)")


# ----------------------------------------------------------------------
# 废弃与维护
# ----------------------------------------------------------------------


@app.command("obsolete")
def obsolete_command(
    ids: str | None = typer.Option(None, "--ids", help="文章 ID，逗号分隔"),
    status_codes: str | None = typer.Option(None, "--status-codes", help="状态码，逗号分隔"),
    min_failures: int | None = typer.Option(None, "--min-failures", help="最少失败次数"),
    dry_run: bool = typer.Option(False, "--dry-run", help="只预览，不修改"),
    confirm: bool = typer.Option(False, "--confirm", help="确认执行"),
) -> None:
    """把文章标记为废弃（条件同时满足）."""
    selector = ObsoleteSelector(
        ids=_parse_ints(ids, "--ids"),
        status_codes=_parse_ints(status_codes, "--status-codes"),
        min_failures=min_failures,
    )
    if selector.is_empty:
        raise typer.BadParameter("至少需要 --ids、--status-codes 或 --min-failures 之一")
    if not dry_run and not confirm:
        console.print("[red]实际执行需要 --confirm，或使用 --dry-run 预览[/red]")
        raise typer.Exit(1)

    result = _run(lambda store: store.mark_obsolete(selector, dry_run=dry_run))
    if result.candidates:
        console.print(_obsolete_table(result.candidates, f"命中 {len(result.candidates)} 篇"))
    if dry_run:
        console.print(f"[yellow]预览模式[/yellow]: 将废弃 {len(result.candidates)} 篇")
    else:
        console.print(f"[green]已废弃 {result.affected} 篇[/green]")


@app.command("list-obsolete")
def list_obsolete_command(
    limit: int = typer.Option(0, "--limit", "-n", help="返回数量，0 表示不限"),
    as_json: bool = typer.Option(False, "--json", help="输出 JSON"),
) -> None:
    """列出已废弃的文章."""
    items = _run(lambda store: store.list_obsolete(limit or None))
    if as_json:
        _print_json(items)
        return
    if not items:
        console.print("没有已废弃的文章")
        return
    console.print(_obsolete_table(items, f"已废弃 ({len(items)})"))


@app.command("stats")
def stats_command(
    as_json: bool = typer.Option(False, "--json", help="输出 JSON"),
) -> None:
    """文章库统计."""
    stats = _run(lambda store: store.stats())
    if as_json:
        _print_json(stats)
        return

    table = Table(title="文章库统计")
    table.add_column("项目")
    table.add_column("数量", justify="right", style="cyan")
    table.add_row("全部", str(stats.total))
    table.add_row("已废弃", str(stats.obsolete))
    table.add_row("有效", str(stats.active))
    table.add_row("已抓取", str(stats.fetched))
    table.add_row("未抓取", str(stats.not_fetched))
    for count, articles in stats.failures_by_count.items():
        table.add_row(f"失败 {count} 次", str(articles))
    for code, articles in stats.status_codes.items():
        table.add_row(f"HTTP {code}", str(articles))
    console.print(table)


@app.command("doctor")
def doctor_command(
    check_only: bool = typer.Option(False, "--check-only", help="只检查，不修复"),
) -> None:
    """检查数据库并重建文件夹路径与全文索引."""

    async def action(store: ArticleStore):
        report = await store.integrity_report()
        repaired = None if check_only else await store.repair()
        return report, repaired

    report, repaired = _run(action)

    if report.integrity_ok:
        console.print("[green]完整性检查通过[/green]")
    else:
        console.print("[red]完整性检查失败[/red]")
        for message in report.integrity_messages:
            console.print(f"  {message}")
    if report.foreign_key_violations:
        console.print(f"[red]外键错误 {report.foreign_key_violations} 处[/red]")
    console.print(
        f"文章 {report.articles} 篇（已抓取 {report.synced_articles}，"
        f"放弃重试 {report.exhausted_articles}），文件夹 {report.folders} 个，标签 {report.tags} 个"
    )
    for url, count in report.duplicate_urls.items():
        console.print(f"[yellow]重复 URL[/yellow] {url} ({count})")
    if repaired is not None:
        console.print(
            f"已更新 {repaired.folders} 个文件夹路径，重建索引 {repaired.indexed} 篇"
        )


# ----------------------------------------------------------------------
# 订阅源
# ----------------------------------------------------------------------


@feeds_app.command("add")
def feeds_add(
    url: str = typer.Argument(..., help="订阅地址"),
    name: str | None = typer.Option(None, "--name", help="显示名称"),
    tag: list[str] = typer.Option([], "--tag", help="自动添加的标签，可多次指定"),
) -> None:
    """添加订阅源."""
    info = _run(lambda store: store.add_feed(url, name, tag))
    console.print(f"已添加订阅源 {info.name} (ID {info.id})")


@feeds_app.command("list")
def feeds_list() -> None:
    """列出订阅源."""
    feeds = _run(lambda store: store.list_feeds())
    if not feeds:
        console.print("[yellow]还没有订阅源[/yellow]")
        return
    table = Table(title="订阅源")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("名称")
    table.add_column("URL", style="blue")
    table.add_column("标签", style="green")
    table.add_column("最近同步")
    table.add_column("启用")
    for feed in feeds:
        table.add_row(
            str(feed.id),
            feed.name,
            feed.url,
            ", ".join(feed.tags),
            to_rfc3339(feed.last_synced_at) or "",
            "✓" if feed.active else "✗",
        )
    console.print(table)


@feeds_app.command("remove")
def feeds_remove(feed_id: int = typer.Argument(..., help="订阅源 ID")) -> None:
    """删除订阅源（已导入的文章保留）."""
    _run(lambda store: store.remove_feed(feed_id))
    console.print(f"已删除订阅源 {feed_id}")


@feeds_app.command("sync")
def feeds_sync(
    feed_id: int | None = typer.Argument(None, help="订阅源 ID，默认全部"),
) -> None:
    """同步订阅源."""
    settings = get_settings()

    async def action(store: ArticleStore) -> dict[int, int]:
        ingestor = FeedIngestor(store, timeout=settings.feed_timeout_seconds)
        if feed_id is None:
            return await ingestor.sync_all()
        feed = await store.get_feed(feed_id)
        return {feed_id: await ingestor.sync_feed(feed)}

    results = _run(action)
    console.print(f"同步了 {len(results)} 个订阅源，新增 {sum(results.values())} 篇文章")


# ----------------------------------------------------------------------
# 其他
# ----------------------------------------------------------------------


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", "--host", help="监听地址"),
    port: int = typer.Option(8000, "--port", help="监听端口"),
) -> None:
    """启动 HTTP 服务."""
    import uvicorn

    uvicorn.run("readshelf.main:app", host=host, port=port)


@app.command("mcp")
def mcp_command() -> None:
    """通过 stdio 启动 MCP 工具服务，供支持工具调用的客户端使用."""
    from readshelf.mcp_server import create_server

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_file, stderr=True)
    create_server(settings=settings).run("stdio")


@app.command("version")
def version_command() -> None:
    """显示版本."""
    typer.echo(f"readshelf {__version__}")


if __name__ == "__main__":
    app()
