"""数据库连接、会话管理与迁移."""

import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from readshelf.core.index import FTS_TABLE_DDL
from readshelf.models.article import Article, ArticleTag, Folder, Tag
from readshelf.models.feed import Feed, FeedTag

logger = logging.getLogger(__name__)

# 全局数据库引擎
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


@dataclass(frozen=True)
class Migration:
    """带编号的结构变更，只执行一次."""

    version: int
    name: str
    apply: Callable[[AsyncConnection], Awaitable[None]]


async def _create_tables(conn: AsyncConnection, tables: list[Any]) -> None:
    await conn.run_sync(
        lambda sync_conn: SQLModel.metadata.create_all(sync_conn, tables=tables)
    )


async def _column_names(conn: AsyncConnection, table: str) -> list[str]:
    result = await conn.execute(text(f"PRAGMA table_info({table})"))
    return [row[1] for row in result.fetchall()]


async def _migrate_init(conn: AsyncConnection) -> None:
    await _create_tables(
        conn,
        [
            Folder.__table__,
            Tag.__table__,
            Article.__table__,
            ArticleTag.__table__,
        ],
    )
    await conn.execute(
        text(
            "CREATE INDEX IF NOT EXISTS idx_articles_failed "
            "ON articles(failed_count, sync_failed_at)"
        )
    )


async def _migrate_fts(conn: AsyncConnection) -> None:
    await conn.execute(text(FTS_TABLE_DDL))


async def _migrate_add_obsolete(conn: AsyncConnection) -> None:
    columns = await _column_names(conn, "articles")
    if "obsolete" not in columns:
        logger.info("添加 articles.obsolete 列")
        await conn.execute(
            text(
                "ALTER TABLE articles ADD COLUMN obsolete BOOLEAN NOT NULL DEFAULT 0"
            )
        )
    await conn.execute(
        text("CREATE INDEX IF NOT EXISTS ix_articles_obsolete ON articles(obsolete)")
    )


async def _migrate_feeds(conn: AsyncConnection) -> None:
    await _create_tables(conn, [Feed.__table__, FeedTag.__table__])


MIGRATIONS: list[Migration] = [
    Migration(1, "init", _migrate_init),
    Migration(2, "fts", _migrate_fts),
    Migration(3, "add_obsolete", _migrate_add_obsolete),
    Migration(4, "feeds", _migrate_feeds),
]


async def applied_versions(engine: AsyncEngine) -> list[int]:
    """已执行的迁移版本（升序）."""
    async with engine.connect() as conn:
        result = await conn.execute(
            text("SELECT version FROM schema_migrations ORDER BY version")
        )
        return [row[0] for row in result.fetchall()]


async def run_migrations(engine: AsyncEngine) -> list[int]:
    """按版本顺序执行未完成的迁移，返回本次执行的版本."""
    async with engine.begin() as conn:
        await conn.execute(
            text(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
        )

    done = set(await applied_versions(engine))
    applied: list[int] = []

    for migration in sorted(MIGRATIONS, key=lambda m: m.version):
        if migration.version in done:
            continue
        logger.info(f"执行迁移 {migration.version:04d}_{migration.name}")
        async with engine.begin() as conn:
            await migration.apply(conn)
            await conn.execute(
                text("INSERT INTO schema_migrations (version, name) VALUES (:v, :n)"),
                {"v": migration.version, "n": migration.name},
            )
        applied.append(migration.version)

    return applied


def create_engine(database_url: str) -> AsyncEngine:
    """创建异步引擎，每个连接都开启外键约束."""
    engine = create_async_engine(database_url, echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """创建会话工厂."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(database_url: str) -> None:
    """初始化数据库并执行迁移."""
    global _engine, _session_factory

    _engine = create_engine(database_url)
    _session_factory = create_session_factory(_engine)

    applied = await run_migrations(_engine)
    if applied:
        logger.info(f"已执行 {len(applied)} 个迁移")


async def close_db() -> None:
    """关闭数据库连接."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """获取数据库会话（FastAPI 依赖）."""
    if _session_factory is None:
        msg = "数据库未初始化，请先调用 init_db()"
        raise RuntimeError(msg)

    async with _session_factory() as session:
        yield session


def async_session_maker() -> async_sessionmaker[AsyncSession]:
    """获取会话工厂（后台任务使用）."""
    if _session_factory is None:
        msg = "数据库未初始化，请先调用 init_db()"
        raise RuntimeError(msg)
    return _session_factory
