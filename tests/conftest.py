"""测试配置和 fixtures."""

from collections.abc import AsyncGenerator
from datetime import datetime
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from readshelf.config import Settings
from readshelf.core.store import ArticleStore
from readshelf.models import database
from readshelf.models.database import create_engine, create_session_factory, run_migrations


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """测试用配置（不读 .env，抓取间隔为 0）."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'settings.db'}",
        fetch_delay_seconds=0,
    )


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """创建已执行迁移的临时 SQLite 数据库."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'library.db'}")
    await run_migrations(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def async_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """创建测试用的数据库会话."""
    session_factory = create_session_factory(engine)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def store(async_session: AsyncSession) -> ArticleStore:
    return ArticleStore(async_session)


@pytest_asyncio.fixture
async def sample_articles(store: ArticleStore) -> dict[str, int]:
    """
    创建测试用的文章.

    - python: 文件夹 Dev，标签 python/tips
    - rust: 文件夹 Dev，标签 rust
    - news: 无文件夹、无标签
    """
    dev = await store.upsert_folder("Dev")

    python_id, _ = await store.upsert_article(
        "https://example.com/python-tips",
        "Python Tips",
        folder_id=dev,
        saved_at=datetime(2024, 1, 10, 8, 0, 0),
    )
    await store.replace_tags(python_id, ["python", "tips"])

    rust_id, _ = await store.upsert_article(
        "https://example.com/rust-intro",
        "Rust Intro",
        folder_id=dev,
        saved_at=datetime(2024, 2, 1, 12, 0, 0),
    )
    await store.replace_tags(rust_id, ["rust"])

    news_id, _ = await store.upsert_article(
        "https://news.example.org/daily",
        "Daily News",
        saved_at=datetime(2024, 3, 5, 18, 30, 0),
    )

    return {"python": python_id, "rust": rust_id, "news": news_id}


@pytest_asyncio.fixture
async def client(
    engine: AsyncEngine, monkeypatch: pytest.MonkeyPatch
) -> AsyncGenerator[AsyncClient, None]:
    """创建测试用的 HTTP 客户端，接口使用临时数据库."""
    from readshelf.main import app

    monkeypatch.setattr(database, "_session_factory", create_session_factory(engine))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
