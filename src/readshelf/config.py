"""应用配置管理."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置（环境变量 / .env）."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="READSHELF_",
        extra="ignore",
    )

    database_url: str = "sqlite+aiosqlite:///./readshelf.db"

    # 全文抓取
    fetch_timeout_seconds: float = 20.0
    fetch_delay_seconds: float = 0.5
    fetch_batch_size: int = 10
    fetch_user_agent: str = (
        "readshelf/0.1 (+https://github.com/readshelf/readshelf)"
    )
    fetch_store_raw: bool = False
    fetch_prefer_extracted_title: bool = False

    # 重试策略
    max_failures: int = 5
    cooldown_minutes: int = 60

    # 订阅源同步
    feed_sync_enabled: bool = False
    feed_sync_interval_minutes: int = 60
    feed_timeout_seconds: float = 30.0

    # 日志
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_file: str | None = None


@lru_cache
def get_settings() -> Settings:
    """获取应用配置（带缓存）."""
    return Settings()


def sqlite_url(path: str) -> str:
    """由文件路径构造异步 SQLite URL."""
    if "://" in path:
        return path
    return f"sqlite+aiosqlite:///{path}"
