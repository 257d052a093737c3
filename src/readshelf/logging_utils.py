"""日志配置."""

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _level_from_string(level: str) -> int:
    return getattr(logging, level.upper(), logging.INFO)


def configure_logging(
    level: str = "INFO", log_file: str | Path | None = None, stderr: bool = False
) -> None:
    """
    配置根日志: 控制台使用 RichHandler，指定文件时同时写入文件.

    ``stderr`` 为 True 时控制台日志写到标准错误，stdio 协议服务需要保持标准输出干净。
    """
    root = logging.getLogger()
    root.setLevel(_level_from_string(level))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console_handler = RichHandler(
        console=Console(stderr=stderr), rich_tracebacks=True, show_path=False
    )
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        root.addHandler(file_handler)

    # httpx 每个请求都会打 INFO 日志
    logging.getLogger("httpx").setLevel(logging.WARNING)
