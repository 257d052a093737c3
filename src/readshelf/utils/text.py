"""标签与文件名相关的文本工具."""

import re

_QUOTED_RE = re.compile(r'"([^"]*)"')
_SLUG_RE = re.compile(r"[^a-z0-9]+")


def parse_tags(raw: str | None) -> list[str]:
    """
    解析标签列.

    支持带引号的列表 ``["a", "b"]`` 和逗号分隔字符串。
    """
    if raw is None:
        return []

    text = raw.strip()
    if not text or text == "[]":
        return []

    if text.startswith("[") and text.endswith("]"):
        inner = text[1:-1]
        return [m.strip() for m in _QUOTED_RE.findall(inner) if m.strip()]

    return [part.strip() for part in text.split(",") if part.strip()]


def dedupe_strings(values: list[str]) -> list[str]:
    """去空白、去空值、去重，保持顺序."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        item = value.strip()
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result


def slugify(text: str, max_length: int = 100) -> str:
    """小写、连字符分隔的 ASCII slug."""
    slug = _SLUG_RE.sub("-", text.lower()).strip("-")
    return slug[:max_length].rstrip("-")


def safe_filename(title: str, article_id: int, max_length: int = 120) -> str:
    """``<slug>-<id>``，不超过 ``max_length`` 个字符（不含扩展名）."""
    base = slugify(title, max_length - 20) or "article"
    return f"{base}-{article_id}"
