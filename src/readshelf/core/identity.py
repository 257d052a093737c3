"""规范化 URL，作为文章去重键."""

from urllib.parse import urlsplit, urlunsplit

from readshelf.core.errors import InvalidURL

INSECURE_SCHEME = "http"
SECURE_SCHEME = "https"


def canonicalize_url(raw_url: str) -> str:
    """
    规范化 URL.

    依次执行: ``http`` 改为 ``https``，去掉片段，去掉路径末尾的一个 ``/``。
    主机和查询串保持不变。

    Raises:
        InvalidURL: 输入不是绝对 URL
    """
    if raw_url is None:
        raise InvalidURL("", "空字符串")

    candidate = raw_url.strip()
    if not candidate:
        raise InvalidURL(raw_url, "空字符串")

    try:
        parts = urlsplit(candidate)
        # 访问 port 会校验端口
        parts.port  # noqa: B018
    except ValueError as e:
        raise InvalidURL(raw_url, str(e)) from e

    if not parts.scheme or not parts.netloc:
        raise InvalidURL(raw_url, "缺少协议或主机")

    scheme = parts.scheme.lower()
    if scheme == INSECURE_SCHEME:
        scheme = SECURE_SCHEME

    path = parts.path
    if path.endswith("/"):
        path = path[:-1]

    return urlunsplit((scheme, parts.netloc, path, parts.query, ""))
