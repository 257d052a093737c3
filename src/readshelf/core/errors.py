"""异常定义."""


class ReadshelfError(Exception):
    """所有 readshelf 异常的基类."""


class InvalidURL(ReadshelfError, ValueError):
    """无法解析为绝对 URL."""

    def __init__(self, url: str, reason: str = "无法解析的 URL") -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"无效 URL {url!r}: {reason}")


class StoreFailure(ReadshelfError):
    """底层存储错误，当前操作必然失败."""


class ArticleNotFound(ReadshelfError, LookupError):
    """文章不存在（或已废弃）."""

    def __init__(self, article_id: int) -> None:
        self.article_id = article_id
        super().__init__(f"文章不存在: {article_id}")


class FolderNotFound(ReadshelfError, LookupError):
    """文件夹不存在."""


class TagNotFound(ReadshelfError, LookupError):
    """标签不存在."""


class FeedNotFound(ReadshelfError, LookupError):
    """订阅源不存在."""


class FolderCycleError(ReadshelfError):
    """移动后文件夹会成为自己的祖先."""


class TagConflict(ReadshelfError):
    """目标标签名已存在."""


class FetchFailure(ReadshelfError):
    """单篇文章抓取失败，记录到文章上，不会抛出批次之外."""

    def __init__(self, status_code: int, reason: str) -> None:
        self.status_code = status_code
        self.reason = reason
        super().__init__(reason)


class TransportFailure(FetchFailure):
    """网络错误或超时."""

    def __init__(self, reason: str) -> None:
        super().__init__(0, reason)


class RemoteError(FetchFailure):
    """远端返回非成功状态码."""


class ExtractionFailure(FetchFailure):
    """无法提取或转换正文."""

    PREFIX = "ExtractionError"

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(status_code, f"{self.PREFIX}: {detail}")


class FeedSyncError(ReadshelfError):
    """订阅源下载或解析失败."""
