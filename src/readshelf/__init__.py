"""readshelf: 个人文章库，收藏、抓取全文与搜索."""

__version__ = "0.1.0"
