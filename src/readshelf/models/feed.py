"""订阅源数据模型."""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from readshelf.utils.dates import utcnow


class Feed(SQLModel, table=True):
    """RSS/Atom 订阅源，新条目会加入文章库."""

    __tablename__ = "feeds"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    url: str = Field(unique=True, description="订阅地址")
    name: str = Field(description="显示名称")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    last_synced_at: datetime | None = Field(default=None, sa_type=DateTime, index=True)
    active: bool = Field(default=True, index=True)


class FeedTag(SQLModel, table=True):
    """订阅源文章自动附加的标签."""

    __tablename__ = "feed_tags"  # type: ignore[assignment]

    feed_id: int = Field(foreign_key="feeds.id", primary_key=True, ondelete="CASCADE")
    tag_id: int = Field(foreign_key="tags.id", primary_key=True, ondelete="CASCADE")
