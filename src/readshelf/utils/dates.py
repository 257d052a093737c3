"""时间工具.

所有时间均以不带时区的 UTC datetime 存储。
"""

import calendar
import re
from datetime import UTC, datetime, timedelta

_RELATIVE_RE = re.compile(r"^(\d+)([hdwmy])$")


def utcnow() -> datetime:
    """当前 UTC 时间（无时区）."""
    return datetime.now(UTC).replace(tzinfo=None, microsecond=0)


def to_naive_utc(value: datetime) -> datetime:
    """转换为无时区 UTC，无时区的值视为 UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def from_unix(seconds: int) -> datetime:
    """Unix 时间戳转为 UTC."""
    return datetime.fromtimestamp(seconds, UTC).replace(tzinfo=None)


def to_rfc3339(value: datetime | None) -> str | None:
    """格式化为 ``2023-11-14T22:13:20Z``."""
    if value is None:
        return None
    return to_naive_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _months_ago(now: datetime, months: int) -> datetime:
    month_index = now.month - 1 - months
    year = now.year + month_index // 12
    month = month_index % 12 + 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def parse_relative_date(value: str, now: datetime | None = None) -> datetime:
    """
    解析日期过滤表达式.

    支持 ``today``、``yesterday``、``<n>h/d/w/m/y``、``YYYY-MM-DD`` 和
    ISO 8601 时间。以天及以上为单位时取当天零点。

    Raises:
        ValueError: 无法识别的表达式
    """
    if not value or not value.strip():
        raise ValueError("日期为空")

    now = now or utcnow()
    text = value.strip().lower()

    if text == "today":
        return _start_of_day(now)
    if text == "yesterday":
        return _start_of_day(now - timedelta(days=1))

    match = _RELATIVE_RE.match(text)
    if match:
        amount = int(match.group(1))
        unit = match.group(2)
        if unit == "h":
            return now - timedelta(hours=amount)
        if unit == "d":
            target = now - timedelta(days=amount)
        elif unit == "w":
            target = now - timedelta(weeks=amount)
        elif unit == "m":
            target = _months_ago(now, amount)
        else:
            target = _months_ago(now, amount * 12)
        return _start_of_day(target)

    try:
        return datetime.strptime(text, "%Y-%m-%d")
    except ValueError:
        pass

    try:
        return to_naive_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    except ValueError as e:
        msg = f"无法解析日期: {value}"
        raise ValueError(msg) from e


def date_range(
    since: str | None, until: str | None, now: datetime | None = None
) -> tuple[datetime | None, datetime | None]:
    """解析 since/until，``until`` 取到当天结束."""
    since_at = parse_relative_date(since, now) if since else None
    until_at = None
    if until:
        until_at = parse_relative_date(until, now).replace(
            hour=23, minute=59, second=59, microsecond=999999
        )
    return since_at, until_at
