"""测试时间与文本工具."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from readshelf.utils.dates import (
    date_range,
    from_unix,
    parse_relative_date,
    to_naive_utc,
    to_rfc3339,
)
from readshelf.utils.text import dedupe_strings, parse_tags, safe_filename, slugify

NOW = datetime(2024, 3, 15, 14, 30, 0)


class TestDates:
    def test_from_unix_is_utc(self) -> None:
        assert from_unix(1700000000) == datetime(2023, 11, 14, 22, 13, 20)

    def test_to_rfc3339(self) -> None:
        assert to_rfc3339(datetime(2023, 11, 14, 22, 13, 20)) == "2023-11-14T22:13:20Z"
        assert to_rfc3339(None) is None

    def test_to_naive_utc_converts_offset(self) -> None:
        aware = datetime(2024, 1, 1, 8, 0, tzinfo=timezone(timedelta(hours=8)))
        assert to_naive_utc(aware) == datetime(2024, 1, 1, 0, 0)
        assert to_naive_utc(datetime(2024, 1, 1, tzinfo=UTC)).tzinfo is None

    @pytest.mark.parametrize(
        ("expression", "expected"),
        [
            ("today", datetime(2024, 3, 15)),
            ("yesterday", datetime(2024, 3, 14)),
            ("3h", datetime(2024, 3, 15, 11, 30)),
            ("7d", datetime(2024, 3, 8)),
            ("2w", datetime(2024, 3, 1)),
            ("1m", datetime(2024, 2, 15)),
            ("1y", datetime(2023, 3, 15)),
            ("2024-01-02", datetime(2024, 1, 2)),
            ("2024-01-02T10:00:00Z", datetime(2024, 1, 2, 10, 0)),
        ],
    )
    def test_parse_relative_date(self, expression: str, expected: datetime) -> None:
        assert parse_relative_date(expression, NOW) == expected

    def test_month_arithmetic_clamps_day(self) -> None:
        end_of_march = datetime(2024, 3, 31, 9, 0)
        assert parse_relative_date("1m", end_of_march) == datetime(2024, 2, 29)

    def test_parse_relative_date_rejects_garbage(self) -> None:
        with pytest.raises(ValueError):
            parse_relative_date("last tuesday", NOW)
        with pytest.raises(ValueError):
            parse_relative_date("  ", NOW)

    def test_date_range_until_is_end_of_day(self) -> None:
        since, until = date_range("2024-01-01", "2024-01-31", NOW)
        assert since == datetime(2024, 1, 1)
        assert until == datetime(2024, 1, 31, 23, 59, 59, 999999)

    def test_date_range_empty(self) -> None:
        assert date_range(None, None, NOW) == (None, None)


class TestText:
    def test_parse_quoted_list(self) -> None:
        assert parse_tags('["x", "y"]') == ["x", "y"]

    def test_parse_comma_separated(self) -> None:
        assert parse_tags("a, b ,,c") == ["a", "b", "c"]

    @pytest.mark.parametrize("raw", [None, "", "  ", "[]"])
    def test_parse_empty(self, raw: str | None) -> None:
        assert parse_tags(raw) == []

    def test_dedupe_keeps_first_occurrence(self) -> None:
        assert dedupe_strings(["b", " a", "b", "", "a "]) == ["b", "a"]

    def test_slugify(self) -> None:
        assert slugify("Hello, World! Ünïcode 2024") == "hello-world-n-code-2024"
        assert slugify("!!!") == ""

    def test_safe_filename_falls_back_to_article(self) -> None:
        assert safe_filename("???", 7) == "article-7"
        assert safe_filename("Python Tips", 12) == "python-tips-12"

    def test_safe_filename_respects_length(self) -> None:
        name = safe_filename("word " * 100, 123456, max_length=60)
        assert len(name) <= 60
        assert name.endswith("-123456")
