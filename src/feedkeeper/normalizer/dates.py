"""Feed 日期解析，使用 feedparser 的日期处理器."""

import time
from datetime import datetime

from feedparser.datetimes import _parse_date


def from_struct_time(value: time.struct_time | None) -> datetime | None:
    """feedparser 给出的 UTC struct_time 转为 naive UTC."""
    if not value:
        return None
    try:
        return datetime(*value[:6])
    except ValueError:
        return None


def parse_date(value: str | None) -> datetime | None:
    """解析 Feed 中的日期字符串，返回 naive UTC；无法识别时返回 None."""
    if not value:
        return None

    text = " ".join(value.split())
    if not text:
        return None

    return from_struct_time(_parse_date(text))
