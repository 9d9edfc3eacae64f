"""时间工具：库内统一使用 naive UTC 时间."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """当前 UTC 时间（不带 tzinfo）."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """将任意 datetime 转换为 naive UTC；naive 输入视为 UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)
