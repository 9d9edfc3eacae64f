"""Feed 抓取模块."""

from feedkeeper.fetcher.http import (
    Fetched,
    Fetcher,
    FetchFailure,
    FetchResult,
    NotModified,
    conditional_headers,
)

__all__ = [
    "FetchFailure",
    "FetchResult",
    "Fetched",
    "Fetcher",
    "NotModified",
    "conditional_headers",
]
