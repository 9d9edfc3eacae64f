"""Feed HTTP 抓取."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC
from email.utils import format_datetime, parsedate_to_datetime

import httpx

from feedkeeper.config import SyncConfig
from feedkeeper.errors import FailureKind
from feedkeeper.models.feed import Feed

logger = logging.getLogger(__name__)

HTTP_NOT_MODIFIED = 304

FEED_ACCEPT = (
    "application/rss+xml, application/rdf+xml, application/atom+xml, "
    "application/xml;q=0.9, text/xml;q=0.9, */*;q=0.8"
)


@dataclass(frozen=True)
class NotModified:
    """服务器返回 304，内容未变化."""


@dataclass(frozen=True)
class Fetched:
    """成功取得 Feed 内容."""

    content: bytes
    url: str
    etag: str | None = None
    last_modified: str | None = None
    content_type: str | None = None


@dataclass(frozen=True)
class FetchFailure:
    """抓取失败."""

    kind: FailureKind
    message: str
    status_code: int | None = None

    @property
    def is_transient(self) -> bool:
        """超时、连接错误、5xx 和 429 视为可重试."""
        if self.kind in (FailureKind.TIMEOUT, FailureKind.CONNECTION):
            return True
        if self.kind == FailureKind.HTTP and self.status_code is not None:
            return self.status_code >= 500 or self.status_code == 429
        return False


FetchResult = NotModified | Fetched | FetchFailure


def _normalize_http_date(value: str) -> str | None:
    """规范化 HTTP 日期，无法识别时返回 None."""
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return format_datetime(dt.astimezone(UTC), usegmt=True)


def conditional_headers(feed: Feed) -> dict[str, str]:
    """根据缓存令牌构造条件请求头."""
    headers: dict[str, str] = {}

    if feed.etag:
        etag = feed.etag
        if not (etag.startswith('"') or etag.startswith('W/"')):
            etag = f'"{etag}"'
        headers["If-None-Match"] = etag

    if feed.last_modified:
        normalized = _normalize_http_date(feed.last_modified)
        if normalized:
            headers["If-Modified-Since"] = normalized
        else:
            logger.warning(
                f"Last-Modified 格式无效，不发送条件头: {feed.url} ({feed.last_modified})"
            )

    return headers


class Fetcher:
    """抓取单个 Feed；不做重试，重试策略由 SyncEngine 决定."""

    def __init__(
        self,
        config: SyncConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or SyncConfig()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.config.fetch_timeout,
            headers={"User-Agent": self.config.user_agent},
        )

    async def close(self) -> None:
        """关闭客户端."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def fetch(self, feed: Feed) -> FetchResult:
        """抓取 Feed，所有网络异常都转换为 FetchFailure."""
        headers = {"Accept": FEED_ACCEPT, **conditional_headers(feed)}
        if "If-None-Match" in headers or "If-Modified-Since" in headers:
            logger.debug(f"条件请求 {feed.url}: {headers}")

        try:
            async with asyncio.timeout(self.config.fetch_timeout):
                return await self._fetch(feed.url, headers)
        except (TimeoutError, httpx.TimeoutException):
            return FetchFailure(
                kind=FailureKind.TIMEOUT,
                message=f"请求超时 ({self.config.fetch_timeout}s)",
            )
        except httpx.RequestError as e:
            return FetchFailure(
                kind=FailureKind.CONNECTION,
                message=f"{type(e).__name__}: {e}",
            )

    async def _fetch(self, url: str, headers: dict[str, str]) -> FetchResult:
        limit = self.config.max_payload_bytes

        async with self._client.stream("GET", url, headers=headers) as response:
            if response.status_code == HTTP_NOT_MODIFIED:
                return NotModified()

            if not response.is_success:
                return FetchFailure(
                    kind=FailureKind.HTTP,
                    message=f"HTTP {response.status_code}",
                    status_code=response.status_code,
                )

            declared = response.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > limit:
                return self._too_large(limit)

            chunks: list[bytes] = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > limit:
                    return self._too_large(limit)
                chunks.append(chunk)

            return Fetched(
                content=b"".join(chunks),
                url=str(response.url),
                etag=response.headers.get("ETag"),
                last_modified=response.headers.get("Last-Modified"),
                content_type=response.headers.get("Content-Type"),
            )

    @staticmethod
    def _too_large(limit: int) -> FetchFailure:
        return FetchFailure(
            kind=FailureKind.TOO_LARGE,
            message=f"响应超过 {limit} 字节上限",
        )
