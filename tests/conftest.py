"""测试配置和 fixtures."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path

import httpx
import pytest
import pytest_asyncio

from feedkeeper.config import SyncConfig
from feedkeeper.core.facade import QueryFacade
from feedkeeper.core.store import Store
from feedkeeper.core.sync import SyncEngine
from feedkeeper.fetcher.http import Fetcher
from feedkeeper.models.feed import Feed

FEED_URL = "https://example.com/feed.xml"
OTHER_URL = "https://other.example.org/atom.xml"

Handler = Callable[[httpx.Request], httpx.Response | Awaitable[httpx.Response]]


def make_item(
    n: int,
    *,
    guid: str | None = None,
    link: str | None = None,
    title: str | None = None,
    description: str | None = None,
    pub_date: str | None = None,
) -> str:
    """构造一个 RSS <item>."""
    guid = guid if guid is not None else f"item-{n}"
    link = link if link is not None else f"https://example.com/posts/{n}"
    title = title if title is not None else f"Post {n}"
    description = description if description is not None else f"<p>Body {n}</p>"
    pub_date = pub_date or f"Mon, {n + 1:02d} Jan 2024 10:00:00 GMT"

    parts = ["<item>"]
    if guid:
        parts.append(f"<guid>{guid}</guid>")
    if link:
        parts.append(f"<link>{link}</link>")
    if title:
        parts.append(f"<title>{title}</title>")
    parts.append(f"<description><![CDATA[{description}]]></description>")
    parts.append(f"<pubDate>{pub_date}</pubDate>")
    parts.append("</item>")
    return "".join(parts)


def make_rss(*items: str, title: str = "Example Blog") -> bytes:
    """把若干 <item> 包装成 RSS 2.0 文档."""
    body = "".join(items)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel>'
        f"<title>{title}</title><link>https://example.com/</link>"
        f"{body}</channel></rss>"
    ).encode()


def make_posts(count: int) -> bytes:
    return make_rss(*(make_item(n) for n in range(1, count + 1)))


class FeedServer:
    """基于 httpx.MockTransport 的假 Feed 服务器."""

    def __init__(self) -> None:
        self.routes: dict[str, Handler] = {}
        self.requests: list[httpx.Request] = []

    def route(self, url: str, handler: Handler) -> None:
        self.routes[url] = handler

    def serve(
        self,
        url: str,
        content: bytes | str,
        *,
        status_code: int = 200,
        headers: dict[str, str] | None = None,
    ) -> None:
        """固定返回给定内容."""
        body = content.encode() if isinstance(content, str) else content

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, content=body, headers=headers)

        self.route(url, handler)

    def requests_for(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    def handle(
        self, request: httpx.Request
    ) -> httpx.Response | Awaitable[httpx.Response]:
        self.requests.append(request)
        handler = self.routes.get(str(request.url))
        if handler is None:
            return httpx.Response(404)
        return handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handle),
            follow_redirects=True,
        )


@pytest.fixture
def sync_config() -> SyncConfig:
    """测试用配置：不等待退避."""
    return SyncConfig(concurrency_limit=4, retry_count=2, retry_backoff=0)


@pytest.fixture
def feed_server() -> FeedServer:
    return FeedServer()


@pytest_asyncio.fixture
async def fetcher(
    feed_server: FeedServer, sync_config: SyncConfig
) -> AsyncGenerator[Fetcher, None]:
    client = feed_server.client()
    yield Fetcher(sync_config, client=client)
    await client.aclose()


@pytest_asyncio.fixture
async def store(tmp_path: Path) -> AsyncGenerator[Store, None]:
    """创建测试用的临时文件数据库."""
    store = Store(f"sqlite+aiosqlite:///{tmp_path / 'feedkeeper.db'}")
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def engine(store: Store, fetcher: Fetcher, sync_config: SyncConfig) -> SyncEngine:
    return SyncEngine(store, fetcher, sync_config)


@pytest.fixture
def facade(store: Store, engine: SyncEngine) -> QueryFacade:
    return QueryFacade(store, engine)


@pytest_asyncio.fixture
async def sample_feed(store: Store) -> Feed:
    """创建测试用的 Feed."""
    return await store.add_feed(FEED_URL, group_title="Tech")
