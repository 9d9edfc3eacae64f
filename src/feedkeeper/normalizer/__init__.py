"""Feed 解析与归一化.

所有格式都经由 `normalize()` 入口：feedparser 解析后按其识别的版本
分派到对应格式的解析函数。
"""

import logging
import re
from collections.abc import Callable
from datetime import datetime

from feedparser.encodings import parse_content_type

from feedkeeper.errors import ParseError
from feedkeeper.normalizer.atom import parse_atom
from feedkeeper.normalizer.base import ArticleDraft, FeedFormat, NormalizedFeed
from feedkeeper.normalizer.dates import parse_date
from feedkeeper.normalizer.document import FeedDocument, read_document
from feedkeeper.normalizer.rdf import parse_rdf
from feedkeeper.normalizer.rss import parse_rss
from feedkeeper.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

_UTF8_BOM = b"\xef\xbb\xbf"
_XML_ENCODING = re.compile(rb"^<\?xml[^>]*\bencoding\s*=")
# feedparser 不为以 <channel> 为根的文档设置版本
_CHANNEL_ROOT = re.compile(
    rb"^(?:<\?.*?\?>\s*|<!--.*?-->\s*)*<channel[\s>]", re.DOTALL
)

FormatParser = Callable[..., NormalizedFeed]

_PARSERS: dict[FeedFormat, FormatParser] = {
    FeedFormat.RSS: parse_rss,
    FeedFormat.ATOM: parse_atom,
    FeedFormat.RDF: parse_rdf,
}

_RDF_VERSIONS = {"rss090", "rss10"}


def _looks_like_html(raw: bytes) -> bool:
    head = raw[:512].decode("utf-8", errors="ignore").lstrip().lower()
    return head.startswith(("<!doctype html", "<html"))


def _response_headers(raw: bytes, content_type: str | None) -> dict[str, str]:
    """按 XML 交给 feedparser；文档未声明编码时使用 HTTP 头中的 charset."""
    header = "application/xml"
    _, charset = parse_content_type(content_type or "")
    if charset and not _XML_ENCODING.match(raw):
        header = f"{header}; charset={charset}"
    return {"content-type": header}


def detect_format(document: FeedDocument, raw: bytes = b"") -> FeedFormat:
    """根据 feedparser 识别的版本判断 Feed 格式."""
    version = document.version
    if version.startswith("atom"):
        return FeedFormat.ATOM
    if version in _RDF_VERSIONS:
        return FeedFormat.RDF
    if version.startswith("rss") or _CHANNEL_ROOT.match(raw):
        return FeedFormat.RSS

    msg = f"不支持的 Feed 格式: {version or '未知'}"
    raise ParseError(msg)


def normalize(
    raw: bytes,
    feed_id: str,
    *,
    base_url: str | None = None,
    fetched_at: datetime | None = None,
    content_type: str | None = None,
) -> NormalizedFeed:
    """
    将原始 Feed 字节解析为归一化文章列表.

    Args:
        raw: HTTP 响应体
        feed_id: 所属 Feed
        base_url: 解析相对链接的基础 URL（通常为最终请求 URL）
        fetched_at: 抓取时间，日期缺失或无法解析时用作发布时间
        content_type: HTTP Content-Type，其中的 charset 用于未声明编码的文档

    Returns:
        NormalizedFeed，其中 skipped 记录被跳过的条目

    Raises:
        ParseError: Feed 级解析失败
    """
    fetched_at = fetched_at or utcnow()

    raw = raw.strip() if raw else b""
    if raw.startswith(_UTF8_BOM):
        raw = raw[len(_UTF8_BOM) :].lstrip()

    if not raw:
        msg = "响应内容为空"
        raise ParseError(msg)

    if _looks_like_html(raw):
        msg = "服务器返回的是 HTML 页面而不是 Feed"
        raise ParseError(msg)

    document = read_document(raw, _response_headers(raw, content_type))
    feed_format = detect_format(document, raw)

    result = _PARSERS[feed_format](
        document, feed_id, base_url=base_url, fetched_at=fetched_at
    )

    for skipped in result.skipped:
        logger.warning(f"[{feed_id}] 跳过第 {skipped.index} 个条目: {skipped.reason}")

    return result


__all__ = [
    "ArticleDraft",
    "FeedFormat",
    "NormalizedFeed",
    "ParseError",
    "detect_format",
    "normalize",
    "parse_date",
]
