"""用 feedparser 读取 Feed 文档.

先整体严格解析；失败时按 <item>/<entry> 拆分，逐条解析，
损坏的条目记为跳过，其余条目照常保留。
"""

import io
import logging
import re
import xml.sax
from dataclasses import dataclass, field
from html.entities import name2codepoint
from itertools import pairwise

import feedparser
from feedparser import FeedParserDict

from feedkeeper.errors import SkippedItem

logger = logging.getLogger(__name__)

IndexedEntry = tuple[int, FeedParserDict]

_XML_ENTITIES = {"amp", "lt", "gt", "quot", "apos"}
_ENTITY = re.compile(rb"&([A-Za-z][A-Za-z0-9]{1,31});")
_ITEM_START = re.compile(rb"<(?:[\w.-]+:)?(?:item|entry)[\s>/]")
_ROOT_END = re.compile(rb"</(?:[\w.-]+:)?(?:channel|feed|RDF)\s*>")


@dataclass
class FeedDocument:
    """一次 feedparser 解析的结果，条目附带其在原文中的序号."""

    version: str
    feed: FeedParserDict
    entries: list[IndexedEntry] = field(default_factory=list)
    skipped: list[SkippedItem] = field(default_factory=list)


def _replace_entity(match: re.Match[bytes]) -> bytes:
    name = match.group(1).decode("ascii")
    if name in _XML_ENTITIES or name not in name2codepoint:
        return match.group(0)
    return b"&#%d;" % name2codepoint[name]


def _parse(raw: bytes, headers: dict[str, str]) -> FeedParserDict:
    # BytesIO 避免 feedparser 把字节串当作 URL 或文件路径
    return feedparser.parse(io.BytesIO(raw), response_headers=headers)


def _is_malformed(parsed: FeedParserDict) -> bool:
    """严格解析失败时 feedparser 会记录 SAX 异常并退回宽松解析."""
    return isinstance(parsed.get("bozo_exception"), xml.sax.SAXException)


def _split_items(raw: bytes) -> tuple[bytes, list[bytes], bytes] | None:
    """拆分为 头部、各条目、尾部；找不到条目或根元素结束标签时返回 None."""
    starts = [match.start() for match in _ITEM_START.finditer(raw)]
    if not starts:
        return None

    end = _ROOT_END.search(raw, starts[-1])
    if end is None:
        return None

    bounds = [*starts, end.start()]
    chunks = [raw[begin:stop] for begin, stop in pairwise(bounds)]
    return raw[: starts[0]], chunks, raw[end.start() :]


def _recover(raw: bytes, headers: dict[str, str]) -> FeedDocument | None:
    """逐条解析；频道部分本身损坏或没有任何条目可用时返回 None."""
    parts = _split_items(raw)
    if parts is None:
        return None

    header, chunks, footer = parts
    skeleton = _parse(header + footer, headers)
    if _is_malformed(skeleton):
        return None

    document = FeedDocument(version=skeleton.get("version", ""), feed=skeleton.feed)
    for index, chunk in enumerate(chunks):
        parsed = _parse(header + chunk + footer, headers)
        if _is_malformed(parsed) or not parsed.entries:
            reason = f"条目 XML 格式错误: {parsed.get('bozo_exception')}"
            document.skipped.append(SkippedItem(index=index, reason=reason))
            continue
        document.entries.append((index, parsed.entries[0]))

    if not document.entries:
        return None
    return document


def read_document(raw: bytes, headers: dict[str, str]) -> FeedDocument:
    """
    解析 Feed 字节.

    Args:
        raw: 去除 BOM 和首尾空白后的响应体
        headers: 交给 feedparser 的响应头（决定字符编码）

    Returns:
        FeedDocument；整体无法恢复时使用 feedparser 宽松解析的结果
    """
    raw = _ENTITY.sub(_replace_entity, raw)
    parsed = _parse(raw, headers)

    if _is_malformed(parsed):
        logger.debug(f"严格解析失败，尝试逐条解析: {parsed.get('bozo_exception')}")
        recovered = _recover(raw, headers)
        if recovered is not None:
            return recovered
        logger.debug("逐条解析不可行，使用宽松解析结果")

    return FeedDocument(
        version=parsed.get("version", ""),
        feed=parsed.feed,
        entries=list(enumerate(parsed.entries)),
    )
