"""HTML 解析工具."""

import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup

# 需要按 base URL 解析的属性
_URL_ATTRIBUTES = {
    "a": "href",
    "img": "src",
    "source": "src",
    "video": "src",
    "audio": "src",
}


def html_to_text(html: str) -> str:
    """
    将 HTML 转换为纯文本.

    Args:
        html: HTML 内容

    Returns:
        提取的纯文本内容
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "lxml")

    # 移除 script 和 style 标签
    for element in soup(["script", "style"]):
        element.decompose()

    text = soup.get_text(separator="\n")

    # 清理多余空白
    lines = []
    for line in text.split("\n"):
        line = line.strip()
        if line:
            lines.append(line)

    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)

    return text.strip()


def _is_relative(url: str) -> bool:
    return not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*:|^//|^#", url)


def absolutize_links(html: str, base_url: str | None) -> str:
    """
    将 HTML 片段中的相对 href/src 解析为绝对地址.

    没有相对链接时原样返回，避免无谓地重新序列化。
    """
    if not html or not base_url:
        return html

    soup = BeautifulSoup(html, "lxml")
    changed = False

    for tag_name, attr in _URL_ATTRIBUTES.items():
        for tag in soup.find_all(tag_name):
            value = tag.get(attr)
            if isinstance(value, str) and value and _is_relative(value):
                tag[attr] = urljoin(base_url, value)
                changed = True

    if not changed:
        return html

    container = soup.body if soup.body is not None else soup
    return container.decode_contents()
