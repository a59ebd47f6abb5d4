"""HTML-to-text conversion for email bodies.

Some notification templates ship an HTML part only, or a plain part that is
nothing but a "view in browser" link. This module converts the HTML part to
line-oriented text the field extractors can scan. Anchor targets are kept in
markdown form (`[label](href)`) so link extractors and bracketed item
scanning work the same on both bodies.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, NavigableString

from orderq.observability.logging import get_logger

logger = get_logger(__name__)

_URL_RE = re.compile(r"https?://\S+")
_SEPARATOR_RE = re.compile(r"[=\-_*]{3,}")
_WHITESPACE_RE = re.compile(r"\s+")

# Tags that start a new line; inline tags (b, span, strong, ...) do not
_BLOCK_TAGS = [
    "address", "article", "blockquote", "div", "footer", "h1", "h2", "h3", "h4",
    "h5", "h6", "header", "hr", "li", "ol", "p", "section", "table", "tbody",
    "thead", "tfoot", "tr", "ul",
]
_CELL_TAGS = ["td", "th"]


def html_to_text(html: str | None) -> str:
    """Convert an HTML email body to plain text.

    Block elements (`p`, `div`, `tr`, `li`, `br`, ...) end a line; inline
    markup does not, so `Quantity: <b>2</b>` stays `Quantity: 2`. Table cells
    in one row are joined with a space.

    Args:
        html: Raw HTML string from the email body.

    Returns:
        Plain text with one block element per line; "" for empty input.
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(["script", "style", "head"]):
        tag.decompose()

    # Source formatting whitespace is not layout; comments and doctypes are dropped
    for node in soup.find_all(string=True):
        if type(node) is NavigableString:
            node.replace_with(_WHITESPACE_RE.sub(" ", str(node)))
        else:
            node.extract()

    for anchor in soup.find_all("a"):
        href = (anchor.get("href") or "").strip()
        label = anchor.get_text(" ", strip=True)
        if href.startswith("http") and label:
            anchor.replace_with(f"[{label}]({href})")
        elif href.startswith("http"):
            anchor.replace_with(href)

    for br in soup.find_all("br"):
        br.replace_with("\n")

    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_before("\n")
        tag.insert_after("\n")

    for cell in soup.find_all(_CELL_TAGS):
        cell.insert_after(" ")

    text = soup.get_text()

    lines = [line.strip() for line in text.splitlines()]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def is_body_boilerplate(body: str | None, min_chars: int) -> bool:
    """True if a plain body is empty or just URLs and separators."""
    if not body:
        return True
    stripped = _URL_RE.sub("", body)
    stripped = _SEPARATOR_RE.sub("", stripped)
    stripped = re.sub(r"\s+", " ", stripped).strip()
    return len(stripped) < min_chars
