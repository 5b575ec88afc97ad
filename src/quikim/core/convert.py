"""Best-effort HTML → markdown conversion for pulled artifact content.

The backend's rich-text editor stores some artifacts as HTML. Local files are
markdown, so pulled content is converted when it looks like HTML. Anything
that does not look like HTML is returned unchanged.
"""

from __future__ import annotations

import re
from html.parser import HTMLParser

from quikim.errors import ConversionError

_HTML_HINT_RE = re.compile(
    r"<(p|div|h[1-6]|ul|ol|li|br|strong|em|b|i|a|pre|code|blockquote|table|span|hr|img)\b[^>]*>",
    re.IGNORECASE,
)
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_SPACES_RE = re.compile(r"\s+")

_BLOCK_TAGS = frozenset({"p", "div", "section", "article", "header", "footer", "table", "tr"})
_INLINE_MARKS = {"strong": "**", "b": "**", "em": "*", "i": "*"}


def is_html_content(text: str | None) -> bool:
    """Return ``True`` if *text* contains recognisable HTML markup."""
    if not text:
        return False
    return bool(_HTML_HINT_RE.search(text))


class _MarkdownBuilder(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.parts: list[str] = []
        self.lists: list[list] = []  # [kind, counter]
        self.href: str | None = None
        self.in_pre = False
        self.quote_depth = 0

    # -- helpers ------------------------------------------------------------

    def _newline(self, count: int = 1) -> None:
        self.parts.append("\n" * count)

    def _line_prefix(self) -> str:
        return "> " * self.quote_depth

    def _quote_prefix(self) -> None:
        if self.quote_depth:
            self.parts.append(self._line_prefix())

    # -- parser callbacks ---------------------------------------------------

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        attr_map = dict(attrs)
        if tag in ("h1", "h2", "h3", "h4", "h5", "h6"):
            self._newline(2)
            self.parts.append(self._line_prefix() + "#" * int(tag[1]) + " ")
        elif tag in _BLOCK_TAGS:
            self._newline(2)
            self._quote_prefix()
        elif tag == "br":
            self._newline()
            self._quote_prefix()
        elif tag in _INLINE_MARKS:
            self.parts.append(_INLINE_MARKS[tag])
        elif tag == "code" and not self.in_pre:
            self.parts.append("`")
        elif tag == "pre":
            self.in_pre = True
            self._newline(2)
            self.parts.append("```\n")
        elif tag == "a":
            self.href = attr_map.get("href")
            self.parts.append("[")
        elif tag == "img":
            alt = attr_map.get("alt") or ""
            src = attr_map.get("src") or ""
            self.parts.append(f"![{alt}]({src})")
        elif tag in ("ul", "ol"):
            self.lists.append([tag, 0])
            self._newline()
        elif tag == "li":
            self._newline()
            indent = "  " * max(len(self.lists) - 1, 0)
            if self.lists and self.lists[-1][0] == "ol":
                self.lists[-1][1] += 1
                marker = f"{self.lists[-1][1]}. "
            else:
                marker = "- "
            self.parts.append(self._line_prefix() + indent + marker)
        elif tag == "blockquote":
            self.quote_depth += 1
            self._newline(2)
            self._quote_prefix()
        elif tag == "hr":
            self._newline(2)
            self.parts.append("---")
            self._newline(2)

    def handle_endtag(self, tag: str) -> None:
        if tag in ("h1", "h2", "h3", "h4", "h5", "h6") or tag in _BLOCK_TAGS:
            self._newline(2)
        elif tag in _INLINE_MARKS:
            self.parts.append(_INLINE_MARKS[tag])
        elif tag == "code" and not self.in_pre:
            self.parts.append("`")
        elif tag == "pre":
            self.in_pre = False
            self.parts.append("\n```")
            self._newline(2)
        elif tag == "a":
            self.parts.append(f"]({self.href})" if self.href else "]")
            self.href = None
        elif tag in ("ul", "ol"):
            if self.lists:
                self.lists.pop()
            self._newline()
        elif tag == "blockquote":
            self.quote_depth = max(self.quote_depth - 1, 0)
            self._newline(2)

    def handle_data(self, data: str) -> None:
        if self.in_pre:
            self.parts.append(data)
            return
        collapsed = _SPACES_RE.sub(" ", data)
        if not self.parts or self.parts[-1].endswith((" ", "\n")):
            collapsed = collapsed.lstrip()
        if collapsed:
            self.parts.append(collapsed)

    def markdown(self) -> str:
        text = "".join(self.parts)
        lines = [line.rstrip() for line in text.split("\n")]
        text = _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()
        return text + "\n" if text else ""


def html_to_markdown(text: str) -> str:
    """Convert HTML *text* to markdown; non-HTML input is returned unchanged.

    Raises:
        ConversionError: If the markup cannot be parsed.
    """
    if not is_html_content(text):
        return text
    builder = _MarkdownBuilder()
    try:
        builder.feed(text)
        builder.close()
    except (AssertionError, ValueError) as exc:
        raise ConversionError(f"Could not convert HTML content: {exc}") from exc
    return builder.markdown()
