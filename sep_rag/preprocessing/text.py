"""Plain-text helpers shared by the normalizers."""

from __future__ import annotations

import html
import re
import unicodedata

_COMBINING_MARKS = re.compile(r"[\u0300-\u036f]")

_REMOVE_WITH_CONTENT = ("script", "style", "iframe", "noscript")
_PARAGRAPH_TAGS = ("p", "div", "blockquote", "li", "pre")
_PRESERVED_TAGS = ("figure", "figcaption")

_ANY_TAG = re.compile(r"<[^>]+>")
_HORIZONTAL_WS = re.compile(r"[ \t]+")
_SPACES_AROUND_NEWLINE = re.compile(r" *\n *")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")


def normalise_text(text: str) -> str:
    """Strip diacritics by decomposing and dropping combining marks."""

    return _COMBINING_MARKS.sub("", unicodedata.normalize("NFD", text))


def normalise_whitespace(text: str, keep_newlines: bool = False) -> str:
    """Collapse whitespace.

    With ``keep_newlines`` paragraph breaks (blank lines) survive as a single
    ``"\\n\\n"`` while single line wraps become spaces.
    """

    if not keep_newlines:
        return " ".join(text.split())

    text = _EXCESS_NEWLINES.sub("\n\n", text)
    paragraphs = [part.replace("\n", " ") for part in text.split("\n\n")]
    joined = "\n\n".join(_HORIZONTAL_WS.sub(" ", part) for part in paragraphs)
    return _HORIZONTAL_WS.sub(" ", joined).strip()


def strip_html_tags(markup: str) -> str:
    """Reduce an HTML fragment to text, keeping paragraph breaks.

    Block-level closing tags become blank lines. Canonical ``<figure>`` and
    ``<figcaption>`` markup is left in place for the figure unit builder.
    """

    text = markup
    for tag in _REMOVE_WITH_CONTENT:
        text = re.sub(rf"<{tag}[^>]*>.*?</{tag}>", "", text, flags=re.IGNORECASE | re.DOTALL)

    for tag in _PARAGRAPH_TAGS:
        text = re.sub(rf"</{tag}>", "\n\n", text, flags=re.IGNORECASE)
        text = re.sub(rf"<{tag}(?:\s[^>]*)?>", "", text, flags=re.IGNORECASE)

    preserved: list[str] = []

    def _stash(match: re.Match[str]) -> str:
        preserved.append(match.group(0))
        return f"__PRESERVED_ELEMENT_{len(preserved) - 1}__"

    for tag in _PRESERVED_TAGS:
        text = re.sub(
            rf"<{tag}[^>]*>.*?</{tag}>", _stash, text, flags=re.IGNORECASE | re.DOTALL
        )

    text = _ANY_TAG.sub("", text)
    text = html.unescape(text)
    text = text.replace("\r", "")
    text = _HORIZONTAL_WS.sub(" ", text)
    text = _SPACES_AROUND_NEWLINE.sub("\n", text)
    text = _EXCESS_NEWLINES.sub("\n\n", text)

    for index, element in enumerate(preserved):
        text = text.replace(f"__PRESERVED_ELEMENT_{index}__", element, 1)

    return text
