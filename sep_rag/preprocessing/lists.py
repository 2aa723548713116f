"""Render HTML ``ul``/``ol`` lists as indented plain text.

Lists are converted bottom-up: the innermost lists of a fragment are turned
into :class:`ListBlock` trees first and replaced by a placeholder ``<pre>``
element that refers to the tree, so a parent list picks up its nested lists
as already-converted children instead of re-parsing rendered text.
"""

from __future__ import annotations

import itertools
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from lxml import html as lxml_html
from lxml.html import HtmlElement

from sep_rag.preprocessing.markup import inner_html, parse_fragment

ROMAN_NUMERALS = (
    ("M", 1000),
    ("CM", 900),
    ("D", 500),
    ("CD", 400),
    ("C", 100),
    ("XC", 90),
    ("L", 50),
    ("XL", 40),
    ("X", 10),
    ("IX", 9),
    ("V", 5),
    ("IV", 4),
    ("I", 1),
)

UNORDERED_MARKER = "-"
INDENT = "  "

_NESTED_MARKER_PREFIX = re.compile(r"^\s*(?:[-•]\s+|(?:\d+|[A-Za-z]|[ivxlcdmIVXLCDM]+)\.\s+)")
_BLOCK_ATTR = "data-list-block"
_LIST_TAGS = ("ul", "ol")


def to_roman(number: int) -> str:
    """Return ``number`` as upper-case Roman numerals (decimal outside 1..3999)."""

    if number < 1 or number > 3999:
        return str(number)
    result = []
    remaining = number
    for numeral, value in ROMAN_NUMERALS:
        while remaining >= value:
            result.append(numeral)
            remaining -= value
    return "".join(result)


def to_alphabet(number: int) -> str:
    """Return ``number`` in bijective base-26 (1=A, 26=Z, 27=AA)."""

    if number < 1:
        return str(number)
    letters = []
    remaining = number
    while remaining > 0:
        remaining, offset = divmod(remaining - 1, 26)
        letters.append(chr(ord("A") + offset))
    return "".join(reversed(letters))


def ordered_marker(counter: int, list_type: str = "1") -> str:
    """Return the marker for ``counter`` under an ``<ol type>`` value.

    Unknown types fall back to decimal numbering.
    """

    if list_type == "a":
        return to_alphabet(counter).lower()
    if list_type == "A":
        return to_alphabet(counter)
    if list_type == "i":
        return to_roman(counter).lower()
    if list_type == "I":
        return to_roman(counter)
    return str(counter)


@dataclass
class ListEntry:
    """One ``<li>``: its own text plus any lists nested inside it."""

    prefix: str  # "3." for ordered items, "-" for bullets
    text: str
    children: List["ListBlock"] = field(default_factory=list)

    @property
    def ordered(self) -> bool:
        return self.prefix != UNORDERED_MARKER


@dataclass
class ListBlock:
    entries: List[ListEntry] = field(default_factory=list)

    def render(self, keep_markers: bool = True) -> str:
        body = "\n".join(self.lines(keep_markers))
        return ("\n" + body).rstrip() + "\n"

    def lines(self, keep_markers: bool = True) -> List[str]:
        lines: List[str] = []
        for entry in self.entries:
            has_text = bool(entry.text)
            # A bullet that only wraps a nested list gets no line of its own.
            if has_text or entry.ordered or not entry.children:
                lines.append(f"{entry.prefix} {entry.text}" if keep_markers else entry.text)
            for child in entry.children:
                for line in child.lines(keep_markers):
                    if not line.strip():
                        continue
                    if keep_markers:
                        lines.append(f"{INDENT}{line}" if has_text else line)
                    else:
                        lines.append(_NESTED_MARKER_PREFIX.sub("", line))
        return lines


def _parse_start(value: Optional[str]) -> int:
    if value is None:
        return 1
    match = re.match(r"\s*([+-]?\d+)", value)
    return int(match.group(1)) if match else 1


def _convert_list(list_element: HtmlElement, blocks: Dict[str, ListBlock]) -> ListBlock:
    ordered = list_element.tag == "ol"
    reversed_order = list_element.get("reversed") is not None
    list_type = list_element.get("type") or "1"
    counter = _parse_start(list_element.get("start"))

    block = ListBlock()
    for item in list_element.iterchildren("li"):
        children: List[ListBlock] = []
        for placeholder in list(item.iterdescendants("pre")):
            key = placeholder.get(_BLOCK_ATTR)
            if key is None or key not in blocks:
                continue
            children.append(blocks.pop(key))
            # Keep text after a nested list apart from the text before it.
            placeholder.tail = " " + (placeholder.tail or "")
            placeholder.drop_tree()

        prefix = f"{ordered_marker(counter, list_type)}." if ordered else UNORDERED_MARKER
        text = " ".join((item.text_content() or "").split())
        block.entries.append(ListEntry(prefix=prefix, text=text, children=children))
        if ordered:
            counter = counter - 1 if reversed_order else counter + 1
    return block


def _innermost_lists(root: HtmlElement) -> List[HtmlElement]:
    return [
        element
        for element in root.iter(*_LIST_TAGS)
        if next(element.iterdescendants(*_LIST_TAGS), None) is None
    ]


def convert_lists(root: HtmlElement) -> Dict[str, ListBlock]:
    """Replace every list under ``root`` with a placeholder ``<pre>``.

    Returns the converted outermost lists keyed by placeholder id.
    """

    blocks: Dict[str, ListBlock] = {}
    keys = itertools.count()
    while True:
        innermost = _innermost_lists(root)
        if not innermost:
            break
        for list_element in innermost:
            key = f"list-{next(keys)}"
            blocks[key] = _convert_list(list_element, blocks)
            placeholder = lxml_html.Element("pre")
            placeholder.set(_BLOCK_ATTR, key)
            placeholder.tail = list_element.tail
            list_element.getparent().replace(list_element, placeholder)
    return blocks


def _fill_placeholders(root: HtmlElement, blocks: Dict[str, ListBlock], keep_markers: bool) -> None:
    for placeholder in list(root.iter("pre")):
        key = placeholder.get(_BLOCK_ATTR)
        if key is None or key not in blocks:
            continue
        del placeholder.attrib[_BLOCK_ATTR]
        placeholder.text = blocks[key].render(keep_markers)


def html_list_to_text(markup: str, keep_markers: bool = True) -> str:
    """Return ``markup`` with each outermost list replaced by a ``<pre>`` text block.

    ``keep_markers`` selects the generation rendering (``"2. item"``); without
    it items are emitted bare and nested lines lose marker-like prefixes.
    """

    if not markup.strip():
        return markup
    root = parse_fragment(markup)
    _fill_placeholders(root, convert_lists(root), keep_markers)
    return inner_html(root)


def list_to_text(markup: str, keep_markers: bool = True) -> str:
    """Like :func:`html_list_to_text` but returns the text content only.

    Indentation of nested lines is preserved.
    """

    root = parse_fragment(markup)
    _fill_placeholders(root, convert_lists(root), keep_markers)
    return root.text_content() or ""
