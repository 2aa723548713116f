"""Split section HTML into block-level items."""

from __future__ import annotations

import html
from typing import List

from lxml.html import HtmlElement

from sep_rag.models import ItemKind, SectionItem
from sep_rag.preprocessing.markup import outer_html, parse_fragment

_DIRECT_KINDS = {
    "p": ItemKind.PARAGRAPH,
    "ul": ItemKind.LIST,
    "ol": ItemKind.LIST,
    "table": ItemKind.TABLE,
    "pre": ItemKind.PRE,
    "blockquote": ItemKind.BLOCKQUOTE,
    "figure": ItemKind.FIGURE,
}

# Children lifted out of div/section wrappers, in priority order.
_LIFTABLE = (
    (("table",), ItemKind.TABLE),
    (("ul", "ol"), ItemKind.LIST),
    (("figure",), ItemKind.FIGURE),
)


def _text_item(text: str) -> SectionItem | None:
    stripped = text.strip()
    if not stripped:
        return None
    return SectionItem(kind=ItemKind.PARAGRAPH, html=f"<p>{html.escape(stripped, quote=False)}</p>")


def _wrapper_item(element: HtmlElement) -> SectionItem:
    if "figure" in (element.get("class") or ""):
        return SectionItem(kind=ItemKind.FIGURE, html=outer_html(element))
    for tags, kind in _LIFTABLE:
        child = next((c for c in element if c.tag in tags), None)
        if child is not None:
            return SectionItem(kind=kind, html=outer_html(child))
    return SectionItem(kind=ItemKind.PARAGRAPH, html=outer_html(element))


def split_html_into_items(markup: str) -> List[SectionItem]:
    """Return the top-level blocks of ``markup`` in document order.

    Loose text becomes a paragraph. ``div``/``section`` wrappers are unwrapped
    to a directly contained table, list or figure when one exists.
    """

    root = parse_fragment(markup)
    items: List[SectionItem] = []

    leading = _text_item(root.text or "")
    if leading is not None:
        items.append(leading)

    for element in root:
        if isinstance(element.tag, str):
            tag = element.tag.lower()
            if tag in _DIRECT_KINDS:
                items.append(SectionItem(kind=_DIRECT_KINDS[tag], html=outer_html(element)))
            elif tag in ("div", "section"):
                items.append(_wrapper_item(element))
            else:
                items.append(SectionItem(kind=ItemKind.OTHER, html=outer_html(element)))

        trailing = _text_item(element.tail or "")
        if trailing is not None:
            items.append(trailing)

    return items
