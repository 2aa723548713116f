"""lxml helpers for working with HTML fragments."""

from __future__ import annotations

import html
from typing import List

from lxml import html as lxml_html
from lxml.html import HtmlElement

_WRAPPER = "div"


def parse_fragment(markup: str) -> HtmlElement:
    """Parse ``markup`` under a synthetic ``<div>`` so top-level text survives."""

    if not markup.strip():
        return lxml_html.Element(_WRAPPER)
    return lxml_html.fragment_fromstring(markup, create_parent=_WRAPPER)


def outer_html(element: HtmlElement, with_tail: bool = False) -> str:
    return lxml_html.tostring(element, encoding="unicode", with_tail=with_tail)


def inner_html(element: HtmlElement) -> str:
    """Serialize the children of ``element`` (text and tails included)."""

    parts: List[str] = [html.escape(element.text or "", quote=False)]
    parts.extend(outer_html(child, with_tail=True) for child in element)
    return "".join(parts)


def element_text(element: HtmlElement) -> str:
    return (element.text_content() or "").strip()


def has_class(fragment: str) -> str:
    """XPath predicate matching elements whose class list contains ``fragment``."""

    return f"contains(concat(' ', normalize-space(@class), ' '), ' {fragment} ')"
