"""Fold figure markup into a canonical ``<figure><figcaption>`` shape.

Articles mark figures up in many ways (``div.figure``, ``div.figures``,
``<figure>``, nested sub-figures). Each figure is replaced by
``<figure data-figid="..."><figcaption>description</figcaption></figure>``
where the description is, in order of preference, the extended description
from the article's companion ``figdesc.html`` page, a short caption, or the
images' alt text.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, Iterable, List, Optional

from lxml import html as lxml_html
from lxml.html import HtmlElement

from sep_rag.preprocessing.markup import (
    element_text,
    has_class,
    inner_html,
    outer_html,
    parse_fragment,
)

logger = logging.getLogger(__name__)

FIGURE_PLACEHOLDER = "Figure"

_FIGURE_XPATH = ".//*[contains(@class, 'figure')] | .//figure"
_HEADINGS = ("h1", "h2", "h3", "h4", "h5", "h6")
_CONTAINERS = ("div", "section", "article")
_EXTENDED_LINK = re.compile(r"\[An?\s+extended description[^\]]*\]", re.IGNORECASE)


def _strip_extended_link(text: str) -> str:
    return _EXTENDED_LINK.sub("", text).strip()


def extract_figure_ids(markup: str) -> List[str]:
    """Return the ids of figure elements and of elements nested in figures."""

    if not markup.strip():
        return []
    root = parse_fragment(markup)
    ids: Dict[str, None] = {}
    for figure in root.xpath(_FIGURE_XPATH):
        if figure.get("id"):
            ids[figure.get("id")] = None
        for nested in figure.iterdescendants():
            if isinstance(nested.tag, str) and nested.get("id"):
                ids[nested.get("id")] = None
    return list(ids)


def _heading_description(heading: HtmlElement, figure_ids: Iterable[str]) -> str:
    known = set(figure_ids)
    parts: List[str] = []
    for sibling in heading.itersiblings():
        if not isinstance(sibling.tag, str):
            continue
        if sibling.tag in _HEADINGS:
            break
        if sibling.get("id") in known:
            break
        parts.append(outer_html(sibling) + "\n")
    return "".join(parts)


def extract_extended_descriptions(figdesc_html: str, figure_ids: Iterable[str]) -> Dict[str, str]:
    """Map figure ids to their description blocks on a ``figdesc.html`` page."""

    figure_ids = list(figure_ids)
    if not figure_ids or not figdesc_html.strip():
        return {}

    document = lxml_html.document_fromstring(figdesc_html)
    descriptions: Dict[str, str] = {}
    for fig_id in figure_ids:
        matches = document.xpath("//*[@id=$fig_id]", fig_id=fig_id)
        if not matches:
            continue
        element = matches[0]
        if element.tag in _CONTAINERS:
            description = inner_html(element)
        elif element.tag in _HEADINGS:
            description = _heading_description(element, figure_ids)
        else:
            parent = element.getparent()
            description = inner_html(parent) if parent is not None else ""
        if description.strip():
            descriptions[fig_id] = description.strip()
    return descriptions


def extract_figure_description(
    figure: HtmlElement,
    fig_id: Optional[str],
    extended: Dict[str, str],
) -> str:
    """Return the best description for ``figure`` or an empty string."""

    if fig_id and fig_id in extended:
        return extended[fig_id]

    caption = " ".join(element_text(node) for node in figure.iterdescendants("figcaption")).strip()
    if caption:
        return caption

    labels = figure.xpath(f".//*[{has_class('figlabel')}]")
    if labels:
        parent = labels[0].getparent()
        label_text = _strip_extended_link(element_text(parent)) if parent is not None else ""
        if label_text:
            return label_text

    centered = figure.xpath(f".//p[{has_class('center')}] | .//*[{has_class('center')}]//p")
    if centered:
        centered_text = _strip_extended_link(element_text(centered[0]))
        if centered_text:
            return centered_text

    alts = [img.get("alt", "").strip() for img in figure.iterdescendants("img")]
    return "; ".join(alt for alt in alts if alt)


def _canonical_figure(fig_id: Optional[str], description: str, is_markup: bool) -> HtmlElement:
    figure = lxml_html.Element("figure")
    figure.set("data-figid", fig_id or "")
    caption = lxml_html.Element("figcaption")
    figure.append(caption)
    if not is_markup or "<" not in description:
        caption.text = description or FIGURE_PLACEHOLDER
        return figure

    fragments = lxml_html.fragments_fromstring(description)
    if fragments and isinstance(fragments[0], str):
        caption.text = fragments.pop(0)
    for fragment in fragments:
        caption.append(fragment)
    return figure


def _outermost(elements: List[HtmlElement]) -> List[HtmlElement]:
    selected = set(elements)
    outermost = []
    for element in elements:
        if any(ancestor in selected for ancestor in element.iterancestors()):
            continue
        outermost.append(element)
    return outermost


def normalize_figures(markup: str, extended: Optional[Dict[str, str]] = None) -> str:
    """Replace every figure in ``markup`` with its canonical form."""

    if not markup.strip():
        return markup
    root = parse_fragment(markup)
    figures = _outermost(root.xpath(_FIGURE_XPATH))
    if not figures:
        return markup

    extended = extended or {}
    for figure in figures:
        fig_id = figure.get("id") or figure.get("data-figid")
        if fig_id not in extended:
            # Wrappers without their own description defer to a nested figure's.
            nested = next(
                (
                    node.get("id")
                    for node in figure.iterdescendants()
                    if isinstance(node.tag, str) and node.get("id") in extended
                ),
                None,
            )
            fig_id = nested or fig_id
        description = extract_figure_description(figure, fig_id, extended)
        is_markup = bool(fig_id) and fig_id in extended
        replacement = _canonical_figure(fig_id, description, is_markup)
        replacement.tail = figure.tail
        figure.getparent().replace(figure, replacement)
    return inner_html(root)


def process_figures_in_content(
    markup: str,
    fetch_figdesc: Callable[[], Optional[str]],
) -> str:
    """Normalize figures, fetching the extended-description page only when needed."""

    figure_ids = extract_figure_ids(markup)
    extended: Dict[str, str] = {}
    if figure_ids:
        page = fetch_figdesc()
        if page:
            extended = extract_extended_descriptions(page, figure_ids)
            logger.debug("Resolved %d extended figure descriptions", len(extended))
    return normalize_figures(markup, extended)


def caption_from_figure_html(markup: str) -> str:
    """Recover caption markup from a canonical or legacy figure item."""

    root = parse_fragment(markup)
    captions = list(root.iter("figcaption"))
    if captions:
        caption = "".join(inner_html(node) for node in captions).strip()
        if caption:
            return caption

    labels = root.xpath(f".//*[{has_class('figlabel')}]")
    if labels and labels[0].getparent() is not None:
        return _strip_extended_link(inner_html(labels[0].getparent()))

    centered = root.xpath(f".//p[{has_class('center')}] | .//*[{has_class('center')}]//p")
    if centered:
        return _strip_extended_link(inner_html(centered[0]))

    alts = [img.get("alt", "").strip() for img in root.iter("img")]
    return "; ".join(alt for alt in alts if alt)
