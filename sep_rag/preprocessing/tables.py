"""Deterministic HTML table to Markdown conversion."""

from __future__ import annotations

import re
from typing import List

from lxml import html as lxml_html
from lxml.html import HtmlElement

from sep_rag.preprocessing.text import strip_html_tags

_MARKDOWN_NOISE = re.compile(r"[|`]|-{3,}")


def _cell_text(cell: HtmlElement) -> str:
    return (cell.text_content() or "").strip()


def _row_cells(row: HtmlElement) -> List[HtmlElement]:
    return [child for child in row if child.tag in ("th", "td")]


def _body_rows(table: HtmlElement) -> List[HtmlElement]:
    rows = table.xpath("./tbody/tr")
    if rows:
        return rows
    # lxml does not synthesize <tbody>; bare rows count as body rows.
    return table.xpath("./tr")


def _find_table(markup: str) -> HtmlElement | None:
    if not markup.strip():
        return None
    root = lxml_html.fragment_fromstring(markup, create_parent="div")
    tables = root.xpath(".//table")
    return tables[0] if tables else None


def table_to_markdown(markup: str) -> str:
    """Render the first ``<table>`` in ``markup`` as a Markdown table.

    The header comes from ``thead``; without one, a first body row made
    entirely of ``th`` cells is promoted. Markup without a table, or a table
    without rows, renders as an empty string.
    """

    table = _find_table(markup)
    if table is None:
        return ""

    header: List[str] = [_cell_text(cell) for cell in table.xpath("./thead/tr/th | ./thead/tr/td")]
    body = _body_rows(table)

    if not header and body:
        first = _row_cells(body[0])
        if first and all(cell.tag == "th" for cell in first):
            header = [_cell_text(cell) for cell in first]
            body = body[1:]

    rows: List[List[str]] = []
    if header:
        rows.append(header)
    for row in body:
        cells = [_cell_text(cell) for cell in _row_cells(row)]
        if cells:
            rows.append(cells)

    if not rows:
        return ""

    # Without a header the first data row heads the markdown table.
    lines = ["| " + " | ".join(rows[0]) + " |", "| " + " | ".join("---" for _ in rows[0]) + " |"]
    lines.extend("| " + " | ".join(row) + " |" for row in rows[1:])
    return "\n" + "\n".join(lines) + "\n\n"


def markdown_to_plain(markdown: str) -> str:
    """Reduce Markdown table text to plain words for the retrieval format."""

    return _MARKDOWN_NOISE.sub("", strip_html_tags(markdown)).strip()
