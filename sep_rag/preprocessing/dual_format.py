"""Turn section items into aligned retrieval/generation text pairs."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from sep_rag.clients.conversion import ConversionClient
from sep_rag.models import ItemKind, SectionItem
from sep_rag.preprocessing.figures import FIGURE_PLACEHOLDER, caption_from_figure_html
from sep_rag.preprocessing.lists import list_to_text
from sep_rag.preprocessing.markup import outer_html, parse_fragment
from sep_rag.preprocessing.tables import markdown_to_plain, table_to_markdown
from sep_rag.preprocessing.tex import has_residual_tex, replace_tex_with_symbols
from sep_rag.preprocessing.text import normalise_text, normalise_whitespace, strip_html_tags

logger = logging.getLogger(__name__)

_TRAILING_WS = re.compile(r"[ \t]+\n")
_BLANK_RUNS = re.compile(r"\n{3,}")

# Generation text of these kinds is line-oriented and keeps its line breaks.
_LINE_KINDS = frozenset({ItemKind.LIST, ItemKind.TABLE, ItemKind.PRE})


def finalize_text(text: str) -> str:
    return normalise_whitespace(text, keep_newlines=True)


def finalize_lines(text: str) -> str:
    """Tidy line-oriented text while keeping line breaks and indentation."""

    text = _TRAILING_WS.sub("\n", text.replace("\r", ""))
    return _BLANK_RUNS.sub("\n\n", text).strip("\n").rstrip()


@dataclass
class _PreparedUnit:
    kind: ItemKind
    retrieval: str = ""
    generation: str = ""
    table_html: Optional[str] = None


def _table_html(markup: str) -> str:
    root = parse_fragment(markup)
    tables = root.xpath(".//table")
    return outer_html(tables[0]) if tables else markup


def _figure_caption(markup: str) -> str:
    caption = finalize_text(strip_html_tags(caption_from_figure_html(markup)))
    return "" if caption == FIGURE_PLACEHOLDER else caption


class DualFormatBuilder:
    """Build (retrieval, generation) pairs for the items of one section.

    Non-LLM work runs synchronously. Table summaries and residual-TeX
    conversions each go out as one parallel batch per section.
    """

    def __init__(self, conversion: ConversionClient) -> None:
        self.conversion = conversion

    def _prepare(self, item: SectionItem) -> _PreparedUnit:
        kind = item.kind
        if kind == ItemKind.LIST:
            return _PreparedUnit(
                kind,
                retrieval=normalise_text(list_to_text(item.html, keep_markers=False)),
                generation=list_to_text(item.html, keep_markers=True),
            )
        if kind == ItemKind.TABLE:
            table_html = _table_html(item.html)
            markdown = table_to_markdown(table_html)
            if not markdown:
                return _PreparedUnit(kind)
            return _PreparedUnit(kind, generation=markdown, table_html=table_html)
        if kind == ItemKind.FIGURE:
            caption = _figure_caption(item.html)
            return _PreparedUnit(
                kind,
                retrieval=normalise_text(f"Figure: {caption}" if caption else "Figure"),
                generation=f"[Figure: {caption}]" if caption else "[Figure]",
            )
        text = strip_html_tags(item.html)
        return _PreparedUnit(kind, retrieval=normalise_text(text), generation=text)

    def build(
        self,
        items: Sequence[SectionItem],
        article_title: str = "",
        section_heading: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Tuple[str, str]]:
        """Return one (retrieval, generation) pair per non-empty item, in order."""

        prepared = [self._prepare(item) for item in items]

        tables = [index for index, unit in enumerate(prepared) if unit.table_html is not None]
        if tables:
            summaries = self.conversion.summarize_tables_batch(
                [prepared[index].table_html for index in tables],
                article_title,
                section_heading,
                cancel_event,
            )
            for index, summary in zip(tables, summaries):
                unit = prepared[index]
                if not summary:
                    summary = markdown_to_plain(unit.generation)
                unit.retrieval = normalise_text(summary)

        for unit in prepared:
            unit.retrieval = replace_tex_with_symbols(unit.retrieval)
            unit.generation = replace_tex_with_symbols(unit.generation)

        pending = [index for index, unit in enumerate(prepared) if has_residual_tex(unit.retrieval)]
        if pending:
            converted = self.conversion.convert_tex_batch(
                [finalize_text(prepared[index].retrieval) for index in pending],
                article_title,
                section_heading,
                cancel_event,
            )
            for index, text in zip(pending, converted):
                prepared[index].retrieval = text

        pairs: List[Tuple[str, str]] = []
        for unit in prepared:
            retrieval = finalize_text(unit.retrieval)
            if unit.kind in _LINE_KINDS:
                generation = finalize_lines(unit.generation)
            else:
                generation = finalize_text(unit.generation)
            if retrieval or generation:
                pairs.append((retrieval, generation))
        dropped = len(prepared) - len(pairs)
        if dropped:
            logger.debug("Dropped %d empty units", dropped)
        return pairs
