"""HTML normalization of encyclopedia sections into retrieval and generation text."""

from .figures import process_figures_in_content
from .lists import list_to_text
from .segmenter import split_html_into_items
from .tables import table_to_markdown
from .tex import replace_tex_with_symbols
from .text import normalise_text, strip_html_tags

__all__ = [
    "list_to_text",
    "normalise_text",
    "process_figures_in_content",
    "replace_tex_with_symbols",
    "split_html_into_items",
    "strip_html_tags",
    "table_to_markdown",
]
